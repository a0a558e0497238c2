# app/core/version.py
"""Application version from a VERSION file or git metadata."""
import subprocess
from functools import lru_cache
from pathlib import Path


VERSION_FILE = Path(__file__).parent.parent.parent / "VERSION"
FALLBACK_VERSION = "0.0.0-unknown"


def _git(*args: str) -> str:
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        check=True
    ).stdout.strip()


@lru_cache()
def get_version() -> str:
    """Resolve the gateway version.

    Format: 0.<commit_count>.<short_hash>, e.g. 0.42.1a2b3c4

    Sources, in order: VERSION file (container builds), git, fallback.
    """
    if VERSION_FILE.exists():
        version = VERSION_FILE.read_text().strip()
        if version:
            return version

    try:
        return f"0.{_git('rev-list', '--count', 'HEAD')}.{_git('rev-parse', '--short', 'HEAD')}"
    except (subprocess.CalledProcessError, FileNotFoundError):
        return FALLBACK_VERSION


VERSION = get_version()
