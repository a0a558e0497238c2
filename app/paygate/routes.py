# app/paygate/routes.py
"""
Route policy table for the payment gate.

Maps request paths to pricing rules. A rule's pattern matches a request
path exactly, or as a plain string prefix. Lookup order:

1. Exact match on the full path
2. First registered pattern the path starts with (registration order)

Overlapping prefixes are not ranked by specificity; the first registered
one wins. The loader warns when a pattern can never be reached through
prefix matching because an earlier one already covers it.
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# Ether-style amounts carry at most 18 fractional digits
MAX_DECIMALS = 18
DEFAULT_MIN_DEPOSIT = "0.001"


class RouteConfigError(ValueError):
    """Raised when the route policy configuration is invalid."""


def _validate_amount(value: str, field_name: str) -> str:
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"{field_name} must be a decimal string, got {value!r}")
    if not amount.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}")
    if amount < 0:
        raise ValueError(f"{field_name} must not be negative, got {value!r}")
    if amount.as_tuple().exponent < -MAX_DECIMALS:
        raise ValueError(f"{field_name} supports at most {MAX_DECIMALS} decimals, got {value!r}")
    return value.strip()


class RouteRule(BaseModel):
    """
    Pricing rule for one protected path.

    `mode` is echoed to clients and does not change how requests are gated.
    `unit_price` is per second for streaming routes and per call otherwise.
    """
    path_pattern: str = Field(..., description="Exact path or path prefix.")
    mode: Literal["streaming", "per-request"] = Field("streaming", description="Billing mode advertised to clients.")
    unit_price: str = Field("0", alias="price", description="Decimal price per second or per call.")
    min_deposit: str = Field(DEFAULT_MIN_DEPOSIT, alias="minDeposit", description="Suggested minimum stream funding.")
    description: Optional[str] = Field(None, description="Human readable description of the resource.")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("path_pattern")
    @classmethod
    def validate_path_pattern(cls, v: str) -> str:
        if not v or not v.startswith("/"):
            raise ValueError(f"path pattern must start with '/', got {v!r}")
        return v

    @field_validator("unit_price", mode="before")
    @classmethod
    def validate_unit_price(cls, v: Any) -> str:
        return _validate_amount(str(v), "price")

    @field_validator("min_deposit", mode="before")
    @classmethod
    def validate_min_deposit(cls, v: Any) -> str:
        if v is None or v == "":
            return DEFAULT_MIN_DEPOSIT
        return _validate_amount(str(v), "minDeposit")


class RoutePolicyTable:
    """Read-only lookup table from request path to RouteRule."""

    def __init__(self, rules: Iterable[RouteRule] = ()):
        self._rules: List[RouteRule] = []
        self._exact: Dict[str, RouteRule] = {}
        for rule in rules:
            if rule.path_pattern in self._exact:
                raise RouteConfigError(f"Duplicate route pattern: {rule.path_pattern}")
            for earlier in self._rules:
                if rule.path_pattern.startswith(earlier.path_pattern):
                    logger.warning(
                        f"Route pattern '{rule.path_pattern}' is shadowed by earlier prefix "
                        f"'{earlier.path_pattern}' for every path except an exact match"
                    )
                    break
            self._rules.append(rule)
            self._exact[rule.path_pattern] = rule

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    @property
    def rules(self) -> List[RouteRule]:
        return list(self._rules)

    def lookup(self, path: str) -> Optional[RouteRule]:
        """
        Find the rule protecting `path`.

        Returns:
            The matching RouteRule, or None when the path is unprotected.
        """
        rule = self._exact.get(path)
        if rule is not None:
            return rule
        for rule in self._rules:
            if path.startswith(rule.path_pattern):
                return rule
        return None

    @classmethod
    def from_mapping(cls, routes: Mapping[str, Mapping[str, Any]]) -> "RoutePolicyTable":
        """
        Build a table from `{path: {mode, price, minDeposit, description}}`.

        Insertion order of the mapping is the registration order.

        Raises:
            RouteConfigError: If any rule fails validation.
        """
        rules = []
        for path, options in routes.items():
            if not isinstance(options, Mapping):
                raise RouteConfigError(f"Route '{path}' must map to an object, got {type(options).__name__}")
            try:
                rules.append(RouteRule(path_pattern=path, **options))
            except ValidationError as e:
                raise RouteConfigError(f"Invalid route configuration for '{path}': {e}") from e
        return cls(rules)

    @classmethod
    def from_json_file(cls, path: str) -> "RoutePolicyTable":
        """Load a table from a JSON file containing a path-to-rule object."""
        try:
            with open(Path(path), "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RouteConfigError(f"Failed to load route configuration from {path}: {e}") from e
        if not isinstance(data, dict):
            raise RouteConfigError(f"Route configuration in {path} must be a JSON object")
        return cls.from_mapping(data)


# Demo pricing served when no route file is configured
DEFAULT_ROUTES: Dict[str, Dict[str, Any]] = {
    "/api/weather": {
        "price": "0.0001",  # per second
        "mode": "streaming",
        "description": "Real-time weather data",
        "minDeposit": "0.36",  # one hour of streaming
    },
    "/api/premium": {
        "price": "0.01",
        "mode": "per-request",
        "description": "Premium content",
    },
    "/api/expensive": {
        "price": "1000",
        "mode": "per-request",
        "description": "Expensive API for budget testing",
    },
}


def load_route_table(routes_file: Optional[str] = None) -> RoutePolicyTable:
    """Load the configured route table, falling back to the demo routes."""
    if routes_file:
        table = RoutePolicyTable.from_json_file(routes_file)
        logger.info(f"Loaded {len(table)} protected route(s) from {routes_file}")
        return table
    logger.info("No route file configured, using demo routes")
    return RoutePolicyTable.from_mapping(DEFAULT_ROUTES)
