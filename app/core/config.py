# app/core/config.py
from typing import Optional, Literal
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Stream Payment Gateway"
    LOG_LEVEL: str = "INFO"

    # Payment gate
    PAYGATE_ENABLED: bool = True
    PAYGATE_VOCABULARY: Literal["paystream", "flowpay"] = "paystream"
    PAYGATE_CONTRACT_ADDRESS: str = ""
    PAYGATE_RPC_URL: str = "https://evm-t3.cronos.org"
    PAYGATE_RPC_TIMEOUT: float = 10.0
    PAYGATE_RECIPIENT_ADDRESS: str = ""
    PAYGATE_CURRENCY: Optional[str] = None  # falls back to the vocabulary's currency
    PAYGATE_API_KEY: Optional[str] = None
    PAYGATE_LEDGER_BACKEND: Literal["rpc", "memory"] = "rpc"
    PAYGATE_ROUTES_FILE: Optional[str] = None
    PAYGATE_AUDIT_LOG_PATH: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
