"""
Pipeline Configuration

Settings are read from the environment (and a .env file, if present).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory


def _split_origins(value: str) -> List[str]:
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    return origins or ["*"]


@dataclass
class PipelineSettings:
    """Runtime settings for stores, oracle and HTTP surface."""
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    oracle_timeout_seconds: float = 60.0
    oracle_max_retries: int = 2
    oracle_backoff_seconds: float = 1.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    store_backend: str = "supabase"  # "supabase" or "memory"

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            oracle_timeout_seconds=float(os.getenv("ORACLE_TIMEOUT_SECONDS", "60")),
            oracle_max_retries=int(os.getenv("ORACLE_MAX_RETRIES", "2")),
            oracle_backoff_seconds=float(os.getenv("ORACLE_BACKOFF_SECONDS", "1.0")),
            cors_origins=_split_origins(os.getenv("CORS_ORIGINS", "*")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            store_backend=os.getenv("PIPELINE_STORE", "supabase").lower(),
        )
