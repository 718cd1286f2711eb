"""
Engine configuration.

Values come from the environment (a local ``.env`` file is honoured) with
keyword overrides taking priority, so jobs and tests can build their own
``Settings`` without touching ``os.environ``.
"""
import os
from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    database_url: str = Field(default="sqlite:///konto.db")
    sql_echo: bool = False

    # Account aggregation provider
    provider_name: str = Field(default="powens", description="Provider key stored on bank accounts")
    powens_domain: str = Field(default="kompta-sandbox.biapi.pro")
    powens_client_id: Optional[str] = None
    powens_client_secret: Optional[str] = None
    provider_timeout: float = Field(default=30.0, gt=0, description="Seconds before a provider call is abandoned")

    # Refresh policy
    stale_after_days: int = Field(default=7, ge=1)
    backfill_limit: int = Field(default=100, ge=1)
    sync_page_size: int = Field(default=500, ge=1)

    base_currency: str = Field(default="EUR", min_length=3, max_length=3)

    # Schedules
    snapshot_hour: int = Field(default=2, ge=0, le=23)
    refresh_interval_hours: int = Field(default=6, ge=1)

    @property
    def powens_api(self) -> str:
        return f"https://{self.powens_domain}/2.0"

    @classmethod
    def from_env(cls, **overrides: Any) -> "Settings":
        """Build settings from environment variables, then apply overrides."""
        env_map = {
            "database_url": "DATABASE_URL",
            "sql_echo": "SQL_ECHO",
            "powens_domain": "POWENS_DOMAIN",
            "powens_client_id": "POWENS_CLIENT_ID",
            "powens_client_secret": "POWENS_CLIENT_SECRET",
            "provider_timeout": "PROVIDER_TIMEOUT",
            "stale_after_days": "STALE_AFTER_DAYS",
            "backfill_limit": "BACKFILL_LIMIT",
            "base_currency": "BASE_CURRENCY",
            "snapshot_hour": "SNAPSHOT_HOUR",
            "refresh_interval_hours": "REFRESH_INTERVAL_HOURS",
        }
        data: Dict[str, Any] = {}
        for field_name, env_name in env_map.items():
            value = os.environ.get(env_name)
            if value is not None and value != "":
                data[field_name] = value

        if "sql_echo" in data:
            data["sql_echo"] = str(data["sql_echo"]).lower() in ("1", "true", "yes")

        data.update(overrides)
        return cls.model_validate(data)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
