"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

load_dotenv()

_PROJECT_ROOT = Path(__file__).resolve().parent

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUE_VALUES


def _parse_models(raw: str) -> dict[str, str]:
    """Parse ``tag=kind`` pairs separated by commas, e.g. ``product=product,bundle=product``."""
    models: dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        tag, _, kind = pair.partition("=")
        models[tag.strip()] = kind.strip()
    return models


class Config(BaseModel):
    """Centralised app configuration backed by env vars."""

    # App paths
    database_path: str = str(_PROJECT_ROOT / "data" / "sku_manager.db")
    log_level: str = "INFO"

    # SKU generation
    sku_prefix: str = "TM"
    sku_separator: str = "-"
    sku_ulid_length: int = 8
    sku_category_accessor: str = "category"
    sku_category_field: str = "name"
    sku_category_length: int = 3
    sku_category_has_many: bool = False
    sku_property_values_accessor: str = "property_values"
    sku_property_values_field: str = "value"
    sku_property_values_length: int = 3
    sku_models: dict[str, str] = {"product": "product", "variant": "variant"}

    # SKU history
    sku_history_enabled: bool = True
    sku_history_track_user: bool = True
    sku_history_track_ip: bool = False
    sku_history_track_user_agent: bool = False
    sku_history_retention_days: int | None = None

    # Flask
    flask_host: str = "127.0.0.1"
    flask_port: int = 5000
    flask_debug: bool = True
    flask_secret_key: str = "change-me-in-production"  # noqa: S105
    cors_origins: list[str] = ["http://localhost:5173"]

    @model_validator(mode="after")
    def _warn_suspicious_sku_settings(self) -> Config:
        """Log warnings for legal but risky SKU settings."""
        if self.sku_ulid_length < 4:
            logger.warning(
                "SKU_ULID_LENGTH is %d; short unique fragments collide often",
                self.sku_ulid_length,
            )
        if not self.sku_prefix:
            logger.warning("SKU_PREFIX is empty; SKUs will start with the category code")
        if not self.sku_history_enabled:
            logger.warning("SKU history is disabled; SKU changes will not be audited")
        return self

    def sku_bundle(self) -> dict[str, Any]:
        """Return the nested bundle consumed by ``validate_config``."""
        return {
            "prefix": self.sku_prefix,
            "separator": self.sku_separator,
            "ulid_length": self.sku_ulid_length,
            "category": {
                "accessor": self.sku_category_accessor,
                "field": self.sku_category_field,
                "length": self.sku_category_length,
                "has_many": self.sku_category_has_many,
            },
            "property_values": {
                "accessor": self.sku_property_values_accessor,
                "field": self.sku_property_values_field,
                "length": self.sku_property_values_length,
            },
            "models": dict(self.sku_models),
            "history": {
                "enabled": self.sku_history_enabled,
                "track_user": self.sku_history_track_user,
                "track_ip": self.sku_history_track_ip,
                "track_user_agent": self.sku_history_track_user_agent,
                "retention_days": self.sku_history_retention_days,
            },
        }

    @classmethod
    def from_env(cls) -> Config:
        """Build config from environment variables."""
        cors_raw = os.getenv("CORS_ORIGINS", "http://localhost:5173")
        cors_origins = [o.strip() for o in cors_raw.split(",") if o.strip()]
        retention_raw = os.getenv("SKU_HISTORY_RETENTION_DAYS", "").strip()

        return cls(
            database_path=os.getenv(
                "DATABASE_PATH", str(_PROJECT_ROOT / "data" / "sku_manager.db")
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            sku_prefix=os.getenv("SKU_PREFIX", "TM"),
            sku_separator=os.getenv("SKU_SEPARATOR", "-"),
            sku_ulid_length=int(os.getenv("SKU_ULID_LENGTH", "8")),
            sku_category_accessor=os.getenv("SKU_CATEGORY_ACCESSOR", "category"),
            sku_category_field=os.getenv("SKU_CATEGORY_FIELD", "name"),
            sku_category_length=int(os.getenv("SKU_CATEGORY_LENGTH", "3")),
            sku_category_has_many=_env_bool("SKU_CATEGORY_HAS_MANY", "false"),
            sku_property_values_accessor=os.getenv(
                "SKU_PROPERTY_VALUES_ACCESSOR", "property_values"
            ),
            sku_property_values_field=os.getenv("SKU_PROPERTY_VALUES_FIELD", "value"),
            sku_property_values_length=int(os.getenv("SKU_PROPERTY_VALUES_LENGTH", "3")),
            sku_models=_parse_models(os.getenv("SKU_MODELS", "product=product,variant=variant")),
            sku_history_enabled=_env_bool("SKU_HISTORY_ENABLED", "true"),
            sku_history_track_user=_env_bool("SKU_HISTORY_TRACK_USER", "true"),
            sku_history_track_ip=_env_bool("SKU_HISTORY_TRACK_IP", "false"),
            sku_history_track_user_agent=_env_bool("SKU_HISTORY_TRACK_USER_AGENT", "false"),
            sku_history_retention_days=int(retention_raw) if retention_raw else None,
            flask_host=os.getenv("FLASK_HOST", "127.0.0.1"),
            flask_port=int(os.getenv("FLASK_PORT", "5000")),
            flask_debug=_env_bool("FLASK_DEBUG", "true"),
            flask_secret_key=os.getenv("FLASK_SECRET_KEY", "change-me-in-production"),
            cors_origins=cors_origins,
        )


settings = Config.from_env()
