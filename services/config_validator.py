"""SKU configuration schema and validation.

The configuration arrives as a nested mapping (see ``Config.sku_bundle``).
``validate_config`` checks it against the required-keys schema and returns an
immutable ``SkuConfiguration``; every problem surfaces as ``ConfigurationError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from services.entities import SKU_KINDS
from services.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("prefix", "ulid_length", "models")
_CATEGORY_KEYS = ("accessor", "field", "length", "has_many")
_PROPERTY_VALUES_KEYS = ("accessor", "field", "length")


class CategoryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    accessor: str = "category"
    field: str = "name"
    length: int = Field(default=3, ge=1)
    has_many: bool = False


class PropertyValuesConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    accessor: str = "property_values"
    field: str = "value"
    length: int = Field(default=3, ge=1)


class HistoryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    track_user: bool = True
    track_ip: bool = False
    track_user_agent: bool = False
    retention_days: int | None = Field(default=None, ge=0)


class SkuConfiguration(BaseModel):
    """Validated, read-only SKU generation settings."""

    model_config = ConfigDict(frozen=True)

    prefix: str
    separator: str = Field(default="-", min_length=1, max_length=1)
    ulid_length: int = Field(ge=1, le=26)
    category: CategoryConfig = Field(default_factory=CategoryConfig)
    property_values: PropertyValuesConfig = Field(default_factory=PropertyValuesConfig)
    models: dict[str, str]
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    custom_suffix: Callable[[Any], str | None] | None = None

    def kind_for(self, type_tag: str) -> str | None:
        return self.models.get(type_tag)


def _check_section(bundle: Mapping[str, Any], section: str, keys: tuple[str, ...]) -> None:
    if section not in bundle or bundle[section] is None:
        return
    value = bundle[section]
    if not isinstance(value, Mapping):
        raise ConfigurationError.missing_section(section)
    for key in keys:
        if key not in value:
            raise ConfigurationError.missing_key(f"{section}.{key}")


def validate_config(bundle: Mapping[str, Any] | SkuConfiguration) -> SkuConfiguration:
    """Validate a configuration bundle and return the parsed ``SkuConfiguration``.

    An already-built ``SkuConfiguration`` is re-checked through the same rules.
    """
    if isinstance(bundle, SkuConfiguration):
        suffix = bundle.custom_suffix
        bundle = bundle.model_dump(exclude={"custom_suffix"})
        bundle["custom_suffix"] = suffix

    if not isinstance(bundle, Mapping):
        msg = "SKU configuration must be a mapping"
        raise ConfigurationError(msg)

    for key in _REQUIRED_KEYS:
        if bundle.get(key) is None:
            raise ConfigurationError.missing_key(key)

    models = bundle["models"]
    if not isinstance(models, Mapping):
        msg = "Configuration key 'models' must be a mapping"
        raise ConfigurationError(msg)
    if not models:
        raise ConfigurationError.empty_models()
    for type_tag, kind in models.items():
        if kind not in SKU_KINDS:
            raise ConfigurationError.invalid_model_type(str(type_tag), kind)

    _check_section(bundle, "category", _CATEGORY_KEYS)
    _check_section(bundle, "property_values", _PROPERTY_VALUES_KEYS)

    data = {k: v for k, v in bundle.items() if v is not None}
    try:
        config = SkuConfiguration.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        msg = f"Invalid configuration value for {location}: {first['msg']}"
        raise ConfigurationError(msg) from exc

    logger.debug("SKU configuration validated for types: %s", ", ".join(config.models))
    return config
