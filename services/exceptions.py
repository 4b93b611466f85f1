"""Exceptions raised by the SKU services."""

from __future__ import annotations


class SkuError(Exception):
    """Base class for all SKU service failures."""


class ConfigurationError(SkuError):
    """The SKU configuration bundle is missing keys or holds invalid values."""

    @classmethod
    def missing_key(cls, key: str) -> ConfigurationError:
        return cls(f"Missing required configuration key: {key}")

    @classmethod
    def missing_section(cls, section: str) -> ConfigurationError:
        return cls(f"Missing required configuration section: {section}")

    @classmethod
    def invalid_model_type(cls, type_tag: str, kind: object) -> ConfigurationError:
        return cls(
            f"Invalid model type for {type_tag!r}: {kind!r}. Must be 'product' or 'variant'"
        )

    @classmethod
    def empty_models(cls) -> ConfigurationError:
        return cls("At least one model must be configured")


class SkuMappingError(SkuError):
    """An entity cannot be mapped to a SKU generation strategy."""


class UnmappedTypeError(SkuMappingError):
    def __init__(self, type_tag: str) -> None:
        super().__init__(f"No SKU generator mapping defined for {type_tag!r}")
        self.type_tag = type_tag


class UnsupportedTypeTagError(SkuMappingError):
    def __init__(self, kind: str, type_tag: str) -> None:
        super().__init__(f"Unsupported SKU type {kind!r} for {type_tag!r}")
        self.kind = kind
        self.type_tag = type_tag


class MissingParentError(SkuError):
    """A variant has no parent product, or the parent has no SKU yet."""


class PersistenceError(SkuError):
    """The storage layer failed during a uniqueness check or write."""


class SkuConflictError(PersistenceError):
    """The storage layer rejected a write because the SKU is already taken."""
