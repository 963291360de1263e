"""Schema and cascade-rule registries."""

from .rules import (
    DERIVED_FIELDS,
    CascadeRule,
    RegistryError,
    RuleRegistry,
    default_registry,
    iter_default_rules,
)
from .schemas import FieldSpec, SourceSchema, get_schema, infer_source, iter_schemas

__all__ = [
    "DERIVED_FIELDS",
    "CascadeRule",
    "FieldSpec",
    "RegistryError",
    "RuleRegistry",
    "SourceSchema",
    "default_registry",
    "get_schema",
    "infer_source",
    "iter_default_rules",
    "iter_schemas",
]
