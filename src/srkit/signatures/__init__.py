"""Signature catalogue: schema, loader and registry."""

from srkit.signatures.registry import (
    BUILTIN_CATALOGUE_DIR,
    Registry,
    default_registry,
    load,
)
from srkit.signatures.schema import (
    CATALOGUE_VERSION,
    Clause,
    CorrelationRule,
    NumberClause,
    OpcodeClause,
    OpcodeStep,
    RegexClause,
    Signature,
    StringClause,
    SymbolClause,
    XrefClause,
)

__all__ = [
    "BUILTIN_CATALOGUE_DIR",
    "CATALOGUE_VERSION",
    "Clause",
    "CorrelationRule",
    "NumberClause",
    "OpcodeClause",
    "OpcodeStep",
    "RegexClause",
    "Registry",
    "Signature",
    "StringClause",
    "SymbolClause",
    "XrefClause",
    "default_registry",
    "load",
]
