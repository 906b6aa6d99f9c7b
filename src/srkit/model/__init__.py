"""Fact, finding and report data types shared by every stage."""

from srkit.model.category import Category
from srkit.model.facts import (
    GLOBAL_PROCEDURE,
    CrossReference,
    Fact,
    FactKind,
    FactModel,
    InstructionPattern,
    Location,
    NumericConstant,
    StringLiteral,
    SymbolRef,
    fact_from_dict,
)
from srkit.model.finding import CategorySummary, Finding, RawMatch, Report

__all__ = [
    "GLOBAL_PROCEDURE",
    "Category",
    "CategorySummary",
    "CrossReference",
    "Fact",
    "FactKind",
    "FactModel",
    "Finding",
    "InstructionPattern",
    "Location",
    "NumericConstant",
    "RawMatch",
    "Report",
    "StringLiteral",
    "SymbolRef",
    "fact_from_dict",
]
