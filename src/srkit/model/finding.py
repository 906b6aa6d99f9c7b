"""RawMatch, Finding and Report data types."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from srkit.model.category import Category
from srkit.model.facts import Location


@dataclass(frozen=True)
class RawMatch:
    """An unscored hit of one signature at one location."""

    signature_id: str
    category: Category
    location: Location
    matched_fact_ids: tuple[int, ...] = ()
    evidence: tuple[str, ...] = ()


@dataclass(frozen=True)
class Finding:
    """A scored conclusion about one procedure in one category.

    ``contributing_signatures`` is kept in registry order. A finding with
    more than one contributor was fused by a correlation rule (``rule_id``).
    """

    category: Category
    location: Location
    contributing_signatures: tuple[str, ...]
    confidence: float = 0.0
    evidence: tuple[str, ...] = ()
    rule_id: str | None = None
    title: str = ""

    def __post_init__(self) -> None:
        if not self.contributing_signatures:
            raise ValueError("a finding needs at least one contributing signature")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def procedure(self) -> str:
        return self.location.procedure

    @property
    def is_composite(self) -> bool:
        return len(self.contributing_signatures) > 1

    def dedup_key(self) -> tuple[Category, str, frozenset[str]]:
        return (self.category, self.procedure, frozenset(self.contributing_signatures))

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "procedure": self.location.procedure,
            "address": f"0x{self.location.address:x}",
            "title": self.title,
            "confidence": round(self.confidence, 6),
            "signatures": list(self.contributing_signatures),
            "rule": self.rule_id,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class CategorySummary:
    category: Category
    total: int = 0
    shown: int = 0
    score: float = 0.0
    weight: float = 1.0


@dataclass
class Report:
    """The outcome of one analysis run.

    ``per_category`` holds every activated category, in activation order,
    each mapped to its findings in descending confidence.
    """

    binary_id: str
    per_category: dict[Category, tuple[Finding, ...]] = field(default_factory=dict)
    summaries: dict[Category, CategorySummary] = field(default_factory=dict)
    overall_risk_score: float = 0.0
    warnings: list[str] = field(default_factory=list)
    recommendations: dict[Category, tuple[str, ...]] = field(default_factory=dict)
    profile: str = ""

    @property
    def categories(self) -> list[Category]:
        return list(self.per_category)

    def findings(self) -> list[Finding]:
        """All shown findings, category by category."""
        return [f for findings in self.per_category.values() for f in findings]

    @property
    def total_findings(self) -> int:
        return sum(s.total for s in self.summaries.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "binary": self.binary_id,
            "profile": self.profile,
            "overall_risk_score": self.overall_risk_score,
            "categories": [
                {
                    "category": cat.value,
                    "label": cat.label,
                    "total": self.summaries[cat].total,
                    "shown": self.summaries[cat].shown,
                    "score": round(self.summaries[cat].score, 6),
                    "findings": [f.to_dict() for f in findings],
                    "recommendations": list(self.recommendations.get(cat, ())),
                }
                for cat, findings in self.per_category.items()
            ],
            "warnings": list(self.warnings),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
