"""Report builder — assemble ranked findings into a Report."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from srkit.engine.scoring import rank
from srkit.model import Category, CategorySummary, Finding, Report
from srkit.signatures import Registry

logger = logging.getLogger(__name__)


def risk_score(scores: Mapping[Category, float], weights: Mapping[Category, float]) -> float:
    """Weighted mean of category scores, scaled to [0, 100]."""
    total_weight = sum(weights.get(cat, 1.0) for cat in scores)
    if total_weight <= 0:
        return 0.0
    weighted = sum(weights.get(cat, 1.0) * score for cat, score in scores.items())
    return round(min(100.0, max(0.0, 100.0 * weighted / total_weight)), 2)


def build(
    findings: Iterable[Finding],
    binary_id: str,
    categories: Iterable[Category] | None = None,
    weights: Mapping[Category, float] | None = None,
    top_n: int | None = None,
    warnings: Iterable[str] = (),
    registry: Registry | None = None,
    profile: str = "",
) -> Report:
    """Build a report over the activated categories.

    Args:
        findings: Scored, deduplicated findings.
        binary_id: Identifier of the analysed binary.
        categories: Activated categories (default: all). Every one of them
            appears in the report, with or without findings.
        weights: Per-category weight for the overall risk score; missing
            categories weigh 1.0.
        top_n: Findings shown per category; ``None`` shows all.
        warnings: Run warnings to carry into the report.
        registry: Source of per-category analyst recommendations.
        profile: Name of the analyzer profile that produced the run.
    """
    active = list(categories) if categories is not None else list(Category)
    weights = dict(weights or {})
    if top_n is not None and top_n < 0:
        raise ValueError("top_n must be non-negative")

    grouped: dict[Category, list[Finding]] = {cat: [] for cat in active}
    for f in findings:
        if f.category not in grouped:
            logger.debug("Dropping finding in inactive category %s", f.category)
            continue
        grouped[f.category].append(f)

    per_category: dict[Category, tuple[Finding, ...]] = {}
    summaries: dict[Category, CategorySummary] = {}
    scores: dict[Category, float] = {}
    recommendations: dict[Category, tuple[str, ...]] = {}
    for cat in active:
        ranked = rank(grouped[cat])
        shown = ranked if top_n is None else ranked[:top_n]
        score = max((f.confidence for f in ranked), default=0.0)
        per_category[cat] = tuple(shown)
        scores[cat] = score
        summaries[cat] = CategorySummary(
            category=cat,
            total=len(ranked),
            shown=len(shown),
            score=score,
            weight=weights.get(cat, 1.0),
        )
        if ranked and registry is not None:
            lines = registry.recommendations_for(cat)
            if lines:
                recommendations[cat] = lines

    return Report(
        binary_id=binary_id,
        per_category=per_category,
        summaries=summaries,
        overall_risk_score=risk_score(scores, weights),
        warnings=list(warnings),
        recommendations=recommendations,
        profile=profile,
    )
