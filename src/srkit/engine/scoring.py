"""Scoring, deduplication and ranking of findings."""

from __future__ import annotations

from typing import Iterable

from srkit.model import Category, Finding
from srkit.signatures import Registry


def combine(weights: Iterable[float], boost: float = 0.0) -> float:
    """Independent-evidence combination: ``1 - (1-boost) * prod(1 - w)``.

    Never decreases when a weight is added, and saturates at 1.0.
    """
    miss = 1.0 - boost
    for w in weights:
        miss *= 1.0 - w
    return min(1.0, max(0.0, 1.0 - miss))


def confidence_for(
    signature_ids: Iterable[str], registry: Registry, rule_id: str | None = None
) -> float:
    """Confidence of a finding from its distinct contributors' weights."""
    seen: list[str] = []
    for sig_id in signature_ids:
        if sig_id not in seen:
            seen.append(sig_id)
    seen.sort(key=registry.order)
    weights = [registry.get(s).weight for s in seen]  # type: ignore[union-attr]
    boost = 0.0
    if rule_id is not None:
        rule = registry.rule(rule_id)
        if rule is not None:
            boost = rule.boost
    return combine(weights, boost)


def _rank_key(f: Finding) -> tuple:
    return (-f.confidence, f.location, f.contributing_signatures)


def deduplicate(findings: Iterable[Finding]) -> list[Finding]:
    """Collapse findings with the same category, procedure and signature set.

    The survivor keeps the higher confidence, the earliest location and
    the union of evidence in first-seen order. Idempotent.
    """
    merged: dict[tuple, Finding] = {}
    for f in findings:
        key = f.dedup_key()
        prev = merged.get(key)
        if prev is None:
            merged[key] = f
            continue
        best = f if f.confidence > prev.confidence else prev
        evidence = list(prev.evidence)
        for line in f.evidence:
            if line not in evidence:
                evidence.append(line)
        merged[key] = Finding(
            category=best.category,
            location=min(prev.location, f.location),
            contributing_signatures=best.contributing_signatures,
            confidence=best.confidence,
            evidence=tuple(evidence),
            rule_id=best.rule_id,
            title=best.title,
        )
    return list(merged.values())


def rank(findings: Iterable[Finding]) -> list[Finding]:
    """Descending confidence, then ascending location, then signature ids."""
    return sorted(findings, key=_rank_key)


def score_category(findings: Iterable[Finding], registry: Registry) -> list[Finding]:
    """Rescore from registry weights, deduplicate and rank one category's findings."""
    rescored = [
        Finding(
            category=f.category,
            location=f.location,
            contributing_signatures=f.contributing_signatures,
            confidence=confidence_for(f.contributing_signatures, registry, f.rule_id),
            evidence=f.evidence,
            rule_id=f.rule_id,
            title=f.title,
        )
        for f in findings
    ]
    return rank(deduplicate(rescored))


def score(findings: Iterable[Finding], registry: Registry) -> dict[Category, list[Finding]]:
    """Score every category's findings; categories without findings are omitted."""
    by_category: dict[Category, list[Finding]] = {}
    for f in findings:
        by_category.setdefault(f.category, []).append(f)
    return {cat: score_category(items, registry) for cat, items in by_category.items()}
