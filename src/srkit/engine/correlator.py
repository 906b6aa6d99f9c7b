"""Composite correlator — fuse co-present signatures into composite findings.

Raw matches are grouped by (procedure, category). Inside a group a
correlation rule applies when every signature it names matched. Rules are
tried largest first, ties going to the rule declared earlier; a rule that
shares a signature with one already applied is skipped and reported as a
``CorrelationRuleConflict``. Whatever no rule claimed becomes a
single-signature finding.
"""

from __future__ import annotations

import logging
from typing import Iterable

from srkit.engine.scoring import confidence_for
from srkit.errors import CorrelationRuleConflict
from srkit.model import Category, Finding, RawMatch
from srkit.signatures import CorrelationRule, Registry

logger = logging.getLogger(__name__)


def _group(raw: Iterable[RawMatch]) -> dict[tuple[str, Category], dict[str, list[RawMatch]]]:
    groups: dict[tuple[str, Category], dict[str, list[RawMatch]]] = {}
    for m in raw:
        key = (m.location.procedure, m.category)
        groups.setdefault(key, {}).setdefault(m.signature_id, []).append(m)
    return groups


def _evidence(matches: Iterable[RawMatch]) -> tuple[str, ...]:
    out: list[str] = []
    for m in sorted(matches, key=lambda m: (m.location, m.matched_fact_ids)):
        for line in m.evidence:
            if line not in out:
                out.append(line)
    return tuple(out)


def _composite(
    rule: CorrelationRule,
    by_sig: dict[str, list[RawMatch]],
    registry: Registry,
) -> Finding:
    sig_ids = tuple(sorted(rule.signatures, key=registry.order))
    matches = [m for sig_id in sig_ids for m in by_sig[sig_id]]
    location = min(m.location for m in matches)
    evidence: list[str] = []
    for sig_id in sig_ids:
        for line in _evidence(by_sig[sig_id]):
            if line not in evidence:
                evidence.append(line)
    return Finding(
        category=rule.category,
        location=location,
        contributing_signatures=sig_ids,
        confidence=confidence_for(sig_ids, registry, rule.id),
        evidence=tuple(evidence),
        rule_id=rule.id,
        title=rule.title or rule.id,
    )


def _solo(m: RawMatch, registry: Registry) -> Finding:
    sig = registry.get(m.signature_id)
    if sig is None:
        raise KeyError(f"raw match for unknown signature {m.signature_id!r}")
    return Finding(
        category=m.category,
        location=m.location,
        contributing_signatures=(sig.id,),
        confidence=confidence_for((sig.id,), registry),
        evidence=m.evidence,
        title=sig.display_title,
    )


def correlate(
    raw: Iterable[RawMatch],
    registry: Registry,
    warnings: list[CorrelationRuleConflict] | None = None,
) -> list[Finding]:
    """Turn raw matches into findings.

    Args:
        raw: Raw matches from the matching engine.
        registry: The registry the matches came from.
        warnings: If given, rule conflicts are appended to it.

    Returns:
        Findings ordered by (procedure, category) group and, within a
        group, composites first in application order, then solo findings
        in registry order.
    """
    findings: list[Finding] = []
    groups = _group(raw)
    cat_order = {cat: i for i, cat in enumerate(Category)}

    for (proc, cat) in sorted(groups, key=lambda k: (k[0], cat_order[k[1]])):
        by_sig = groups[(proc, cat)]
        present = set(by_sig)
        candidates = [
            rule for rule in registry.rules_for(cat) if present.issuperset(rule.signatures)
        ]
        candidates.sort(key=lambda r: (-len(r.signatures), registry.rule_order(r.id)))

        claimed: dict[str, str] = {}  # signature id -> rule id that took it
        for rule in candidates:
            overlap = [s for s in rule.signatures if s in claimed]
            if overlap:
                conflict = CorrelationRuleConflict(
                    winner=claimed[overlap[0]], loser=rule.id, procedure=proc
                )
                logger.warning("Correlation conflict: %s", conflict)
                if warnings is not None:
                    warnings.append(conflict)
                continue
            for s in rule.signatures:
                claimed[s] = rule.id
            findings.append(_composite(rule, by_sig, registry))

        for sig_id in sorted(present - set(claimed), key=registry.order):
            for m in by_sig[sig_id]:
                findings.append(_solo(m, registry))

    return findings
