"""Matching engine — scan a FactModel against a set of signatures.

All clause lookups are precomputed once per ``Matcher``: exact names and
numeric values go into hash maps, substring needles into one Aho-Corasick
automaton, opcode sequences into a first-mnemonic index. Each fact is
visited once per clause kind that targets it, so the cost grows with
facts plus signatures rather than their product.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from srkit.engine.automaton import AhoCorasick
from srkit.model import (
    FactModel,
    InstructionPattern,
    Location,
    NumericConstant,
    RawMatch,
)
from srkit.signatures.schema import (
    NumberClause,
    OpcodeClause,
    RegexClause,
    Signature,
    StringClause,
    SymbolClause,
    XrefClause,
)

logger = logging.getLogger(__name__)

ClauseRef = tuple[int, int]  # (signature index, clause index)


@dataclass(frozen=True, order=True)
class ClauseHit:
    """One clause satisfied by one fact (or one instruction window)."""

    location: Location
    fact_ids: tuple[int, ...]
    evidence: str


class _RangeIndex:
    """Inclusive integer ranges split into elementary segments.

    Boundaries are sorted once; a lookup is one ``bisect`` plus the clauses
    covering that segment.
    """

    def __init__(self, ranges: list[tuple[int, int, ClauseRef, NumberClause]]) -> None:
        self._points = sorted({lo for lo, _, _, _ in ranges} | {hi + 1 for _, hi, _, _ in ranges})
        self._segments: list[list[tuple[ClauseRef, NumberClause]]] = [
            [] for _ in self._points
        ]
        seen: set[tuple[int, ClauseRef]] = set()
        for lo, hi, ref, clause in ranges:
            start = bisect.bisect_left(self._points, lo)
            end = bisect.bisect_left(self._points, hi + 1)
            for i in range(start, end):
                if (i, ref) not in seen:
                    seen.add((i, ref))
                    self._segments[i].append((ref, clause))

    def covering(self, value: int) -> list[tuple[ClauseRef, NumberClause]]:
        i = bisect.bisect_right(self._points, value) - 1
        if i < 0:
            return []
        return self._segments[i]


class Matcher:
    """Per-run index over a sequence of signatures."""

    def __init__(self, signatures: Sequence[Signature]) -> None:
        self._signatures = tuple(signatures)
        self._symbols: dict[str, list[ClauseRef]] = {}
        self._xrefs: dict[str, list[ClauseRef]] = {}
        self._needles: dict[str, list[ClauseRef]] = {}
        self._string_regexes: list[tuple[ClauseRef, RegexClause]] = []
        self._symbol_regexes: list[tuple[ClauseRef, RegexClause]] = []
        self._number_values: dict[int, list[tuple[ClauseRef, NumberClause]]] = {}
        ranges: list[tuple[int, int, ClauseRef, NumberClause]] = []
        self._opcodes: dict[str, list[tuple[ClauseRef, OpcodeClause]]] = {}

        for si, sig in enumerate(self._signatures):
            for ci, clause in enumerate(sig.clauses):
                ref = (si, ci)
                if isinstance(clause, SymbolClause):
                    for name in set(clause.names):
                        self._symbols.setdefault(name, []).append(ref)
                elif isinstance(clause, XrefClause):
                    for target in set(clause.targets):
                        self._xrefs.setdefault(target, []).append(ref)
                elif isinstance(clause, StringClause):
                    for needle in set(clause.contains):
                        self._needles.setdefault(needle, []).append(ref)
                elif isinstance(clause, RegexClause):
                    if clause.target == "symbol":
                        self._symbol_regexes.append((ref, clause))
                    else:
                        self._string_regexes.append((ref, clause))
                elif isinstance(clause, NumberClause):
                    for value in set(clause.values):
                        self._number_values.setdefault(value, []).append((ref, clause))
                    ranges.extend((lo, hi, ref, clause) for lo, hi in clause.ranges)
                elif isinstance(clause, OpcodeClause):
                    first = clause.sequence[0].mnemonic
                    self._opcodes.setdefault(first, []).append((ref, clause))

        self._automaton = AhoCorasick(self._needles)
        self._number_ranges = _RangeIndex(ranges)

    @property
    def signatures(self) -> tuple[Signature, ...]:
        return self._signatures

    # ----- clause scanning -----

    def _scan_clauses(self, facts: FactModel) -> dict[ClauseRef, set[ClauseHit]]:
        hits: dict[ClauseRef, set[ClauseHit]] = {}

        def record(ref: ClauseRef, hit: ClauseHit) -> None:
            hits.setdefault(ref, set()).add(hit)

        for sym in facts.symbols:
            hit = ClauseHit(sym.location, (sym.id,), sym.describe())
            for ref in self._symbols.get(sym.name, ()):
                record(ref, hit)
            for ref, clause in self._symbol_regexes:
                if clause.compiled.search(sym.name):
                    record(ref, hit)

        for xref in facts.xrefs:
            refs = self._xrefs.get(xref.target)
            if refs:
                hit = ClauseHit(xref.location, (xref.id,), xref.describe())
                for ref in refs:
                    record(ref, hit)

        for lit in facts.strings:
            hit = ClauseHit(lit.location, (lit.id,), lit.describe())
            for needle in self._automaton.find(lit.text):
                for ref in self._needles[needle]:
                    record(ref, hit)
            for ref, clause in self._string_regexes:
                if clause.compiled.search(lit.text):
                    record(ref, hit)

        for num in facts.numbers:
            hit = ClauseHit(num.location, (num.id,), num.describe())
            for ref, clause in self._number_values.get(num.value, ()):
                if _tag_ok(clause, num):
                    record(ref, hit)
            for ref, clause in self._number_ranges.covering(num.value):
                if _tag_ok(clause, num):
                    record(ref, hit)

        if self._opcodes:
            for sequence in facts.instruction_sequences().values():
                self._scan_sequence(sequence, record)

        return hits

    def _scan_sequence(self, sequence: tuple[InstructionPattern, ...], record) -> None:
        """Contiguous windowed match; at most len(sequence) * window steps per clause."""
        norm = [
            (insn.mnemonic.lower(), tuple(op.strip().lower() for op in insn.operands))
            for insn in sequence
        ]
        n = len(norm)
        for i, (mnemonic, _) in enumerate(norm):
            for ref, clause in self._opcodes.get(mnemonic, ()):
                end = i + clause.window
                if end > n:
                    continue
                if all(
                    step.accepts(*norm[i + k]) for k, step in enumerate(clause.sequence)
                ):
                    window = sequence[i:end]
                    text = "; ".join(insn.text() for insn in window)
                    record(
                        ref,
                        ClauseHit(
                            window[0].location,
                            tuple(insn.id for insn in window),
                            f"insns '{text}' @ {window[0].location}",
                        ),
                    )

    # ----- emission -----

    def match(self, facts: FactModel) -> list[RawMatch]:
        hits = self._scan_clauses(facts)
        per_sig: list[list[RawMatch]] = []
        for si, sig in enumerate(self._signatures):
            if sig.is_multi_clause:
                emitted = _combine_clauses(sig, [hits.get((si, ci), set()) for ci in range(len(sig.clauses))])
            else:
                emitted = [
                    RawMatch(
                        signature_id=sig.id,
                        category=sig.category,
                        location=hit.location,
                        matched_fact_ids=hit.fact_ids,
                        evidence=(hit.evidence,),
                    )
                    for hit in sorted(hits.get((si, 0), ()))
                ]
            per_sig.append(emitted)

        # A generic signature stays quiet in procedures where a more
        # specific one it names in ``superseded_by`` matched.
        procs_by_id: dict[str, set[str]] = {}
        for sig, emitted in zip(self._signatures, per_sig):
            procs_by_id[sig.id] = {m.location.procedure for m in emitted}

        matches: list[RawMatch] = []
        for sig, emitted in zip(self._signatures, per_sig):
            if sig.superseded_by:
                covered: set[str] = set()
                for other in sig.superseded_by:
                    covered |= procs_by_id.get(other, set())
                if covered:
                    kept = [m for m in emitted if m.location.procedure not in covered]
                    if len(kept) != len(emitted):
                        logger.debug(
                            "Signature %s superseded in %d procedure(s)",
                            sig.id,
                            len(emitted) - len(kept),
                        )
                    emitted = kept
            if sig.max_matches is not None and len(emitted) > sig.max_matches:
                logger.debug(
                    "Signature %s capped at %d of %d matches", sig.id, sig.max_matches, len(emitted)
                )
                emitted = emitted[: sig.max_matches]
            matches.extend(emitted)
        return matches


def _tag_ok(clause: NumberClause, num: NumericConstant) -> bool:
    # Untagged clauses only see plain operands; tagged ones only their tag.
    return clause.tag == num.tag


def _combine_clauses(sig: Signature, clause_hits: list[set[ClauseHit]]) -> list[RawMatch]:
    """All clauses must hit inside the same procedure; never in the global scope."""
    per_proc: list[dict[str, list[ClauseHit]]] = []
    for hits in clause_hits:
        grouped: dict[str, list[ClauseHit]] = {}
        for hit in hits:
            if hit.location.is_global:
                continue
            grouped.setdefault(hit.location.procedure, []).append(hit)
        per_proc.append(grouped)

    common = set(per_proc[0])
    for grouped in per_proc[1:]:
        common &= set(grouped)

    out: list[RawMatch] = []
    for proc in sorted(common):
        fact_ids: set[int] = set()
        evidence: list[str] = []
        first: Location | None = None
        for grouped in per_proc:
            for hit in sorted(grouped[proc]):
                fact_ids.update(hit.fact_ids)
                if hit.evidence not in evidence:
                    evidence.append(hit.evidence)
                if first is None or hit.location < first:
                    first = hit.location
        assert first is not None
        out.append(
            RawMatch(
                signature_id=sig.id,
                category=sig.category,
                location=first,
                matched_fact_ids=tuple(sorted(fact_ids)),
                evidence=tuple(evidence),
            )
        )
    return out


def match(facts: FactModel, signatures: Iterable[Signature]) -> list[RawMatch]:
    """Match ``facts`` against ``signatures``.

    Returns raw matches ordered by signature (in the order given) and then
    by location. No match is not an error: the result is simply empty.
    """
    return Matcher(list(signatures)).match(facts)
