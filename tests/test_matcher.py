"""Tests for srkit.engine.matcher (Matcher, match)."""

from __future__ import annotations

import random

from conftest import sig
from srkit.engine.matcher import Matcher, match
from srkit.model import (
    Category,
    CrossReference,
    FactModel,
    InstructionPattern,
    Location,
    NumericConstant,
    StringLiteral,
    SymbolRef,
)
from srkit.signatures import load


def _ids(matches) -> list[str]:
    return [m.signature_id for m in matches]


# ---------------------------------------------------------------------------
# Single-clause signatures
# ---------------------------------------------------------------------------


class TestSingleClause:
    def test_symbol_exact(self) -> None:
        facts = FactModel([SymbolRef("ptrace", Location("main", 1)), SymbolRef("ptraced", Location("main", 2))])
        out = match(facts, [sig("p", symbols=["ptrace"])])
        assert len(out) == 1
        assert out[0].location == Location("main", 1)
        assert out[0].category is Category.ANTI_DEBUG
        assert out[0].evidence == ("symbol ptrace @ main@0x1",)

    def test_one_match_per_location(self) -> None:
        facts = FactModel(
            [SymbolRef("ptrace", Location("a", 1)), SymbolRef("ptrace", Location("b", 2))]
        )
        out = match(facts, [sig("p", symbols=["ptrace"])])
        assert [m.location.procedure for m in out] == ["a", "b"]

    def test_xref_target(self) -> None:
        facts = FactModel([CrossReference("sysctl", Location("f", 4), metadata={"type": "call"})])
        out = match(facts, [sig("x", xrefs=["sysctl"]), sig("s", symbols=["sysctl"])])
        assert _ids(out) == ["x"]

    def test_string_substring_case_sensitive(self) -> None:
        facts = FactModel(
            [
                StringLiteral("connected to LLDB server", Location("f", 1)),
                StringLiteral("lldb", Location("f", 2)),
            ]
        )
        out = match(facts, [sig("l", strings=["LLDB"])])
        assert [m.location.address for m in out] == [1]

    def test_string_multiple_needles_one_match(self) -> None:
        facts = FactModel([StringLiteral("VMware VBOX", Location("f", 1))])
        out = match(facts, [sig("vm", strings=["VMware", "VBOX"])])
        assert len(out) == 1

    def test_regex_on_strings(self) -> None:
        facts = FactModel(
            [
                StringLiteral("http://evil.example/c2", Location("f", 1)),
                StringLiteral("no url", Location("f", 2)),
            ]
        )
        out = match(facts, [sig("url", regex=r"https?://\S+")])
        assert len(out) == 1

    def test_regex_on_symbols(self) -> None:
        facts = FactModel(
            [SymbolRef("foo_server", Location("f", 1)), StringLiteral("foo_server", Location("f", 2))]
        )
        out = match(facts, [sig("mig", regex={"pattern": "_server$", "target": "symbol"})])
        assert [m.location.address for m in out] == [1]

    def test_number_value(self) -> None:
        facts = FactModel([NumericConstant(31, Location("f", 1)), NumericConstant(32, Location("f", 2))])
        out = match(facts, [sig("n", numbers=[31])])
        assert [m.location.address for m in out] == [1]

    def test_number_range(self) -> None:
        facts = FactModel(
            [
                NumericConstant(0x2000004, Location("f", 1)),
                NumericConstant(0x2000200, Location("f", 2)),
            ]
        )
        out = match(facts, [sig("n", numbers={"ranges": [[0x2000000, 0x20001FF]]})])
        assert [m.location.address for m in out] == [1]

    def test_overlapping_ranges(self) -> None:
        facts = FactModel(
            [
                NumericConstant(5, Location("f", 1)),
                NumericConstant(10, Location("f", 2)),
                NumericConstant(15, Location("f", 3)),
                NumericConstant(21, Location("f", 4)),
            ]
        )
        sigs = [
            sig("low", numbers={"ranges": [[0, 10]]}),
            sig("high", numbers={"ranges": [[10, 20], [12, 14]]}),
        ]
        out = match(facts, sigs)
        assert [(m.signature_id, m.location.address) for m in out] == [
            ("low", 1),
            ("low", 2),
            ("high", 2),
            ("high", 3),
        ]

    def test_range_and_value_in_one_clause(self) -> None:
        facts = FactModel([NumericConstant(7, Location("f", 1)), NumericConstant(100, Location("f", 2))])
        out = match(facts, [sig("n", numbers={"values": [7], "ranges": [[5, 9], [90, 110]]})])
        assert [m.location.address for m in out] == [1, 2]

    def test_tagged_number_clause(self) -> None:
        facts = FactModel(
            [
                NumericConstant(1000, Location("<global>", 0x10), metadata={"tag": "mig_subsystem"}),
                NumericConstant(1000, Location("f", 0x20)),
            ]
        )
        tagged = match(facts, [sig("mig", numbers={"ranges": [[1, 999999]], "tag": "mig_subsystem"})])
        assert [m.location.address for m in tagged] == [0x10]
        untagged = match(facts, [sig("plain", numbers=[1000])])
        assert [m.location.address for m in untagged] == [0x20]

    def test_callee_metadata_does_not_tag(self) -> None:
        facts = FactModel([NumericConstant(31, Location("f", 1), metadata={"callee": "ptrace"})])
        assert len(match(facts, [sig("n", numbers=[31])])) == 1

    def test_max_matches(self) -> None:
        facts = FactModel([SymbolRef("open", Location(f"p{i}", i)) for i in range(10)])
        out = match(facts, [sig("o", symbols=["open"], max_matches=3)])
        assert len(out) == 3
        assert [m.location.procedure for m in out] == ["p0", "p1", "p2"]

    def test_no_match_is_empty(self) -> None:
        facts = FactModel([SymbolRef("printf", Location("f", 1))])
        assert match(facts, [sig("p", symbols=["ptrace"])]) == []

    def test_empty_facts(self) -> None:
        assert match(FactModel(), [sig("p", symbols=["ptrace"])]) == []

    def test_no_signatures(self) -> None:
        assert match(FactModel([SymbolRef("ptrace")]), []) == []


# ---------------------------------------------------------------------------
# Opcode sequences
# ---------------------------------------------------------------------------


def _insns(proc: str, start: int, *items: tuple[str, tuple[str, ...]]) -> list[InstructionPattern]:
    return [
        InstructionPattern(m, ops, Location(proc, start + 4 * i)) for i, (m, ops) in enumerate(items)
    ]


class TestOpcodes:
    SVC = sig(
        "raw-svc",
        category="syscall",
        opcodes=[{"mnemonic": "mov", "operands": ["x16", "*"]}, {"mnemonic": "svc", "operands": ["0x80"]}],
    )

    def test_contiguous_window(self) -> None:
        facts = FactModel(_insns("raw", 0x100, ("mov", ("x16", "0x1a")), ("svc", ("0x80",))))
        out = match(facts, [self.SVC])
        assert len(out) == 1
        assert out[0].location == Location("raw", 0x100)
        assert len(out[0].matched_fact_ids) == 2
        assert "mov x16, 0x1a; svc 0x80" in out[0].evidence[0]

    def test_gap_breaks_sequence(self) -> None:
        facts = FactModel(
            _insns("raw", 0, ("mov", ("x16", "0x1a")), ("nop", ()), ("svc", ("0x80",)))
        )
        assert match(facts, [self.SVC]) == []

    def test_sequence_does_not_span_procedures(self) -> None:
        facts = FactModel(
            _insns("a", 0, ("mov", ("x16", "0x1a"))) + _insns("b", 4, ("svc", ("0x80",)))
        )
        assert match(facts, [self.SVC]) == []

    def test_case_insensitive(self) -> None:
        facts = FactModel(_insns("raw", 0, ("MOV", ("X16", "0x1A")), ("SVC", ("0x80",))))
        assert len(match(facts, [self.SVC])) == 1

    def test_two_occurrences(self) -> None:
        facts = FactModel(
            _insns(
                "raw",
                0,
                ("mov", ("x16", "1")),
                ("svc", ("0x80",)),
                ("mov", ("x16", "4")),
                ("svc", ("0x80",)),
            )
        )
        out = match(facts, [self.SVC])
        assert [m.location.address for m in out] == [0, 8]

    def test_truncated_at_end(self) -> None:
        facts = FactModel(_insns("raw", 0, ("mov", ("x16", "1"))))
        assert match(facts, [self.SVC]) == []


# ---------------------------------------------------------------------------
# Multi-clause signatures
# ---------------------------------------------------------------------------


class TestMultiClause:
    DENY = sig("ptrace-deny", weight=0.9, symbols=["ptrace"], numbers=[31])

    def test_same_procedure(self) -> None:
        facts = FactModel(
            [SymbolRef("ptrace", Location("main", 0x10)), NumericConstant(31, Location("main", 0x0C))]
        )
        out = match(facts, [self.DENY])
        assert len(out) == 1
        m = out[0]
        assert m.location == Location("main", 0x0C)
        assert len(m.matched_fact_ids) == 2
        assert len(m.evidence) == 2

    def test_no_cross_procedure_leakage(self) -> None:
        facts = FactModel(
            [SymbolRef("ptrace", Location("a", 0x10)), NumericConstant(31, Location("b", 0x20))]
        )
        assert match(facts, [self.DENY]) == []

    def test_global_facts_never_satisfy(self) -> None:
        facts = FactModel(
            [SymbolRef("ptrace", Location()), NumericConstant(31, Location())]
        )
        assert match(facts, [self.DENY]) == []

    def test_partial_is_no_match(self) -> None:
        facts = FactModel([SymbolRef("ptrace", Location("main", 1))])
        assert match(facts, [self.DENY]) == []

    def test_one_match_per_procedure(self) -> None:
        facts = FactModel(
            [
                SymbolRef("ptrace", Location("a", 1)),
                NumericConstant(31, Location("a", 2)),
                NumericConstant(31, Location("a", 3)),
                SymbolRef("ptrace", Location("b", 1)),
                NumericConstant(31, Location("b", 2)),
            ]
        )
        out = match(facts, [self.DENY])
        assert [m.location.procedure for m in out] == ["a", "b"]
        assert len(out[0].matched_fact_ids) == 3


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------


class TestDeterminism:
    def test_input_order_does_not_matter(self) -> None:
        facts = [
            SymbolRef("ptrace", Location("main", 0x10)),
            NumericConstant(31, Location("main", 0x0C)),
            StringLiteral("LLDB", Location("main", 0x20)),
            StringLiteral("LLDB", Location("other", 0x30)),
            SymbolRef("sysctl", Location("check", 0x40)),
        ]
        sigs = [
            sig("ptrace-deny", symbols=["ptrace"], numbers=[31]),
            sig("lldb", strings=["LLDB"]),
            sig("sysctl", symbols=["sysctl"]),
        ]
        expected = match(FactModel(facts), sigs)
        rng = random.Random(7)
        for _ in range(5):
            shuffled = list(facts)
            rng.shuffle(shuffled)
            assert match(FactModel(shuffled), sigs) == expected

    def test_matcher_reusable(self) -> None:
        m = Matcher([sig("p", symbols=["ptrace"])])
        facts = FactModel([SymbolRef("ptrace", Location("f", 1))])
        assert m.match(facts) == m.match(facts)
        assert len(m.signatures) == 1

    def test_output_ordered_by_signature(self) -> None:
        facts = FactModel(
            [StringLiteral("LLDB", Location("a", 1)), SymbolRef("sysctl", Location("a", 0))]
        )
        out = match(facts, [sig("lldb", strings=["LLDB"]), sig("sysctl", symbols=["sysctl"])])
        assert _ids(out) == ["lldb", "sysctl"]


# ---------------------------------------------------------------------------
# Superseded signatures
# ---------------------------------------------------------------------------


class TestSuperseded:
    sigs = [
        sig("ptrace-deny", symbols=["ptrace"], numbers=[31]),
        sig("ptrace", symbols=["ptrace"], superseded_by=["ptrace-deny"]),
    ]

    def test_specific_match_silences_generic(self) -> None:
        facts = FactModel([SymbolRef("ptrace", Location("main", 1)), NumericConstant(31, Location("main", 0))])
        assert _ids(match(facts, self.sigs)) == ["ptrace-deny"]

    def test_generic_kept_in_other_procedures(self) -> None:
        facts = FactModel(
            [
                SymbolRef("ptrace", Location("main", 1)),
                NumericConstant(31, Location("main", 0)),
                SymbolRef("ptrace", Location("attach", 8)),
            ]
        )
        out = match(facts, self.sigs)
        assert [(m.signature_id, m.location.procedure) for m in out] == [
            ("ptrace-deny", "main"),
            ("ptrace", "attach"),
        ]

    def test_generic_alone(self) -> None:
        facts = FactModel([SymbolRef("ptrace", Location("main", 1))])
        assert _ids(match(facts, self.sigs)) == ["ptrace"]

    def test_superseding_signature_not_selected(self) -> None:
        facts = FactModel([SymbolRef("ptrace", Location("main", 1)), NumericConstant(31, Location("main", 0))])
        assert _ids(match(facts, self.sigs[1:])) == ["ptrace"]


# ---------------------------------------------------------------------------
# Swift symbols in the built-in catalogue
# ---------------------------------------------------------------------------


def _swift_hits(category: Category, *names: str) -> list[str]:
    facts = FactModel([SymbolRef(name, Location("f", i)) for i, name in enumerate(names)])
    return [m.evidence[0] for m in match(facts, load().signatures_for(category))]


class TestSwiftSignatures:
    def test_file_manager(self) -> None:
        hits = _swift_hits(Category.FILE_OPS, "$s10Foundation11FileManagerC7defaultACvgZ")
        assert len(hits) == 1 and "FileManager" in hits[0]

    def test_data_write_with_leading_underscore(self) -> None:
        name = "_$s10Foundation4DataV5write2to7optionsyAA3URLV_So20NSDataWritingOptionsVtKF"
        assert len(_swift_hits(Category.FILE_OPS, name)) == 1

    def test_url_session(self) -> None:
        hits = _swift_hits(
            Category.NETWORK,
            "$s10Foundation10URLSessionC6sharedACvgZ",
            "$s7Network12NWConnectionC5startyyAA0B0V5QueueVF",
        )
        assert len(hits) == 2

    def test_objc_and_plain_names_ignored(self) -> None:
        names = (
            "-[NSFileManager removeItemAtPath:error:]",
            "objc_msgSend$s10URLSession",
            "FileManagerHelper",
            "$s10Foundation11FileManagerC_data",
        )
        assert _swift_hits(Category.FILE_OPS, *names) == []
        assert _swift_hits(Category.NETWORK, "URLSessionWrapper", "$sSiN") == []
