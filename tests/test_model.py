"""Tests for srkit.model (Category, facts, FactModel, Finding, Report)."""

from __future__ import annotations

import json

import pytest

from srkit.model import (
    GLOBAL_PROCEDURE,
    Category,
    CategorySummary,
    CrossReference,
    FactKind,
    FactModel,
    Finding,
    InstructionPattern,
    Location,
    NumericConstant,
    Report,
    StringLiteral,
    SymbolRef,
    fact_from_dict,
)


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------


class TestCategory:
    def test_twelve_categories(self) -> None:
        assert len(Category) == 12

    def test_values_are_kebab_case(self) -> None:
        for cat in Category:
            assert cat.value == cat.value.lower()
            assert "_" not in cat.value

    def test_every_category_has_a_label(self) -> None:
        for cat in Category:
            assert cat.label
            assert cat.label != cat.value

    def test_parse_value(self) -> None:
        assert Category.parse("mach-ipc") is Category.MACH_IPC

    def test_parse_name_case_insensitive(self) -> None:
        assert Category.parse("process_injection") is Category.PROCESS_INJECTION
        assert Category.parse("XPC") is Category.XPC

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError):
            Category.parse("bogus")


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------


class TestLocation:
    def test_default_is_global(self) -> None:
        loc = Location()
        assert loc.procedure == GLOBAL_PROCEDURE
        assert loc.is_global

    def test_str(self) -> None:
        assert str(Location("main", 0x1f00)) == "main@0x1f00"

    def test_ordering(self) -> None:
        assert Location("a", 10) < Location("a", 11) < Location("b", 0)


# ---------------------------------------------------------------------------
# Fact variants
# ---------------------------------------------------------------------------


class TestFacts:
    def test_metadata_ignored_in_equality(self) -> None:
        a = SymbolRef("ptrace", Location("main", 1), metadata={"origin": "call"})
        b = SymbolRef("ptrace", Location("main", 1))
        assert a == b

    def test_describe_symbol(self) -> None:
        s = SymbolRef("ptrace", Location("main", 0x10), metadata={"origin": "call"})
        assert s.describe() == "symbol ptrace (call) @ main@0x10"

    def test_describe_long_string_truncated(self) -> None:
        s = StringLiteral("A" * 200, Location("f", 0))
        assert len(s.describe()) < 120
        assert "..." in s.describe()

    def test_numeric_tag(self) -> None:
        n = NumericConstant(1000, metadata={"tag": "mig_subsystem"})
        assert n.tag == "mig_subsystem"
        assert "[mig_subsystem]" in n.describe()
        assert NumericConstant(5).tag is None

    def test_instruction_text(self) -> None:
        insn = InstructionPattern("mov", ("x16", "0x1a"))
        assert insn.text() == "mov x16, 0x1a"
        assert InstructionPattern("syscall").text() == "syscall"

    def test_xref_describe_uses_type(self) -> None:
        x = CrossReference("sysctl", Location("f", 4), metadata={"type": "call"})
        assert x.describe().startswith("call -> sysctl")

    def test_dict_round_trip_keeps_metadata(self) -> None:
        n = NumericConstant(31, Location("main", 8), metadata={"callee": "ptrace"})
        back = fact_from_dict(n.to_dict())
        assert back == n
        assert back.metadata == {"callee": "ptrace"}


# ---------------------------------------------------------------------------
# FactModel
# ---------------------------------------------------------------------------


def _facts() -> list:
    return [
        StringLiteral("LLDB", Location("main", 0x20)),
        SymbolRef("ptrace", Location("main", 0x10)),
        NumericConstant(31, Location("main", 0x0c)),
        InstructionPattern("svc", ("0x80",), Location("raw", 0x104)),
        InstructionPattern("mov", ("x16", "0x1a"), Location("raw", 0x100)),
        CrossReference("sysctl", Location("check", 0x40)),
    ]


class TestFactModel:
    def test_ids_are_positions(self) -> None:
        model = FactModel(_facts())
        assert [f.id for f in model] == list(range(len(model)))
        for f in model:
            assert model.get(f.id) is f

    def test_canonical_order_independent_of_input_order(self) -> None:
        a = FactModel(_facts())
        b = FactModel(list(reversed(_facts())))
        assert a.to_dict() == b.to_dict()

    def test_kind_views(self) -> None:
        model = FactModel(_facts())
        assert [s.name for s in model.symbols] == ["ptrace"]
        assert [s.text for s in model.strings] == ["LLDB"]
        assert [n.value for n in model.numbers] == [31]
        assert [x.target for x in model.xrefs] == ["sysctl"]
        assert len(model.of_kind(FactKind.INSTRUCTION)) == 2

    def test_instruction_sequences_sorted_by_address(self) -> None:
        seq = FactModel(_facts()).instruction_sequences()
        assert list(seq) == ["raw"]
        assert [i.mnemonic for i in seq["raw"]] == ["mov", "svc"]

    def test_procedures_and_counts(self) -> None:
        model = FactModel(_facts())
        assert model.procedures() == ["check", "main", "raw"]
        assert model.counts()["instruction"] == 2

    def test_empty(self) -> None:
        model = FactModel()
        assert len(model) == 0
        assert model.instruction_sequences() == {}

    def test_from_dict(self) -> None:
        model = FactModel(_facts())
        again = FactModel.from_dict(json.loads(json.dumps(model.to_dict())))
        assert again.to_dict() == model.to_dict()


# ---------------------------------------------------------------------------
# Finding
# ---------------------------------------------------------------------------


class TestFinding:
    def test_requires_contributors(self) -> None:
        with pytest.raises(ValueError):
            Finding(Category.C2, Location("f", 0), ())

    def test_confidence_range(self) -> None:
        with pytest.raises(ValueError):
            Finding(Category.C2, Location("f", 0), ("a",), confidence=1.5)

    def test_composite(self) -> None:
        f = Finding(Category.C2, Location("f", 0), ("a", "b"), 0.5, rule_id="r")
        assert f.is_composite
        assert not Finding(Category.C2, Location("f", 0), ("a",), 0.5).is_composite

    def test_dedup_key_ignores_address_and_order(self) -> None:
        a = Finding(Category.C2, Location("f", 0), ("a", "b"), 0.5)
        b = Finding(Category.C2, Location("f", 9), ("b", "a"), 0.7)
        assert a.dedup_key() == b.dedup_key()

    def test_to_dict(self) -> None:
        f = Finding(Category.XPC, Location("f", 255), ("a",), 0.25, evidence=("e",), title="T")
        d = f.to_dict()
        assert d["category"] == "xpc"
        assert d["address"] == "0xff"
        assert d["signatures"] == ["a"]
        assert d["rule"] is None


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class TestReport:
    def test_json_shape(self) -> None:
        f = Finding(Category.C2, Location("f", 0), ("a",), 0.5)
        report = Report(
            binary_id="bin",
            per_category={Category.C2: (f,), Category.XPC: ()},
            summaries={
                Category.C2: CategorySummary(Category.C2, total=1, shown=1, score=0.5),
                Category.XPC: CategorySummary(Category.XPC),
            },
            overall_risk_score=25.0,
            recommendations={Category.C2: ("block it",)},
        )
        data = json.loads(report.to_json())
        assert data["binary"] == "bin"
        assert [c["category"] for c in data["categories"]] == ["c2", "xpc"]
        assert data["categories"][0]["recommendations"] == ["block it"]
        assert data["categories"][1]["findings"] == []
        assert report.total_findings == 1
        assert report.findings() == [f]
