"""Shared fixtures: a small in-memory signature registry."""

from __future__ import annotations

from typing import Any

import pytest

from srkit.signatures import CorrelationRule, Registry, Signature


def sig(id: str, category: str = "anti-debug", weight: float = 0.5, **clauses: Any) -> Signature:
    return Signature.model_validate({"id": id, "category": category, "weight": weight, **clauses})


def rule(id: str, signatures: list[str], category: str = "anti-debug", boost: float = 0.0) -> CorrelationRule:
    return CorrelationRule.model_validate(
        {"id": id, "category": category, "signatures": signatures, "boost": boost}
    )


@pytest.fixture
def small_registry() -> Registry:
    """ptrace/LLDB anti-debug signatures plus a network pair."""
    return Registry(
        signatures=[
            sig("ptrace-deny", weight=0.9, symbols=["ptrace"], numbers=[31]),
            sig("lldb-string", weight=0.4, strings=["LLDB"]),
            sig("sysctl", weight=0.2, symbols=["sysctl"]),
            sig("socket", category="network", weight=0.3, symbols=["socket"]),
            sig("url", category="network", weight=0.4, regex=r"https?://\S+"),
        ],
        rules=[rule("deny-and-detect", ["ptrace-deny", "lldb-string"])],
        recommendations={},
    )
