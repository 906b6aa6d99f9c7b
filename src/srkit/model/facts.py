"""Facts — atomic observations extracted from a binary.

A fact is one of five immutable variants (symbol reference, string literal,
numeric constant, instruction, cross reference), each pinned to a
``Location``. ``FactModel`` owns the facts of one analysis run and puts
them in a canonical order so that the same fact set always yields the same
model, whatever order the provider enumerated it in.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Iterable, Iterator, Union

GLOBAL_PROCEDURE = "<global>"


class FactKind(enum.StrEnum):
    SYMBOL = "symbol"
    STRING = "string"
    NUMBER = "number"
    INSTRUCTION = "instruction"
    XREF = "xref"


_KIND_ORDER = {kind: i for i, kind in enumerate(FactKind)}


@dataclass(frozen=True, order=True)
class Location:
    """A procedure scope plus an address inside it."""

    procedure: str = GLOBAL_PROCEDURE
    address: int = 0

    @property
    def is_global(self) -> bool:
        return self.procedure == GLOBAL_PROCEDURE

    def __str__(self) -> str:
        return f"{self.procedure}@0x{self.address:x}"


class _FactMixin:
    kind: ClassVar[FactKind]
    location: Location
    metadata: dict[str, Any]
    id: int

    @property
    def procedure(self) -> str:
        return self.location.procedure

    def value_key(self) -> tuple:
        raise NotImplementedError

    def describe(self) -> str:
        """Human-readable one-liner used as finding evidence."""
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "procedure": self.location.procedure,
            "address": self.location.address,
        }
        data.update(self._value_dict())
        if self.metadata:
            data["metadata"] = dict(sorted(self.metadata.items()))
        return data

    def _value_dict(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class SymbolRef(_FactMixin):
    """A reference to a named symbol (import, export or call target)."""

    kind: ClassVar[FactKind] = FactKind.SYMBOL

    name: str
    location: Location = field(default_factory=Location)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    id: int = field(default=-1, compare=False)

    def value_key(self) -> tuple:
        return (self.name,)

    def describe(self) -> str:
        origin = self.metadata.get("origin")
        suffix = f" ({origin})" if origin else ""
        return f"symbol {self.name}{suffix} @ {self.location}"

    def _value_dict(self) -> dict[str, Any]:
        return {"name": self.name}


@dataclass(frozen=True)
class StringLiteral(_FactMixin):
    """A string literal, attributed to the procedure that references it."""

    kind: ClassVar[FactKind] = FactKind.STRING

    text: str
    location: Location = field(default_factory=Location)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    id: int = field(default=-1, compare=False)

    def value_key(self) -> tuple:
        return (self.text,)

    def describe(self) -> str:
        shown = self.text if len(self.text) <= 80 else self.text[:77] + "..."
        return f"string {shown!r} @ {self.location}"

    def _value_dict(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True)
class NumericConstant(_FactMixin):
    """An immediate operand or structured constant.

    ``metadata["tag"]`` names structured constants (e.g. ``mig_subsystem``)
    and ``metadata["callee"]``/``metadata["arg_index"]`` record which call
    the constant was passed to, when the provider knows.
    """

    kind: ClassVar[FactKind] = FactKind.NUMBER

    value: int
    location: Location = field(default_factory=Location)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    id: int = field(default=-1, compare=False)

    @property
    def tag(self) -> str | None:
        return self.metadata.get("tag")

    def value_key(self) -> tuple:
        return (self.value,)

    def describe(self) -> str:
        tag = f" [{self.tag}]" if self.tag else ""
        return f"constant 0x{self.value:x}{tag} @ {self.location}"

    def _value_dict(self) -> dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class InstructionPattern(_FactMixin):
    """One disassembled instruction: mnemonic plus operand text."""

    kind: ClassVar[FactKind] = FactKind.INSTRUCTION

    mnemonic: str
    operands: tuple[str, ...] = ()
    location: Location = field(default_factory=Location)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    id: int = field(default=-1, compare=False)

    def value_key(self) -> tuple:
        return (self.mnemonic, self.operands)

    def text(self) -> str:
        if not self.operands:
            return self.mnemonic
        return f"{self.mnemonic} {', '.join(self.operands)}"

    def describe(self) -> str:
        return f"insn '{self.text()}' @ {self.location}"

    def _value_dict(self) -> dict[str, Any]:
        return {"mnemonic": self.mnemonic, "operands": list(self.operands)}


@dataclass(frozen=True)
class CrossReference(_FactMixin):
    """An edge from a location to a named target (usually a call)."""

    kind: ClassVar[FactKind] = FactKind.XREF

    target: str
    location: Location = field(default_factory=Location)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    id: int = field(default=-1, compare=False)

    def value_key(self) -> tuple:
        return (self.target,)

    def describe(self) -> str:
        xref_type = self.metadata.get("type", "ref")
        return f"{xref_type} -> {self.target} @ {self.location}"

    def _value_dict(self) -> dict[str, Any]:
        return {"target": self.target}


Fact = Union[SymbolRef, StringLiteral, NumericConstant, InstructionPattern, CrossReference]

FACT_TYPES: dict[FactKind, type] = {
    FactKind.SYMBOL: SymbolRef,
    FactKind.STRING: StringLiteral,
    FactKind.NUMBER: NumericConstant,
    FactKind.INSTRUCTION: InstructionPattern,
    FactKind.XREF: CrossReference,
}


def _canonical_key(fact: Fact) -> tuple:
    meta = tuple(sorted((k, repr(v)) for k, v in fact.metadata.items()))
    return (_KIND_ORDER[fact.kind], fact.location, fact.value_key(), meta)


def fact_from_dict(data: dict[str, Any]) -> Fact:
    """Inverse of ``Fact.to_dict``."""
    kind = FactKind(data["kind"])
    location = Location(
        procedure=data.get("procedure") or GLOBAL_PROCEDURE,
        address=int(data.get("address", 0)),
    )
    metadata = dict(data.get("metadata") or {})
    if kind is FactKind.SYMBOL:
        return SymbolRef(name=data["name"], location=location, metadata=metadata)
    if kind is FactKind.STRING:
        return StringLiteral(text=data["text"], location=location, metadata=metadata)
    if kind is FactKind.NUMBER:
        return NumericConstant(value=int(data["value"]), location=location, metadata=metadata)
    if kind is FactKind.INSTRUCTION:
        return InstructionPattern(
            mnemonic=data["mnemonic"],
            operands=tuple(data.get("operands") or ()),
            location=location,
            metadata=metadata,
        )
    return CrossReference(target=data["target"], location=location, metadata=metadata)


class FactModel:
    """The read-only fact set of one analysis run.

    Construction sorts the facts by (kind, location, value) and assigns ids
    in that order. Instructions are additionally grouped per procedure in
    address order for sequence matching.
    """

    def __init__(self, facts: Iterable[Fact] = ()) -> None:
        ordered = sorted(facts, key=_canonical_key)
        self._facts: tuple[Fact, ...] = tuple(
            replace(f, id=i) for i, f in enumerate(ordered)
        )
        by_kind: dict[FactKind, list[Fact]] = {kind: [] for kind in FactKind}
        instructions: dict[str, list[InstructionPattern]] = {}
        for fact in self._facts:
            by_kind[fact.kind].append(fact)
            if isinstance(fact, InstructionPattern):
                instructions.setdefault(fact.procedure, []).append(fact)
        self._by_kind = {kind: tuple(items) for kind, items in by_kind.items()}
        self._instructions = {
            proc: tuple(items) for proc, items in sorted(instructions.items())
        }

    @property
    def facts(self) -> tuple[Fact, ...]:
        return self._facts

    def of_kind(self, kind: FactKind) -> tuple[Fact, ...]:
        return self._by_kind[kind]

    @property
    def symbols(self) -> tuple[SymbolRef, ...]:
        return self._by_kind[FactKind.SYMBOL]  # type: ignore[return-value]

    @property
    def strings(self) -> tuple[StringLiteral, ...]:
        return self._by_kind[FactKind.STRING]  # type: ignore[return-value]

    @property
    def numbers(self) -> tuple[NumericConstant, ...]:
        return self._by_kind[FactKind.NUMBER]  # type: ignore[return-value]

    @property
    def xrefs(self) -> tuple[CrossReference, ...]:
        return self._by_kind[FactKind.XREF]  # type: ignore[return-value]

    def instruction_sequences(self) -> dict[str, tuple[InstructionPattern, ...]]:
        """Per-procedure instruction sequences, ordered by address."""
        return self._instructions

    def procedures(self) -> list[str]:
        return sorted({f.procedure for f in self._facts})

    def get(self, fact_id: int) -> Fact:
        return self._facts[fact_id]

    def counts(self) -> dict[str, int]:
        return {kind.value: len(items) for kind, items in self._by_kind.items()}

    def __len__(self) -> int:
        return len(self._facts)

    def __iter__(self) -> Iterator[Fact]:
        return iter(self._facts)

    def to_dict(self) -> dict[str, Any]:
        return {"facts": [f.to_dict() for f in self._facts]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FactModel:
        return cls(fact_from_dict(f) for f in data.get("facts", []))
