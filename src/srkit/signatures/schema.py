"""Pydantic models for the signature catalogue.

A catalogue file declares one category, its signatures and its
correlation rules. Each signature has one or more clauses; every clause
kind targets one fact kind:

    symbol   exact symbol-name set           (SymbolRef)
    xref     exact cross-reference targets   (CrossReference)
    string   substring set, case-sensitive   (StringLiteral)
    regex    compiled pattern                (StringLiteral or SymbolRef)
    number   values and inclusive ranges     (NumericConstant)
    opcodes  contiguous instruction sequence (InstructionPattern)

Signatures may use shorthand keys (``symbols``, ``strings``, ``xrefs``,
``numbers``, ``regex``, ``opcodes``) instead of an explicit ``clauses``
list; they are expanded before validation.
"""

from __future__ import annotations

import fnmatch
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from srkit.model import Category

CATALOGUE_VERSION = 1


def _non_empty_patterns(values: list[str], what: str) -> list[str]:
    if not values:
        raise ValueError(f"empty {what} set")
    for v in values:
        if not isinstance(v, str) or not v:
            raise ValueError(f"empty {what} pattern")
    return values


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not a numeric constant")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip(), 0)
    raise ValueError(f"not an integer: {value!r}")


class _Clause(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SymbolClause(_Clause):
    type: Literal["symbol"] = "symbol"
    names: list[str]

    @field_validator("names")
    @classmethod
    def _check(cls, v: list[str]) -> list[str]:
        return _non_empty_patterns(v, "symbol name")


class XrefClause(_Clause):
    type: Literal["xref"] = "xref"
    targets: list[str]

    @field_validator("targets")
    @classmethod
    def _check(cls, v: list[str]) -> list[str]:
        return _non_empty_patterns(v, "xref target")


class StringClause(_Clause):
    type: Literal["string"] = "string"
    contains: list[str]

    @field_validator("contains")
    @classmethod
    def _check(cls, v: list[str]) -> list[str]:
        return _non_empty_patterns(v, "string")


class RegexClause(_Clause):
    type: Literal["regex"] = "regex"
    pattern: str
    target: Literal["string", "symbol"] = "string"
    ignore_case: bool = False

    _compiled: re.Pattern[str] = PrivateAttr()

    @field_validator("pattern")
    @classmethod
    def _check(cls, v: str) -> str:
        if not v:
            raise ValueError("empty regex pattern")
        return v

    @model_validator(mode="after")
    def _compile(self) -> RegexClause:
        flags = re.IGNORECASE if self.ignore_case else 0
        try:
            self._compiled = re.compile(self.pattern, flags)
        except re.error as e:
            raise ValueError(f"invalid regex {self.pattern!r}: {e}") from e
        return self

    @property
    def compiled(self) -> re.Pattern[str]:
        return self._compiled


class NumberClause(_Clause):
    type: Literal["number"] = "number"
    values: list[int] = Field(default_factory=list)
    ranges: list[tuple[int, int]] = Field(default_factory=list)
    tag: str | None = None

    @field_validator("values", mode="before")
    @classmethod
    def _parse_values(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [_to_int(x) for x in v]
        return v

    @field_validator("ranges", mode="before")
    @classmethod
    def _parse_ranges(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [tuple(_to_int(x) for x in pair) for pair in v]
        return v

    @model_validator(mode="after")
    def _check(self) -> NumberClause:
        if not self.values and not self.ranges:
            raise ValueError("number clause needs values or ranges")
        for lo, hi in self.ranges:
            if lo > hi:
                raise ValueError(f"inverted range [{lo:#x}, {hi:#x}]")
        return self

    def contains(self, value: int) -> bool:
        if value in self.values:
            return True
        return any(lo <= value <= hi for lo, hi in self.ranges)


class OpcodeStep(BaseModel):
    """One instruction of an opcode sequence.

    ``operands`` is ``None`` to accept any operands. Otherwise the operand
    count must match and each operand is a case-insensitive glob (``*``
    accepts anything).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    mnemonic: str
    operands: list[str] | None = None

    _operand_res: tuple[re.Pattern[str], ...] = PrivateAttr(default=())

    @field_validator("mnemonic")
    @classmethod
    def _lower(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("empty mnemonic")
        return v.strip().lower()

    def model_post_init(self, __context: Any) -> None:
        if self.operands is not None:
            self._operand_res = tuple(
                re.compile(fnmatch.translate(op.strip().lower())) for op in self.operands
            )

    def accepts(self, mnemonic: str, operands: tuple[str, ...]) -> bool:
        if mnemonic != self.mnemonic:
            return False
        if self.operands is None:
            return True
        if len(operands) != len(self._operand_res):
            return False
        return all(rx.match(op) for rx, op in zip(self._operand_res, operands))


class OpcodeClause(_Clause):
    type: Literal["opcodes"] = "opcodes"
    sequence: list[OpcodeStep] = Field(min_length=1)

    @property
    def window(self) -> int:
        return len(self.sequence)


Clause = Annotated[
    Union[SymbolClause, XrefClause, StringClause, RegexClause, NumberClause, OpcodeClause],
    Field(discriminator="type"),
]

_SHORTHANDS = {
    "symbols": lambda v: {"type": "symbol", "names": v},
    "xrefs": lambda v: {"type": "xref", "targets": v},
    "strings": lambda v: {"type": "string", "contains": v},
    "regex": lambda v: {"type": "regex", **(v if isinstance(v, dict) else {"pattern": v})},
    "numbers": lambda v: {"type": "number", **(v if isinstance(v, dict) else {"values": v})},
    "opcodes": lambda v: {"type": "opcodes", "sequence": v},
}


class Signature(BaseModel):
    """A weighted fact pattern for one category."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    category: Category
    title: str = ""
    description: str = ""
    weight: float = Field(gt=0.0, le=1.0)
    clauses: list[Clause] = Field(min_length=1)
    max_matches: int | None = Field(default=None, ge=1)
    superseded_by: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthands(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        clauses = list(data.pop("clauses", None) or [])
        for key, build in _SHORTHANDS.items():
            if key in data:
                clauses.append(build(data.pop(key)))
        data["clauses"] = clauses
        return data

    @property
    def is_multi_clause(self) -> bool:
        return len(self.clauses) > 1

    @property
    def display_title(self) -> str:
        return self.title or self.id


class CorrelationRule(BaseModel):
    """A set of signatures that fuse into one finding when co-present."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)
    category: Category
    title: str = ""
    description: str = ""
    signatures: list[str] = Field(min_length=2)
    boost: float = Field(default=0.0, ge=0.0, lt=1.0)

    @field_validator("signatures")
    @classmethod
    def _unique(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError("rule lists a signature twice")
        return v


class CatalogueFile(BaseModel):
    """One YAML catalogue document."""

    model_config = ConfigDict(extra="forbid")

    version: int
    category: Category
    signatures: list[dict[str, Any]] = Field(default_factory=list)
    rules: list[dict[str, Any]] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def _supported(cls, v: int) -> int:
        if v != CATALOGUE_VERSION:
            raise ValueError(f"unsupported catalogue version {v}")
        return v

    def build(self) -> tuple[list[Signature], list[CorrelationRule]]:
        signatures = [
            Signature.model_validate(self._in_category(raw, "signature"))
            for raw in self.signatures
        ]
        rules = [
            CorrelationRule.model_validate(self._in_category(raw, "rule"))
            for raw in self.rules
        ]
        return signatures, rules

    def _in_category(self, raw: dict[str, Any], kind: str) -> dict[str, Any]:
        # Entries inherit the file's category; a differing one is an error.
        declared = raw.get("category")
        if declared is not None and str(declared) != self.category.value:
            raise ValueError(
                f"{kind} {raw.get('id', '?')!r} declares category {declared!r} "
                f"in a {self.category.value!r} catalogue"
            )
        return {**raw, "category": self.category.value}
