"""JSON fact snapshots — replay a captured fact set without a disassembler.

Snapshot format::

    {
      "binary": "sample (sha256:...)",
      "facts": [
        {"kind": "symbol", "procedure": "main", "address": 4096, "name": "ptrace"},
        {"kind": "number", "procedure": "main", "address": 4100, "value": 31},
        {"kind": "string", "procedure": "<global>", "address": 8192, "text": "LLDB"},
        {"kind": "instruction", "procedure": "main", "address": 4104,
         "mnemonic": "svc", "operands": ["0x80"]},
        {"kind": "xref", "procedure": "main", "address": 4108, "target": "sysctl"}
      ]
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from srkit.errors import FactAccessError
from srkit.model import GLOBAL_PROCEDURE, FactModel, fact_from_dict
from srkit.provider.base import FactProvider

logger = logging.getLogger(__name__)


class _FactEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    procedure: str = GLOBAL_PROCEDURE
    address: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class _SymbolEntry(_FactEntry):
    kind: Literal["symbol"]
    name: str = Field(min_length=1)


class _StringEntry(_FactEntry):
    kind: Literal["string"]
    text: str


class _NumberEntry(_FactEntry):
    kind: Literal["number"]
    value: int


class _InstructionEntry(_FactEntry):
    kind: Literal["instruction"]
    mnemonic: str = Field(min_length=1)
    operands: list[str] = Field(default_factory=list)


class _XrefEntry(_FactEntry):
    kind: Literal["xref"]
    target: str = Field(min_length=1)


_Entry = Annotated[
    Union[_SymbolEntry, _StringEntry, _NumberEntry, _InstructionEntry, _XrefEntry],
    Field(discriminator="kind"),
]


class Snapshot(BaseModel):
    """Validated snapshot document."""

    binary: str = ""
    facts: list[_Entry] = Field(default_factory=list)

    def to_model(self) -> FactModel:
        return FactModel(fact_from_dict(entry.model_dump()) for entry in self.facts)


class SnapshotProvider(FactProvider):
    """Reads facts from a JSON snapshot file."""

    name: ClassVar[str] = "snapshot"

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._snapshot: Snapshot | None = None

    def _load(self) -> Snapshot:
        if self._snapshot is None:
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise FactAccessError(f"cannot read snapshot {self._path}: {e}") from e
            try:
                self._snapshot = Snapshot.model_validate(raw)
            except ValidationError as e:
                raise FactAccessError(f"malformed snapshot {self._path}: {e}") from e
            logger.info("Loaded %d facts from %s", len(self._snapshot.facts), self._path)
        return self._snapshot

    def binary_id(self) -> str:
        return self._load().binary or self._path.stem

    def collect(self) -> FactModel:
        return self._load().to_model()


def write_snapshot(facts: FactModel, binary_id: str, path: str | Path) -> Path:
    """Export ``facts`` as a snapshot readable by ``SnapshotProvider``."""
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    data = {"binary": binary_id, **facts.to_dict()}
    out.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return out
