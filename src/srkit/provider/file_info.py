"""LIEF-backed fact provider.

A lighter provider than rizin: no disassembly, so every fact is global.
It reports imported/exported symbols, printable strings from string and
constant sections, and, for Mach-O, MIG subsystem tables found in
``__const`` data as ``NumericConstant`` facts tagged ``mig_subsystem``.
"""

from __future__ import annotations

import logging
import os
import struct
from typing import Any, ClassVar, Iterator

import lief

from srkit.errors import FactAccessError
from srkit.model import (
    GLOBAL_PROCEDURE,
    Fact,
    FactModel,
    Location,
    NumericConstant,
    StringLiteral,
    SymbolRef,
)
from srkit.provider.base import FactProvider, file_identity, normalize_symbol

logger = logging.getLogger(__name__)

MIN_STRING_LENGTH = 3
MIG_TAG = "mig_subsystem"

# Segment/section pairs that may hold MIG subsystem structures.
_MIG_SECTIONS = {
    ("__DATA", "__const"),
    ("__DATA_CONST", "__const"),
    ("__CONST", "__constdata"),
}
_STRING_SECTION_NAMES = {"__const", ".rodata", ".rdata"}


def extract_strings(
    data: bytes, base: int, min_length: int = MIN_STRING_LENGTH
) -> Iterator[tuple[int, str]]:
    """Yield ``(address, text)`` for runs of printable ASCII (32..126)."""
    start = -1
    for i, b in enumerate(data):
        if 32 <= b <= 126:
            if start < 0:
                start = i
            continue
        if start >= 0 and i - start >= min_length:
            yield base + start, data[start:i].decode("ascii")
        start = -1
    if start >= 0 and len(data) - start >= min_length:
        yield base + start, data[start:].decode("ascii")


def find_mig_subsystems(data: bytes, base: int) -> Iterator[tuple[int, int, int, int]]:
    """Yield ``(address, start_id, end_id, maxsize)`` for likely MIG subsystems.

    Layout (64-bit): server ptr at +0x0, start at +0x8, end at +0xC,
    maxsize at +0x10, reserved (must be 0) at +0x18. Candidates are checked
    every 8 bytes.
    """
    for off in range(0, len(data) - 0x20 + 1, 8):
        start_id, end_id, maxsize = struct.unpack_from("<III", data, off + 0x8)
        (reserved,) = struct.unpack_from("<Q", data, off + 0x18)
        if reserved != 0:
            continue
        if not 0 < start_id < 1_000_000:
            continue
        if end_id <= start_id or end_id - start_id >= 1000:
            continue
        yield base + off, start_id, end_id, maxsize


class LiefProvider(FactProvider):
    """Extracts symbol and string facts with LIEF."""

    name: ClassVar[str] = "lief"

    def __init__(self, binary_path: str) -> None:
        self._binary_path = binary_path

    def binary_id(self) -> str:
        try:
            return file_identity(self._binary_path)
        except OSError as e:
            raise FactAccessError(f"cannot read {self._binary_path}: {e}") from e

    def _parse(self) -> Any:
        path = self._binary_path
        if not os.path.isfile(path):
            raise FactAccessError(f"File not found: {path}")
        try:
            if lief.is_macho(path):
                fat = lief.MachO.parse(path)
                binary = fat.at(0) if fat is not None and len(fat) > 0 else None
            else:
                binary = lief.parse(path)
        except Exception as e:
            raise FactAccessError(f"LIEF could not parse '{path}': {e}") from e
        if binary is None:
            raise FactAccessError(
                f"LIEF could not parse '{path}'. It may not be a recognized binary format."
            )
        return binary

    def collect(self) -> FactModel:
        binary = self._parse()
        is_macho = lief.is_macho(self._binary_path)
        facts: list[Fact] = []

        for origin, symbols in (
            ("import", binary.imported_symbols),
            ("export", binary.exported_symbols),
        ):
            for sym in symbols:
                name = normalize_symbol(str(sym.name), strip_underscore=is_macho)
                if not name:
                    continue
                addr = int(getattr(sym, "value", 0) or 0) if origin == "export" else 0
                facts.append(
                    SymbolRef(
                        name=name,
                        location=Location(GLOBAL_PROCEDURE, addr),
                        metadata={"origin": origin},
                    )
                )

        for section in binary.sections:
            name = str(section.name)
            lowered = name.lower()
            if "string" in lowered or name in _STRING_SECTION_NAMES:
                data = bytes(section.content)
                for addr, text in extract_strings(data, section.virtual_address):
                    facts.append(
                        StringLiteral(
                            text=text,
                            location=Location(GLOBAL_PROCEDURE, addr),
                            metadata={"section": name},
                        )
                    )
            if is_macho and (str(section.segment_name), name) in _MIG_SECTIONS:
                facts.extend(self._mig_facts(section))

        model = FactModel(facts)
        logger.info("LIEF extracted %d facts (%s)", len(model), model.counts())
        return model

    def _mig_facts(self, section: Any) -> list[Fact]:
        data = bytes(section.content)
        facts: list[Fact] = []
        for addr, start_id, end_id, maxsize in find_mig_subsystems(data, section.virtual_address):
            logger.debug(
                "MIG subsystem %d at 0x%x: %d routines", start_id, addr, end_id - start_id
            )
            facts.append(
                NumericConstant(
                    value=start_id,
                    location=Location(GLOBAL_PROCEDURE, addr),
                    metadata={
                        "tag": MIG_TAG,
                        "end_id": end_id,
                        "routines": end_id - start_id,
                        "maxsize": maxsize,
                    },
                )
            )
        return facts
