"""Fact provider interface and shared helpers."""

from __future__ import annotations

import hashlib
import os
from abc import ABC, abstractmethod
from typing import ClassVar

from srkit.model import FactModel

_RIZIN_PREFIXES = ("sym.imp.", "sym.", "imp.", "reloc.", "loc.imp.")


def normalize_symbol(name: str, strip_underscore: bool = False) -> str:
    """Canonical symbol name.

    Drops disassembler namespace prefixes (``sym.imp.ptrace`` -> ``ptrace``)
    and, for Mach-O, the single leading underscore the C compiler adds
    (``_ptrace`` -> ``ptrace``, ``__NSConcreteStackBlock`` ->
    ``_NSConcreteStackBlock``).
    """
    name = name.strip()
    for prefix in _RIZIN_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix) :]
            break
    if strip_underscore and name.startswith("_") and len(name) > 1:
        name = name[1:]
    return name


def file_identity(path: str) -> str:
    """``<basename> (sha256:<first 12 hex digits>)`` for a file on disk."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return f"{os.path.basename(path)} (sha256:{h.hexdigest()[:12]})"


class FactProvider(ABC):
    """Supplies the read-only fact snapshot for one binary.

    ``collect`` raises ``FactAccessError`` when the binary cannot be
    loaded or analysed; the run is then aborted without a report.
    """

    name: ClassVar[str]

    @abstractmethod
    def binary_id(self) -> str:
        """Stable identifier of the analysed binary."""

    @abstractmethod
    def collect(self) -> FactModel:
        """Extract every fact of the binary."""

    def close(self) -> None:
        """Release any backend resources."""
