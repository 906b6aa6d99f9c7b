"""Rizin-backed fact provider.

Facts are pulled over a lazily-opened rzpipe session: functions (``aflj``),
imports/exports (``iij``/``iEj``), strings (``izj``) and per-function
disassembly (``pdfj``). Call sites become a ``SymbolRef`` plus a
``CrossReference`` inside the calling procedure; immediate operands become
``NumericConstant`` facts; strings referenced from code are attributed to
the referencing procedure, the rest stay global.
"""

from __future__ import annotations

import bisect
import json
import logging
import re
import threading
from dataclasses import replace
from typing import Any, ClassVar

import rzpipe

from srkit.errors import FactAccessError
from srkit.model import (
    GLOBAL_PROCEDURE,
    CrossReference,
    Fact,
    FactModel,
    InstructionPattern,
    Location,
    NumericConstant,
    StringLiteral,
    SymbolRef,
)
from srkit.provider.base import FactProvider, file_identity, normalize_symbol

logger = logging.getLogger(__name__)

_IMMEDIATE_RE = re.compile(r"^#?(-?(?:0x[0-9a-fA-F]+|\d+))$")
_CALL_TYPES = {"call", "ucall", "rcall", "icall", "ircall"}
# Immediates loaded just before a call are recorded as its arguments.
_ARG_LOOKBACK = 6


class _RzSession:
    """Thread-safe lazy handle on one rzpipe connection.

    Rizin analysis can take seconds; we pay that cost once and reuse the pipe.
    """

    def __init__(self, binary_path: str, analysis_cmd: str = "aaa") -> None:
        self._binary_path = binary_path
        self._analysis_cmd = analysis_cmd
        self._pipe: rzpipe.open | None = None
        self._lock = threading.Lock()

    @property
    def pipe(self) -> rzpipe.open:
        with self._lock:
            if self._pipe is None:
                logger.info("Opening rizin session for %s", self._binary_path)
                try:
                    self._pipe = rzpipe.open(self._binary_path, flags=["-2"])  # -2 = no stderr
                except Exception as e:
                    raise FactAccessError(
                        f"rizin could not open {self._binary_path}: {e}"
                    ) from e
                if self._analysis_cmd:
                    self._pipe.cmd(self._analysis_cmd)
                logger.info("Rizin analysis complete for %s", self._binary_path)
            return self._pipe

    def cmd(self, command: str) -> str:
        result = self.pipe.cmd(command)
        return result if result else ""

    def cmdj(self, command: str) -> Any:
        """Run a rizin command and return parsed JSON, or None."""
        try:
            result = self.pipe.cmdj(command)
        except json.JSONDecodeError:
            logger.debug("Non-JSON output from %r", command)
            return None
        return result if result else None

    def close(self) -> None:
        with self._lock:
            if self._pipe is not None:
                try:
                    self._pipe.quit()
                except Exception as e:
                    logger.debug("Error closing rizin session: %s", e)
                self._pipe = None


# Global session cache: (binary_path, analysis_cmd) -> _RzSession
_sessions: dict[tuple[str, str], _RzSession] = {}
_sessions_lock = threading.Lock()


def _get_session(binary_path: str, analysis_cmd: str = "aaa") -> _RzSession:
    """Get or create a shared session for the given binary."""
    key = (binary_path, analysis_cmd)
    with _sessions_lock:
        if key not in _sessions:
            _sessions[key] = _RzSession(binary_path, analysis_cmd)
        return _sessions[key]


def split_operands(text: str) -> tuple[str, list[str]]:
    """Split ``"mov qword [rbp - 8], rax"`` into mnemonic and operands.

    Commas inside brackets or braces do not separate operands.
    """
    text = text.strip()
    if not text:
        return "", []
    head, _, rest = text.partition(" ")
    operands: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in rest:
        if ch in "[{(":
            depth += 1
        elif ch in "]})":
            depth = max(0, depth - 1)
        if ch == "," and depth == 0:
            operands.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if "".join(current).strip():
        operands.append("".join(current).strip())
    return head.lower(), operands


def parse_immediate(operand: str) -> int | None:
    m = _IMMEDIATE_RE.match(operand.strip())
    if m is None:
        return None
    text = m.group(1)
    # Leading zeros are decimal in disassembly output.
    return int(text, 16) if "0x" in text.lower() else int(text, 10)


class _ProcedureMap:
    """Address -> containing function name, by binary search over ranges."""

    def __init__(self, functions: list[tuple[int, int, str]]) -> None:
        self._ranges = sorted(functions)
        self._starts = [start for start, _, _ in self._ranges]

    def lookup(self, address: int) -> str:
        i = bisect.bisect_right(self._starts, address) - 1
        if i >= 0:
            start, size, name = self._ranges[i]
            if start <= address < start + max(size, 1):
                return name
        return GLOBAL_PROCEDURE


class RizinProvider(FactProvider):
    """Extracts facts from a binary with rizin."""

    name: ClassVar[str] = "rizin"

    def __init__(self, binary_path: str, analysis_cmd: str = "aaa") -> None:
        self._binary_path = binary_path
        self._session = _get_session(binary_path, analysis_cmd)
        self._strip_underscore = False

    def binary_id(self) -> str:
        try:
            return file_identity(self._binary_path)
        except OSError as e:
            raise FactAccessError(f"cannot read {self._binary_path}: {e}") from e

    def collect(self) -> FactModel:
        info = self._session.cmdj("ij")
        if not info or "bin" not in info:
            raise FactAccessError(f"rizin could not load {self._binary_path}")
        bin_info = info["bin"]
        self._strip_underscore = str(bin_info.get("bintype", "")).startswith("mach")
        logger.debug(
            "Rizin: %s %s %s-bit",
            bin_info.get("bintype"),
            bin_info.get("arch"),
            bin_info.get("bits"),
        )

        functions = self._session.cmdj("aflj") or []
        if not functions:
            logger.warning("Rizin found no functions in %s", self._binary_path)
        procs = _ProcedureMap(
            [
                (int(f.get("offset", 0)), int(f.get("size", 0)), self._sym(f.get("name", "")))
                for f in functions
            ]
        )
        names_by_addr: dict[int, str] = {
            int(f.get("offset", 0)): self._sym(f.get("name", "")) for f in functions
        }

        facts: list[Fact] = []
        imports = self._imports(names_by_addr)
        strings = self._strings()
        referenced_strings: set[int] = set()
        called: set[str] = set()

        for f in functions:
            proc = self._sym(f.get("name", ""))
            offset = int(f.get("offset", 0))
            facts.extend(
                self._function_facts(
                    proc, offset, names_by_addr, strings, referenced_strings, called
                )
            )

        # Imports referenced from code are already attributed to callers.
        for name in sorted(imports - called):
            facts.append(
                SymbolRef(
                    name=name,
                    location=Location(GLOBAL_PROCEDURE, 0),
                    metadata={"origin": "import"},
                )
            )

        for exp in self._session.cmdj("iEj") or []:
            name = self._sym(exp.get("name", ""))
            if not name:
                continue
            addr = int(exp.get("vaddr", 0))
            facts.append(
                SymbolRef(
                    name=name,
                    location=Location(procs.lookup(addr), addr),
                    metadata={"origin": "export"},
                )
            )

        for addr, text in strings.items():
            if addr not in referenced_strings:
                facts.append(StringLiteral(text=text, location=Location(GLOBAL_PROCEDURE, addr)))

        model = FactModel(facts)
        logger.info("Rizin extracted %d facts (%s)", len(model), model.counts())
        return model

    def close(self) -> None:
        self._session.close()

    # ----- helpers -----

    def _sym(self, name: str) -> str:
        return normalize_symbol(name, strip_underscore=self._strip_underscore)

    def _imports(self, names_by_addr: dict[int, str]) -> set[str]:
        imports: set[str] = set()
        for imp in self._session.cmdj("iij") or []:
            name = self._sym(imp.get("name", ""))
            if not name:
                continue
            imports.add(name)
            plt = int(imp.get("plt", 0) or 0)
            if plt:
                names_by_addr.setdefault(plt, name)
        return imports

    def _strings(self) -> dict[int, str]:
        out: dict[int, str] = {}
        for s in self._session.cmdj("izj") or []:
            text = s.get("string", "")
            if len(text) < 3:
                continue
            out[int(s.get("vaddr", s.get("paddr", 0)))] = text
        return out

    def _function_facts(
        self,
        proc: str,
        offset: int,
        names_by_addr: dict[int, str],
        strings: dict[int, str],
        referenced_strings: set[int],
        called: set[str],
    ) -> list[Fact]:
        pdf = self._session.cmdj(f"pdfj @ {offset:#x}")
        if not pdf:
            return []
        facts: list[Fact] = []
        pending: list[NumericConstant] = []
        for op in pdf.get("ops", []):
            disasm = op.get("disasm") or op.get("opcode") or ""
            if not disasm or disasm.startswith("invalid"):
                continue
            addr = int(op.get("offset", 0))
            loc = Location(proc, addr)
            mnemonic, operands = split_operands(op.get("opcode") or disasm)
            facts.append(InstructionPattern(mnemonic=mnemonic, operands=tuple(operands), location=loc))

            for ref_addr in _referenced_addresses(op):
                text = strings.get(ref_addr)
                if text is not None:
                    referenced_strings.add(ref_addr)
                    facts.append(StringLiteral(text=text, location=loc, metadata={"vaddr": ref_addr}))

            op_type = str(op.get("type", ""))
            if op_type in _CALL_TYPES:
                target = self._call_target(op, operands, names_by_addr)
                if target:
                    called.add(target)
                    facts.append(CrossReference(target=target, location=loc, metadata={"type": "call"}))
                    facts.append(SymbolRef(name=target, location=loc, metadata={"origin": "call"}))
                    facts.extend(pending[:-_ARG_LOOKBACK])
                    facts.extend(
                        replace(const, metadata={"callee": target})
                        for const in pending[-_ARG_LOOKBACK:]
                    )
                else:
                    facts.extend(pending)
                pending = []
                continue

            for operand in operands:
                value = parse_immediate(operand)
                if value is None or value in strings:
                    continue
                pending.append(NumericConstant(value=value, location=loc))

        facts.extend(pending)
        return facts

    def _call_target(self, op: dict[str, Any], operands: list[str], names_by_addr: dict[int, str]) -> str:
        jump = op.get("jump")
        if jump is not None and int(jump) in names_by_addr:
            return names_by_addr[int(jump)]
        if operands:
            text = operands[-1]
            if parse_immediate(text) is None and not text.startswith("["):
                return self._sym(text)
        return ""


def _referenced_addresses(op: dict[str, Any]) -> list[int]:
    addrs: list[int] = []
    for key in ("ptr", "val"):
        if key in op:
            try:
                addrs.append(int(op[key]))
            except (TypeError, ValueError):
                pass
    for ref in op.get("refs", []) or []:
        if isinstance(ref, dict) and "addr" in ref:
            addrs.append(int(ref["addr"]))
    return addrs
