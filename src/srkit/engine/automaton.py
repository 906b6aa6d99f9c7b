"""Aho-Corasick automaton for multi-needle substring search.

Built once per run over every string-contains needle of the active
signatures, so each string literal is scanned in a single pass regardless
of how many needles there are.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable


class AhoCorasick:
    """Case-sensitive multi-pattern matcher."""

    def __init__(self, needles: Iterable[str] = ()) -> None:
        self._goto: list[dict[str, int]] = [{}]
        self._fail: list[int] = [0]
        self._out: list[list[str]] = [[]]
        self._needles: set[str] = set()
        for needle in needles:
            self._add(needle)
        self._build()

    def _add(self, needle: str) -> None:
        if not needle or needle in self._needles:
            return
        self._needles.add(needle)
        state = 0
        for ch in needle:
            nxt = self._goto[state].get(ch)
            if nxt is None:
                nxt = len(self._goto)
                self._goto.append({})
                self._fail.append(0)
                self._out.append([])
                self._goto[state][ch] = nxt
            state = nxt
        self._out[state].append(needle)

    def _build(self) -> None:
        queue: deque[int] = deque()
        for child in self._goto[0].values():
            queue.append(child)
        while queue:
            state = queue.popleft()
            for ch, child in self._goto[state].items():
                queue.append(child)
                f = self._fail[state]
                while f and ch not in self._goto[f]:
                    f = self._fail[f]
                target = self._goto[f].get(ch, 0)
                self._fail[child] = target if target != child else 0
                self._out[child] = self._out[child] + self._out[self._fail[child]]

    def __len__(self) -> int:
        return len(self._needles)

    def find(self, text: str) -> set[str]:
        """Return every needle that occurs in ``text`` (overlaps included)."""
        found: set[str] = set()
        if not self._needles:
            return found
        state = 0
        goto = self._goto
        fail = self._fail
        for ch in text:
            while state and ch not in goto[state]:
                state = fail[state]
            state = goto[state].get(ch, 0)
            if self._out[state]:
                found.update(self._out[state])
        return found
