"""Tests for srkit.engine.automaton (AhoCorasick)."""

from __future__ import annotations

from srkit.engine.automaton import AhoCorasick


class TestAhoCorasick:
    def test_empty(self) -> None:
        ac = AhoCorasick()
        assert len(ac) == 0
        assert ac.find("anything") == set()

    def test_single_needle(self) -> None:
        ac = AhoCorasick(["LLDB"])
        assert ac.find("attached LLDB session") == {"LLDB"}
        assert ac.find("lldb") == set()

    def test_overlapping_needles(self) -> None:
        ac = AhoCorasick(["he", "she", "his", "hers"])
        assert ac.find("ushers") == {"she", "he", "hers"}

    def test_needle_is_suffix_of_another(self) -> None:
        ac = AhoCorasick(["LaunchAgents", "Agents"])
        assert ac.find("/Library/LaunchAgents/x.plist") == {"LaunchAgents", "Agents"}

    def test_failure_transitions(self) -> None:
        ac = AhoCorasick(["abcd", "bcx"])
        assert ac.find("abcx") == {"bcx"}

    def test_duplicates_and_empty_ignored(self) -> None:
        ac = AhoCorasick(["a", "a", ""])
        assert len(ac) == 1

    def test_agrees_with_naive_search(self) -> None:
        needles = ["VMware", "VBOX", "vbox", "QEMU", "/.dockerenv", "Ware", "BOX"]
        texts = [
            "VMware Tools",
            "VBOXSVGA",
            "/.dockerenv",
            "qemu-system",
            "nothing here",
            "VMwareVBOX",
        ]
        ac = AhoCorasick(needles)
        for text in texts:
            assert ac.find(text) == {n for n in needles if n in text}
