"""Technique categories."""

from __future__ import annotations

import enum


class Category(enum.StrEnum):
    """The twelve technique domains a finding can belong to."""

    ANTI_DEBUG = "anti-debug"
    C2 = "c2"
    FILE_OPS = "file-ops"
    KEYCHAIN = "keychain"
    MACH_IPC = "mach-ipc"
    NETWORK = "network"
    PERSISTENCE = "persistence"
    PRIVILEGE_ESCALATION = "privilege-escalation"
    PROCESS_INJECTION = "process-injection"
    ROOTKIT = "rootkit"
    SYSCALL = "syscall"
    XPC = "xpc"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: str) -> Category:
        """Look up a category by value or enum name (case-insensitive)."""
        text = value.strip().lower()
        for cat in cls:
            if text in (cat.value, cat.name.lower()):
                return cat
        raise ValueError(f"unknown category: {value!r}")


_LABELS: dict[Category, str] = {
    Category.ANTI_DEBUG: "Anti-Debugging & Anti-Analysis",
    Category.C2: "Command & Control",
    Category.FILE_OPS: "File Operations",
    Category.KEYCHAIN: "Keychain & Credentials",
    Category.MACH_IPC: "Mach IPC",
    Category.NETWORK: "Network Activity",
    Category.PERSISTENCE: "Persistence",
    Category.PRIVILEGE_ESCALATION: "Privilege Escalation",
    Category.PROCESS_INJECTION: "Process Injection",
    Category.ROOTKIT: "Rootkit Behavior",
    Category.SYSCALL: "Direct System Calls",
    Category.XPC: "XPC Services",
}
