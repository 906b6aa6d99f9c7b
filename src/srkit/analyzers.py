"""Analyzer profiles — the twelve per-category entry points plus a full scan.

A profile only selects which categories are activated and how the report
is labelled; every profile runs the same engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from srkit.model import Category


@dataclass(frozen=True)
class AnalyzerProfile:
    command: str
    title: str
    categories: tuple[Category, ...]
    help: str = ""


PROFILES: tuple[AnalyzerProfile, ...] = (
    AnalyzerProfile(
        "anti-analysis-detector",
        "Anti-Analysis Detector",
        (Category.ANTI_DEBUG,),
        "Anti-debugging, anti-VM, integrity checks and analysis-tool detection.",
    ),
    AnalyzerProfile(
        "c2analyzer",
        "C2 Analyzer",
        (Category.C2,),
        "Command-and-control channels, DGA, exfiltration and beaconing.",
    ),
    AnalyzerProfile(
        "fileop-analyzer",
        "File Operations Analyzer",
        (Category.FILE_OPS,),
        "File system access, temporary files, symlinks and permission changes.",
    ),
    AnalyzerProfile(
        "keychain-analyzer",
        "Keychain Analyzer",
        (Category.KEYCHAIN,),
        "Keychain, Security framework, CommonCrypto and credential handling.",
    ),
    AnalyzerProfile(
        "machipc-analyzer",
        "Mach IPC Analyzer",
        (Category.MACH_IPC,),
        "Mach ports, messages, bootstrap lookups and MIG subsystems.",
    ),
    AnalyzerProfile(
        "network-analyzer",
        "Network Analyzer",
        (Category.NETWORK,),
        "Sockets, DNS, TLS, URL loading and embedded network indicators.",
    ),
    AnalyzerProfile(
        "persistence-analyzer",
        "Persistence Analyzer",
        (Category.PERSISTENCE,),
        "Launch agents and daemons, login items, cron, kexts and dylib injection.",
    ),
    AnalyzerProfile(
        "privescdetector",
        "Privilege Escalation Detector",
        (Category.PRIVILEGE_ESCALATION,),
        "setuid, authorization services, privileged helpers and sudo abuse.",
    ),
    AnalyzerProfile(
        "process-injection-analyzer",
        "Process Injection Analyzer",
        (Category.PROCESS_INJECTION,),
        "Task ports, remote memory and thread manipulation, dylib loading.",
    ),
    AnalyzerProfile(
        "rootkitdetector",
        "Rootkit Detector",
        (Category.ROOTKIT,),
        "Kernel extensions, hooking, swizzling and kernel object manipulation.",
    ),
    AnalyzerProfile(
        "syscallanalyzer",
        "Syscall Analyzer",
        (Category.SYSCALL,),
        "Direct BSD syscalls, Mach traps and raw syscall instruction sequences.",
    ),
    AnalyzerProfile(
        "xpc-analyzer",
        "XPC Analyzer",
        (Category.XPC,),
        "XPC and NSXPC services, privileged helpers and authorization plumbing.",
    ),
)

FULL_SCAN = AnalyzerProfile(
    "scan",
    "Full Scan",
    tuple(Category),
    "Every category in one run.",
)

_BY_COMMAND = {p.command: p for p in (*PROFILES, FULL_SCAN)}
_ALIASES = {"xpc": "xpc-analyzer"}


def get_profile(command: str) -> AnalyzerProfile | None:
    """Look up a profile by command name (or alias)."""
    return _BY_COMMAND.get(_ALIASES.get(command, command))


def profile_for(category: Category) -> AnalyzerProfile:
    for p in PROFILES:
        if p.categories == (category,):
            return p
    raise KeyError(category)


def names() -> list[str]:
    return list(_BY_COMMAND.keys())
