"""Fact providers — turn a binary (or a saved snapshot) into a FactModel."""

from __future__ import annotations

from srkit.provider.base import FactProvider, file_identity, normalize_symbol
from srkit.provider.snapshot import Snapshot, SnapshotProvider, write_snapshot

PROVIDER_KINDS = ("rizin", "lief", "snapshot")


def create_provider(kind: str, path: str, analysis_cmd: str = "aaa") -> FactProvider:
    """Instantiate a provider by kind.

    The rizin and lief backends are imported on demand so that a missing
    native dependency only affects the provider that needs it.
    """
    if kind == "snapshot":
        return SnapshotProvider(path)
    if kind == "rizin":
        from srkit.provider.rizin import RizinProvider

        return RizinProvider(path, analysis_cmd=analysis_cmd)
    if kind == "lief":
        from srkit.provider.file_info import LiefProvider

        return LiefProvider(path)
    raise ValueError(f"unknown provider {kind!r}; expected one of {', '.join(PROVIDER_KINDS)}")


__all__ = [
    "PROVIDER_KINDS",
    "FactProvider",
    "Snapshot",
    "SnapshotProvider",
    "create_provider",
    "file_identity",
    "normalize_symbol",
    "write_snapshot",
]
