"""Signature registry — load, validate and look up the catalogue."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from pydantic import ValidationError

from srkit.errors import RegistryLoadError
from srkit.model import Category
from srkit.signatures.schema import CatalogueFile, CorrelationRule, Signature

logger = logging.getLogger(__name__)

BUILTIN_CATALOGUE_DIR = Path(__file__).parent / "data"


class Registry:
    """The immutable signature catalogue.

    Signatures and rules keep the order they were declared in (catalogue
    files in category order, entries in file order); that order is the
    deterministic tie-break used by the correlator and by match ordering.
    """

    def __init__(
        self,
        signatures: Iterable[Signature] = (),
        rules: Iterable[CorrelationRule] = (),
        sources: Iterable[str] = (),
        recommendations: Mapping[Category, Iterable[str]] | None = None,
    ) -> None:
        self._signatures: dict[str, Signature] = {}
        self._rules: dict[str, CorrelationRule] = {}
        self._sources = tuple(sources)
        self._recommendations = {
            cat: tuple(lines) for cat, lines in (recommendations or {}).items()
        }

        for sig in signatures:
            if sig.id in self._signatures:
                raise RegistryLoadError(f"duplicate signature id {sig.id!r}")
            self._signatures[sig.id] = sig

        for sig in self._signatures.values():
            for other_id in sig.superseded_by:
                other = self._signatures.get(other_id)
                if other is None or other.category != sig.category or other_id == sig.id:
                    raise RegistryLoadError(
                        f"signature {sig.id!r} is superseded by unknown or "
                        f"foreign signature {other_id!r}"
                    )

        for rule in rules:
            if rule.id in self._rules or rule.id in self._signatures:
                raise RegistryLoadError(f"duplicate rule id {rule.id!r}")
            for sig_id in rule.signatures:
                sig = self._signatures.get(sig_id)
                if sig is None:
                    raise RegistryLoadError(
                        f"rule {rule.id!r} references unknown signature {sig_id!r}"
                    )
                if sig.category != rule.category:
                    raise RegistryLoadError(
                        f"rule {rule.id!r} ({rule.category}) references "
                        f"{sig_id!r} from category {sig.category}"
                    )
            self._rules[rule.id] = rule

        self._order = {sig_id: i for i, sig_id in enumerate(self._signatures)}
        self._rule_order = {rule_id: i for i, rule_id in enumerate(self._rules)}
        self._by_category: dict[Category, tuple[Signature, ...]] = {
            cat: tuple(s for s in self._signatures.values() if s.category == cat)
            for cat in Category
        }
        self._rules_by_category: dict[Category, tuple[CorrelationRule, ...]] = {
            cat: tuple(r for r in self._rules.values() if r.category == cat)
            for cat in Category
        }

    def signatures_for(self, category: Category) -> tuple[Signature, ...]:
        """Signatures of one category, in registry order."""
        return self._by_category[category]

    def rules_for(self, category: Category) -> tuple[CorrelationRule, ...]:
        """Correlation rules of one category, in registry order."""
        return self._rules_by_category[category]

    def recommendations_for(self, category: Category) -> tuple[str, ...]:
        """Analyst guidance shown when a category has findings."""
        return self._recommendations.get(category, ())

    def get(self, signature_id: str) -> Signature | None:
        return self._signatures.get(signature_id)

    def rule(self, rule_id: str) -> CorrelationRule | None:
        return self._rules.get(rule_id)

    def order(self, signature_id: str) -> int:
        """Registry position of a signature (raises KeyError if unknown)."""
        return self._order[signature_id]

    def rule_order(self, rule_id: str) -> int:
        return self._rule_order[rule_id]

    def names(self) -> list[str]:
        return list(self._signatures.keys())

    @property
    def rules(self) -> tuple[CorrelationRule, ...]:
        return tuple(self._rules.values())

    @property
    def sources(self) -> tuple[str, ...]:
        return self._sources

    def __len__(self) -> int:
        return len(self._signatures)

    def __contains__(self, signature_id: str) -> bool:
        return signature_id in self._signatures

    def __iter__(self) -> Iterator[Signature]:
        return iter(self._signatures.values())


def _catalogue_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        raise RegistryLoadError(f"catalogue directory not found: {directory}")
    files = [*directory.glob("*.yaml"), *directory.glob("*.yml")]
    order = {cat.value: i for i, cat in enumerate(Category)}
    # Built-in files are named after their category; keep category order.
    return sorted(files, key=lambda p: (order.get(p.stem, len(order)), p.name))


def _read_catalogue(
    path: Path,
) -> tuple[CatalogueFile, list[Signature], list[CorrelationRule]]:
    import yaml  # lazy import, only needed when loading the catalogue

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise RegistryLoadError(f"cannot read catalogue: {e}", source=str(path)) from e

    if not isinstance(raw, dict):
        raise RegistryLoadError("catalogue must be a mapping", source=str(path))

    try:
        catalogue = CatalogueFile.model_validate(raw)
        signatures, rules = catalogue.build()
    except (ValidationError, ValueError) as e:
        raise RegistryLoadError(str(e), source=str(path)) from e
    return catalogue, signatures, rules


def load(
    paths: Iterable[str | Path] | None = None,
    include_builtin: bool = True,
) -> Registry:
    """Read and validate the signature catalogue.

    Args:
        paths: Extra catalogue files or directories, loaded after the
            built-in catalogue in the order given.
        include_builtin: Load the bundled catalogue first.

    Raises:
        RegistryLoadError: On any malformed entry. Nothing is returned in
            that case; a partially valid catalogue is never used.
    """
    files: list[Path] = []
    if include_builtin:
        files.extend(_catalogue_files(BUILTIN_CATALOGUE_DIR))
    for entry in paths or ():
        p = Path(entry).expanduser()
        if p.is_dir():
            files.extend(_catalogue_files(p))
        elif p.is_file():
            files.append(p)
        else:
            raise RegistryLoadError(f"catalogue path not found: {p}")

    signatures: list[Signature] = []
    rules: list[CorrelationRule] = []
    recommendations: dict[Category, list[str]] = {}
    for path in files:
        catalogue, sigs, file_rules = _read_catalogue(path)
        logger.debug("Loaded %d signatures, %d rules from %s", len(sigs), len(file_rules), path)
        signatures.extend(sigs)
        rules.extend(file_rules)
        recommendations.setdefault(catalogue.category, []).extend(catalogue.recommendations)

    # Rules may reference signatures from any earlier or later file.
    registry = Registry(
        signatures, rules, sources=[str(f) for f in files], recommendations=recommendations
    )
    logger.info(
        "Signature registry loaded: %d signatures, %d rules", len(registry), len(registry.rules)
    )
    return registry


_default: Registry | None = None
_default_lock = threading.Lock()


def default_registry() -> Registry:
    """The process-wide built-in registry, loaded on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = load()
        return _default
