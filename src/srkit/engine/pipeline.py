"""Analysis run — drive facts through match, correlate, score and report.

A run is strictly sequential through its stages::

    IDLE -> SCANNING -> CORRELATING -> SCORING -> REPORTING -> IDLE

Category matching runs as one worker per category and all workers are
joined before correlation starts. Scoring is likewise one worker per
category. Cancellation is checked only at stage boundaries; workers that
are already running finish first. A failure at any stage aborts the run
with ``AnalysisAborted`` and no report.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from typing import Iterable

from srkit.analyzers import FULL_SCAN, AnalyzerProfile
from srkit.config import SrkitConfig
from srkit.engine.correlator import correlate
from srkit.engine.matcher import match
from srkit.engine.scoring import score_category
from srkit.errors import AnalysisAborted, AnalysisCancelled, CorrelationRuleConflict
from srkit.model import Category, FactModel, Finding, RawMatch, Report
from srkit.provider.base import FactProvider
from srkit.report.builder import build
from srkit.session.wire import Wire
from srkit.signatures import Registry, default_registry

logger = logging.getLogger(__name__)


class RunState(enum.StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    CORRELATING = "correlating"
    SCORING = "scoring"
    REPORTING = "reporting"


class CancelToken:
    """Thread-safe cancellation flag, checked between stages."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Analysis:
    """One configured analyzer. ``run`` may be called repeatedly."""

    def __init__(
        self,
        registry: Registry | None = None,
        config: SrkitConfig | None = None,
        profile: AnalyzerProfile = FULL_SCAN,
        wire: Wire | None = None,
        categories: Iterable[Category] | None = None,
    ) -> None:
        self._registry = registry if registry is not None else default_registry()
        self._config = config or SrkitConfig()
        self._profile = profile
        self._wire = wire
        self._categories = tuple(categories) if categories is not None else profile.categories
        self._state = RunState.IDLE
        self.warnings: list[str] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def categories(self) -> tuple[Category, ...]:
        return self._categories

    def _enter(self, stage: RunState, cancel: CancelToken | None) -> None:
        if cancel is not None and cancel.cancelled:
            raise AnalysisCancelled(stage.value)
        self._state = stage
        logger.debug("Stage: %s", stage)
        if self._wire is not None:
            self._wire.send_stage(stage.value)

    async def run(self, provider: FactProvider, cancel: CancelToken | None = None) -> Report:
        """Run the analysis on the provider's binary and return the report."""
        self.warnings = []
        try:
            self._enter(RunState.SCANNING, cancel)
            binary_id = await asyncio.to_thread(provider.binary_id)
            if self._wire is not None:
                self._wire.send_run_begin(binary_id, [c.value for c in self._categories])
            facts = await asyncio.to_thread(provider.collect)
            raw = await self._scan(facts)

            self._enter(RunState.CORRELATING, cancel)
            conflicts: list[CorrelationRuleConflict] = []
            findings = correlate(raw, self._registry, conflicts)
            for conflict in conflicts:
                self._warn(str(conflict))

            self._enter(RunState.SCORING, cancel)
            scored = await self._score(findings)

            self._enter(RunState.REPORTING, cancel)
            report = build(
                scored,
                binary_id=binary_id,
                categories=self._categories,
                weights=self._config.scoring.category_weights,
                top_n=self._config.report.top_n,
                warnings=self.warnings,
                registry=self._registry,
                profile=self._profile.title,
            )
        except AnalysisAborted as e:
            self._abort(e)
            raise
        except Exception as e:
            aborted = AnalysisAborted(self._state.value, e)
            self._abort(aborted)
            raise aborted from e
        finally:
            self._state = RunState.IDLE

        if self._wire is not None:
            self._wire.send_run_end(report.total_findings, report.overall_risk_score)
        logger.info(
            "Analysis of %s: %d findings, risk %.2f",
            binary_id,
            report.total_findings,
            report.overall_risk_score,
        )
        return report

    def run_sync(self, provider: FactProvider, cancel: CancelToken | None = None) -> Report:
        return asyncio.run(self.run(provider, cancel))

    # ----- stages -----

    async def _scan(self, facts: FactModel) -> list[RawMatch]:
        per_category: list[list[RawMatch]]
        if self._config.engine.parallel and len(self._categories) > 1:
            results = await asyncio.gather(
                *(
                    asyncio.to_thread(match, facts, self._registry.signatures_for(cat))
                    for cat in self._categories
                ),
                return_exceptions=True,
            )
            # Every worker has finished here; surface the first failure.
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            per_category = list(results)  # type: ignore[arg-type]
        else:
            per_category = [
                match(facts, self._registry.signatures_for(cat)) for cat in self._categories
            ]

        raw: list[RawMatch] = []
        for cat, matches in zip(self._categories, per_category):
            logger.debug("%s: %d raw matches", cat, len(matches))
            if self._wire is not None:
                self._wire.send_category_done(cat.value, len(matches))
            raw.extend(matches)
        return raw

    async def _score(self, findings: list[Finding]) -> list[Finding]:
        by_category: dict[Category, list[Finding]] = {cat: [] for cat in self._categories}
        for f in findings:
            by_category.setdefault(f.category, []).append(f)
        cats = list(by_category)
        if self._config.engine.parallel and len(cats) > 1:
            results = await asyncio.gather(
                *(asyncio.to_thread(score_category, by_category[c], self._registry) for c in cats)
            )
        else:
            results = [score_category(by_category[c], self._registry) for c in cats]
        return [f for ranked in results for f in ranked]

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        if self._wire is not None:
            self._wire.send_warning(message)

    def _abort(self, error: AnalysisAborted) -> None:
        logger.error("%s", error)
        if self._wire is not None:
            self._wire.send_error(str(error), stage=error.stage)
