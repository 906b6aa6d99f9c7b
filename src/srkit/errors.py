"""Error taxonomy for analysis runs."""

from __future__ import annotations


class SrkitError(Exception):
    """Base class for all srkit errors."""


class RegistryLoadError(SrkitError):
    """The signature catalogue is malformed. No analysis can proceed."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class FactAccessError(SrkitError):
    """The fact provider could not supply a fact stream for the binary."""


class CorrelationRuleConflict(SrkitError):
    """Two correlation rules claimed the same raw matches.

    Never raised out of a run: the correlator resolves the conflict by the
    registry-order tie-break and records an instance as a warning.
    """

    def __init__(self, winner: str, loser: str, procedure: str) -> None:
        self.winner = winner
        self.loser = loser
        self.procedure = procedure
        super().__init__(
            f"rule {loser} overlaps {winner} in {procedure}; {winner} applied"
        )


class ReportRenderError(SrkitError):
    """A report sink failed. The report itself is still valid."""


class AnalysisAborted(SrkitError):
    """A run failed at some stage and was aborted without a report."""

    def __init__(self, stage: str, cause: BaseException | None = None) -> None:
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"analysis aborted during {stage}{detail}")


class AnalysisCancelled(AnalysisAborted):
    """A run was cancelled between stages."""

    def __init__(self, stage: str) -> None:
        super().__init__(stage)
        self.args = (f"analysis cancelled before {stage}",)
