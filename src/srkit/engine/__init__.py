"""Detection engine: matching, correlation, scoring and the run pipeline."""

from srkit.engine.correlator import correlate
from srkit.engine.matcher import Matcher, match
from srkit.engine.scoring import combine, deduplicate, rank, score, score_category

__all__ = [
    "Matcher",
    "combine",
    "correlate",
    "deduplicate",
    "match",
    "rank",
    "score",
    "score_category",
]
