"""Report building and rendering."""

from srkit.report.builder import build, risk_score
from srkit.report.render import ConsoleSink, JsonSink

__all__ = ["ConsoleSink", "JsonSink", "build", "risk_score"]
