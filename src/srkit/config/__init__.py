"""Configuration — Pydantic models for srkit settings."""

from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from srkit.model import Category


class ScoringConfig(BaseModel):
    """Weights for the overall risk score."""

    category_weights: dict[Category, float] = Field(
        default_factory=dict,
        description="Per-category weight; categories not listed weigh 1.0.",
    )

    @field_validator("category_weights")
    @classmethod
    def _non_negative(cls, v: dict[Category, float]) -> dict[Category, float]:
        for cat, w in v.items():
            if w < 0:
                raise ValueError(f"negative weight for {cat}: {w}")
        return v


class ReportConfig(BaseModel):
    """Report shaping."""

    top_n: int | None = Field(
        default=None, ge=0, description="Findings shown per category (None = all)"
    )
    show_evidence: bool = Field(default=True)
    max_evidence: int = Field(default=5, ge=0, description="Evidence lines per finding")


class EngineConfig(BaseModel):
    """Run pipeline settings."""

    parallel: bool = Field(
        default=True, description="Match categories in parallel worker threads"
    )


class ProviderConfig(BaseModel):
    """Fact provider selection."""

    kind: Literal["rizin", "lief", "snapshot"] = Field(default="rizin")
    analysis_cmd: str = Field(
        default="aaa", description="Rizin analysis command run once per binary"
    )


class SrkitConfig(BaseModel):
    """Top-level srkit configuration."""

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    catalogue_dirs: list[str] = Field(
        default_factory=list,
        description="Extra signature catalogue files or directories",
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> SrkitConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SRKIT_PROVIDER        - Fact provider (rizin/lief/snapshot)
            SRKIT_ANALYSIS_CMD    - Rizin analysis command (e.g. "aa" for a faster pass)
            SRKIT_TOP_N           - Findings shown per category
            SRKIT_CATALOGUE_DIRS  - Extra catalogue paths, separated by os.pathsep
            SRKIT_PARALLEL        - "0" to match categories sequentially
        """
        try:
            from dotenv import load_dotenv

            load_dotenv(override=True)
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        provider = config_data.get("provider", {})
        env_provider = os.environ.get("SRKIT_PROVIDER")
        if env_provider:
            provider["kind"] = env_provider.lower()
        env_analysis = os.environ.get("SRKIT_ANALYSIS_CMD")
        if env_analysis:
            provider["analysis_cmd"] = env_analysis
        if provider:
            config_data["provider"] = provider

        env_top_n = os.environ.get("SRKIT_TOP_N")
        if env_top_n:
            config_data.setdefault("report", {})["top_n"] = int(env_top_n)

        env_parallel = os.environ.get("SRKIT_PARALLEL")
        if env_parallel:
            config_data.setdefault("engine", {})["parallel"] = env_parallel not in ("0", "false", "no")

        env_dirs = os.environ.get("SRKIT_CATALOGUE_DIRS")
        if env_dirs:
            config_data["catalogue_dirs"] = [
                *config_data.get("catalogue_dirs", []),
                *(d for d in env_dirs.split(os.pathsep) if d),
            ]

        return cls.model_validate(config_data)
