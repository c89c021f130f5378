"""
campaign_engine/config.py -- Engine settings.

Every tunable the engine reads lives on ``EngineSettings``.  Defaults match
the named constants in the modules that own them; ``from_env()`` lets a
deployment override any of them through ``CAMPAIGN_ENGINE_*`` environment
variables.

Usage::

    from campaign_engine.config import EngineSettings

    settings = EngineSettings.from_env()
    settings.misspelling_cap        # 20 unless CAMPAIGN_ENGINE_MISSPELLING_CAP is set
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace

from campaign_engine.similarity import SIMILARITY_MINIMUM, SIMILARITY_RESOLVED

logger = logging.getLogger(__name__)

ENV_PREFIX = "CAMPAIGN_ENGINE_"


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for one engine instance."""

    # Similarity policy
    similarity_resolved: float = SIMILARITY_RESOLVED
    similarity_minimum: float = SIMILARITY_MINIMUM

    # Text scanner
    context_radius: int = 50
    misspelling_cap: int = 20
    min_mention_length: int = 3
    resolver_workers: int = 1

    # Semantic checker
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.2
    llm_timeout: float = 120.0
    proposal_description_max: int = 100

    # Reference store; empty means the platformdirs default
    database_path: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.similarity_minimum <= self.similarity_resolved <= 1.0:
            raise ValueError(
                "similarity thresholds must satisfy "
                "0 <= minimum <= resolved <= 1 "
                f"(got minimum={self.similarity_minimum}, "
                f"resolved={self.similarity_resolved})"
            )
        if self.context_radius < 0:
            raise ValueError("context_radius must be non-negative")
        if self.misspelling_cap < 0:
            raise ValueError("misspelling_cap must be non-negative")
        if self.resolver_workers < 1:
            raise ValueError("resolver_workers must be at least 1")

    @classmethod
    def from_env(cls, environ=None) -> "EngineSettings":
        """Build settings from ``CAMPAIGN_ENGINE_<FIELD>`` variables.

        Unparseable values are logged and the default is kept.
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            caster = {"float": float, "int": int}.get(f.type, str)
            try:
                overrides[f.name] = caster(raw)
            except ValueError:
                logger.warning(
                    "Ignoring %s%s=%r: not a valid %s",
                    ENV_PREFIX, f.name.upper(), raw, f.type,
                )
        return replace(cls(), **overrides)
