"""
campaign_engine/services/pipeline.py -- Consistency pipeline.

Entry points for the two engine operations:

    analyze_content          text scan of one source field
    check_graph_consistency  Structural -> Semantic -> Override Filter
                             over the campaign graph plus proposals

Every stage except persistence degrades instead of failing: a structural
check that raises contributes nothing, a semantic pass that times out, is
cancelled or returns garbage contributes nothing, and an override lookup
that errors keeps its finding.  Each call ends by saving exactly one
analysis job; a failure there is the only error a caller sees
(``PersistenceError``).

Usage::

    pipeline = ConsistencyPipeline(store, completion=CompletionClient())
    job, findings = pipeline.analyze_content("c-1", source_ref, text)
    findings = pipeline.check_graph_consistency("c-1", proposals)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from campaign_engine.config import EngineSettings
from campaign_engine.errors import (
    CompletionCancelled,
    CompletionError,
    PersistenceError,
    SemanticParseError,
)
from campaign_engine.graph_builder import GraphSnapshot
from campaign_engine.models import (
    AnalysisJob,
    ConstraintRules,
    Finding,
    RelationshipSuggestion,
    SourceRef,
)
from campaign_engine.services.override_filter import OverrideFilter
from campaign_engine.services.semantic_checker import SemanticChecker
from campaign_engine.similarity import SimilarityResolver
from campaign_engine.structural_rules import run_structural_checks
from campaign_engine.text_scanner import TextScanner

logger = logging.getLogger(__name__)

GRAPH_SOURCE_TABLE = "campaign_graph"
GRAPH_SOURCE_FIELD = "relationships"


@dataclass
class GraphCheckResult:
    """Outcome of one graph-consistency run."""
    job: AnalysisJob
    findings: list[Finding] = field(default_factory=list)
    structural_count: int = 0
    semantic_count: int = 0
    suppressed_count: int = 0
    semantic_status: str = "skipped"   # skipped | completed | cancelled | failed

    def format_human(self) -> str:
        """One-line summary for logs and the CLI."""
        return (
            f"{len(self.findings)} finding(s) "
            f"({self.structural_count} structural, {self.semantic_count} semantic, "
            f"{self.suppressed_count} suppressed by overrides; "
            f"semantic pass {self.semantic_status})"
        )


class ConsistencyPipeline:
    """Runs the engine against one store.

    Parameters
    ----------
    store : object
        Supplies ``resolve_entity_by_name``, ``list_entities``,
        ``list_relationships``, ``get_constraint_rules``, ``has_override``
        and ``save_analysis`` (see ``SQLiteStore``).
    completion : object, optional
        Completion capability for the semantic pass.  ``None``, or a client
        whose ``is_online`` is false, disables the pass.
    settings : EngineSettings, optional
    """

    def __init__(
        self,
        store: Any,
        completion: Any = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._settings = settings or EngineSettings()
        self._completion = completion
        self._resolver = SimilarityResolver(
            store.resolve_entity_by_name,
            resolved=self._settings.similarity_resolved,
            minimum=self._settings.similarity_minimum,
            workers=self._settings.resolver_workers,
        )
        self._scanner = TextScanner(self._resolver, store.list_entities, self._settings)
        self._semantic = SemanticChecker(completion, self._settings)
        self._overrides = OverrideFilter(store.has_override)

    @property
    def semantic_enabled(self) -> bool:
        if self._completion is None:
            return False
        return bool(getattr(self._completion, "is_online", True))

    # ------------------------------------------------------------------
    # Text analysis
    # ------------------------------------------------------------------

    def analyze_content(
        self,
        campaign_id: str,
        source_ref: Union[SourceRef, dict],
        text: str,
    ) -> tuple[AnalysisJob, list[Finding]]:
        """Scan *text* and persist the findings as one job for *source_ref*."""
        source = SourceRef.model_validate(source_ref)
        findings = self._scanner.scan(campaign_id, text)
        job = self._persist(
            AnalysisJob.for_source(campaign_id, source, len(findings)), findings
        )
        return job, findings

    # ------------------------------------------------------------------
    # Graph consistency
    # ------------------------------------------------------------------

    def check_graph_consistency(
        self,
        campaign_id: str,
        proposed_relationships: Iterable[RelationshipSuggestion] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> list[Finding]:
        """Validate the campaign graph plus proposals; return the kept findings."""
        return self.run_graph_check(
            campaign_id, proposed_relationships, cancel_event
        ).findings

    def run_graph_check(
        self,
        campaign_id: str,
        proposed_relationships: Iterable[RelationshipSuggestion] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> GraphCheckResult:
        """Like ``check_graph_consistency`` but returns the job and stage counts."""
        proposals = [
            RelationshipSuggestion.model_validate(p) for p in proposed_relationships
        ]
        snapshot = GraphSnapshot.load(self._store, campaign_id, proposals)
        rules = self._load_rules(campaign_id)

        structural = run_structural_checks(snapshot, rules)
        semantic, semantic_status = self._run_semantic(snapshot, cancel_event)
        combined = structural + semantic
        kept = self._overrides.apply(campaign_id, combined)

        source = SourceRef(
            source_table=GRAPH_SOURCE_TABLE,
            source_id=campaign_id,
            source_field=GRAPH_SOURCE_FIELD,
        )
        job = self._persist(AnalysisJob.for_source(campaign_id, source, len(kept)), kept)
        result = GraphCheckResult(
            job=job,
            findings=kept,
            structural_count=len(structural),
            semantic_count=len(semantic),
            suppressed_count=len(combined) - len(kept),
            semantic_status=semantic_status,
        )
        logger.info("Graph check for campaign %s: %s", campaign_id, result.format_human())
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _load_rules(self, campaign_id: str) -> ConstraintRules:
        try:
            return self._store.get_constraint_rules(campaign_id)
        except Exception as e:
            logger.warning(
                "Could not read constraint rules for campaign %s; treating the "
                "campaign as unconstrained: %s", campaign_id, e,
            )
            return ConstraintRules()

    def _run_semantic(
        self,
        snapshot: GraphSnapshot,
        cancel_event: Optional[threading.Event],
    ) -> tuple[list[Finding], str]:
        if not self.semantic_enabled or not self._semantic.should_run(snapshot):
            return [], "skipped"
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Semantic pass skipped: run cancelled")
            return [], "cancelled"
        try:
            return self._semantic.check(snapshot, cancel_event=cancel_event), "completed"
        except CompletionCancelled:
            logger.info(
                "Semantic pass cancelled for campaign %s; keeping structural findings",
                snapshot.campaign_id,
            )
            return [], "cancelled"
        except (CompletionError, SemanticParseError) as e:
            logger.warning(
                "Semantic pass failed for campaign %s: %s", snapshot.campaign_id, e
            )
        except Exception:
            logger.exception("Semantic checker failed for campaign %s", snapshot.campaign_id)
        return [], "failed"

    def _persist(self, job: AnalysisJob, findings: list[Finding]) -> AnalysisJob:
        try:
            return self._store.save_analysis(job, findings)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Could not save analysis job for campaign {job.campaign_id}: {e}"
            ) from e
