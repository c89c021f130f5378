"""
campaign_engine/services/semantic_checker.py -- Semantic graph review.

Asks the completion capability for redundant or implied edges in the
snapshot and turns its answer into findings.  Model output is untrusted:
``parse_graph_response`` decodes what it can, normalizes labels, drops
entries without a description, and only raises ``SemanticParseError``
when nothing at all can be decoded.

Usage:
    from campaign_engine.services.semantic_checker import SemanticChecker

    checker = SemanticChecker(completion_client)
    findings = checker.check(snapshot, cancel_event=event)
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from campaign_engine.config import EngineSettings
from campaign_engine.errors import SemanticParseError
from campaign_engine.graph_builder import GraphSnapshot
from campaign_engine.models import DetectionType, Finding
from campaign_engine.services.prompt_builder import build_system_prompt, build_user_prompt
from campaign_engine.utils import strip_code_fences

logger = logging.getLogger(__name__)

# Labels the model is asked to use, mapped to the finding type they produce.
_KNOWN_LABELS = {
    "redundant_edge": DetectionType.REDUNDANT_EDGE,
    "implied_edge": DetectionType.REDUNDANT_EDGE,
}


# ------------------------------------------------------------------
# Response schema
# ------------------------------------------------------------------

class GraphFinding(BaseModel):
    """One entry of the model's ``findings`` list after normalization."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    finding_type: str = Field(
        default="",
        validation_alias=AliasChoices("findingType", "finding_type", "type"),
    )
    description: str = ""
    involved_entities: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("involvedEntities", "involved_entities"),
    )
    suggestion: str = ""

    @field_validator("finding_type", "description", "suggestion", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("finding_type")
    @classmethod
    def _lower_label(cls, value: str) -> str:
        return value.lower()

    @field_validator("involved_entities", mode="before")
    @classmethod
    def _coerce_entities(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, list):
            return [str(v) for v in value if v is not None and str(v).strip()]
        return []

    @property
    def detection_type(self) -> DetectionType:
        return _KNOWN_LABELS.get(self.finding_type, DetectionType.GRAPH_WARNING)


def _decode_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    # Models sometimes wrap the object in prose; take the outermost braces.
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise SemanticParseError("Response contains no JSON object")
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise SemanticParseError(f"Response is not valid JSON: {e}") from e


def parse_graph_response(raw: str) -> list[GraphFinding]:
    """Decode and validate the model's response.

    Raises
    ------
    SemanticParseError
        The response is empty or is not JSON at all.
    """
    text = strip_code_fences(raw or "")
    if not text:
        raise SemanticParseError("Empty response from completion backend")

    data = _decode_json(text)
    if isinstance(data, dict):
        entries = data.get("findings") or []
    elif isinstance(data, list):
        entries = data
    else:
        raise SemanticParseError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    if not isinstance(entries, list):
        logger.warning("Ignoring non-list 'findings' value: %r", entries)
        return []

    findings: list[GraphFinding] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning("Dropping finding %d: not an object", i)
            continue
        try:
            finding = GraphFinding.model_validate(entry)
        except ValidationError as e:
            logger.warning("Dropping finding %d: %s", i, e)
            continue
        if not finding.description:
            logger.debug("Dropping finding %d: empty description", i)
            continue
        if finding.finding_type not in _KNOWN_LABELS:
            logger.warning(
                "Unknown finding type %r normalized to %s",
                finding.finding_type, DetectionType.GRAPH_WARNING.value,
            )
        findings.append(finding)
    return findings


def to_finding(graph_finding: GraphFinding) -> Finding:
    return Finding(
        detection_type=graph_finding.detection_type,
        matched_text=graph_finding.description,
        suggested_content={
            "finding_type": graph_finding.finding_type,
            "description": graph_finding.description,
            "involved_entities": list(graph_finding.involved_entities),
            "suggestion": graph_finding.suggestion,
        },
    )


# ------------------------------------------------------------------
# SemanticChecker
# ------------------------------------------------------------------

class SemanticChecker:
    """Runs the LLM review over a snapshot.

    Parameters
    ----------
    completion : object
        Anything with ``complete(system_prompt, user_prompt, *, cancel_event=None)``.
    settings : EngineSettings, optional
        Supplies the proposal description cap.
    """

    def __init__(self, completion: Any, settings: Optional[EngineSettings] = None):
        self._completion = completion
        self._settings = settings or EngineSettings()

    def should_run(self, snapshot: GraphSnapshot) -> bool:
        """There must be entities and at least one edge, stored or proposed."""
        return bool(snapshot.entities) and bool(
            snapshot.relationships or snapshot.proposals
        )

    def check(
        self,
        snapshot: GraphSnapshot,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[Finding]:
        """Return semantic findings for *snapshot*.

        Completion and decode failures propagate; the pipeline decides
        how to degrade.
        """
        if not self.should_run(snapshot):
            return []

        raw = self._completion.complete(
            build_system_prompt(),
            build_user_prompt(snapshot, self._settings.proposal_description_max),
            cancel_event=cancel_event,
        )
        findings = [to_finding(f) for f in parse_graph_response(raw)]
        logger.info(
            "Semantic review for campaign %s produced %d finding(s)",
            snapshot.campaign_id, len(findings),
        )
        return findings
