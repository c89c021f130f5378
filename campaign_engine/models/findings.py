"""
campaign_engine/models/findings.py -- Findings and analysis jobs.

A ``Finding`` is the single output record shared by the text scanner and
the graph-consistency checker.  Findings are frozen once constructed; the
review workflow that later changes ``resolution`` works on stored rows,
not on these objects.

Usage::

    from campaign_engine.models import DetectionType, Finding

    finding = Finding(
        detection_type=DetectionType.UNTAGGED_MENTION,
        matched_text="Dr. Armitage",
        entity_ref="e-2",
        similarity=1.0,
    )
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DetectionType(str, Enum):
    WIKI_LINK_RESOLVED = "wiki_link_resolved"
    WIKI_LINK_UNRESOLVED = "wiki_link_unresolved"
    UNTAGGED_MENTION = "untagged_mention"
    MISSPELLING = "misspelling"
    ORPHAN_WARNING = "orphan_warning"
    INVALID_TYPE_PAIR = "invalid_type_pair"
    CARDINALITY_VIOLATION = "cardinality_violation"
    MISSING_REQUIRED = "missing_required"
    REDUNDANT_EDGE = "redundant_edge"
    GRAPH_WARNING = "graph_warning"


class Resolution(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    NEW_ENTITY = "new_entity"
    DISMISSED = "dismissed"


TEXT_SCAN_TYPES = frozenset({
    DetectionType.WIKI_LINK_RESOLVED,
    DetectionType.WIKI_LINK_UNRESOLVED,
    DetectionType.UNTAGGED_MENTION,
    DetectionType.MISSPELLING,
})

OVERRIDABLE_TYPES = frozenset({
    DetectionType.INVALID_TYPE_PAIR,
    DetectionType.CARDINALITY_VIOLATION,
    DetectionType.MISSING_REQUIRED,
})


class Finding(BaseModel):
    """One reviewable output record.

    ``position_start`` / ``position_end`` are character (code-point) offsets
    into the analyzed text as a Python ``str``, so ``text[start:end]`` is the
    matched span.  They are not byte offsets and only coincide with UTF-8
    byte offsets for ASCII text.

    ``suggested_content`` is deep-copied on construction, so later changes
    to the caller's dict never reach the finding.  ``to_dict()`` returns a
    fresh copy as well; treat the attribute itself as read-only.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    detection_type: DetectionType
    matched_text: str
    entity_ref: Optional[str] = None
    similarity: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    context_snippet: Optional[str] = None
    position_start: Optional[int] = Field(default=None, ge=0)
    position_end: Optional[int] = Field(default=None, ge=0)
    suggested_content: dict[str, Any] = Field(default_factory=dict)
    resolution: Resolution = Resolution.PENDING

    @field_validator("suggested_content", mode="before")
    @classmethod
    def _copy_payload(cls, value: Any) -> Any:
        return copy.deepcopy(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Finding":
        if (
            self.detection_type in TEXT_SCAN_TYPES
            and self.entity_ref is not None
            and self.similarity is None
        ):
            raise ValueError(
                f"{self.detection_type.value} finding with an entity reference "
                "must carry a similarity score"
            )
        if (self.position_start is None) != (self.position_end is None):
            raise ValueError("position_start and position_end must be set together")
        if self.position_start is not None and self.position_start > self.position_end:
            raise ValueError(
                f"position_start ({self.position_start}) exceeds "
                f"position_end ({self.position_end})"
            )
        return self

    @property
    def is_overridable(self) -> bool:
        return self.detection_type in OVERRIDABLE_TYPES

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation (enum members become their values)."""
        return self.model_dump(mode="json")


class SourceRef(BaseModel):
    """Identifies the text field an analysis job was run against."""

    model_config = ConfigDict(frozen=True)

    source_table: str
    source_id: str
    source_field: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisJob(BaseModel):
    """One engine invocation.  ``total_items`` is fixed at creation."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    campaign_id: str
    source_table: str
    source_id: str
    source_field: str
    status: str = "completed"
    total_items: int = Field(default=0, ge=0)
    resolved_items: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def for_source(
        cls, campaign_id: str, source: SourceRef, total_items: int
    ) -> "AnalysisJob":
        return cls(
            campaign_id=campaign_id,
            source_table=source.source_table,
            source_id=source.source_id,
            source_field=source.source_field,
            total_items=total_items,
        )

    @property
    def source(self) -> SourceRef:
        return SourceRef(
            source_table=self.source_table,
            source_id=self.source_id,
            source_field=self.source_field,
        )
