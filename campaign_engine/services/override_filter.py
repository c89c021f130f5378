"""
campaign_engine/services/override_filter.py -- Override suppression.

A game master can acknowledge a constraint finding once ("yes, this NPC
really does know three people") and never see that exact finding again.
This module derives the canonical ``(constraint_type, override_key)`` for
each overridable finding and drops the finding when a matching override
is on record.

The filter fails open: an undecodable payload, an empty key field or an
unreachable override store all keep the finding.

Usage:
    from campaign_engine.services.override_filter import OverrideFilter

    kept = OverrideFilter(store.has_override).apply("campaign-1", findings)
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from campaign_engine.models import DetectionType, Finding

logger = logging.getLogger(__name__)

CONSTRAINT_DOMAIN_RANGE = "domain_range"
CONSTRAINT_CARDINALITY = "cardinality"
CONSTRAINT_REQUIRED = "required"

HasOverrideFn = Callable[[str, str, str], bool]


# ------------------------------------------------------------------
# Payload shapes
# ------------------------------------------------------------------

class _KeyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _non_empty(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()


class _TypePairPayload(_KeyPayload):
    relationship_type: str
    source_entity_type: str
    target_entity_type: str


class _CardinalityPayload(_KeyPayload):
    relationship_type: str
    entity_id: Union[str, int]
    direction: str


class _RequiredPayload(_KeyPayload):
    entity_type: str
    missing_relationship_type: str


def derive_override_key(finding: Finding) -> Optional[tuple[str, str]]:
    """Return ``(constraint_type, override_key)`` or ``None``.

    ``None`` means the finding cannot be overridden: its type is not
    overridable, or its payload is missing a field the key needs.
    """
    payload = finding.suggested_content
    try:
        if finding.detection_type is DetectionType.INVALID_TYPE_PAIR:
            p = _TypePairPayload.model_validate(payload)
            return CONSTRAINT_DOMAIN_RANGE, (
                f"{p.relationship_type}:{p.source_entity_type}:{p.target_entity_type}"
            )
        if finding.detection_type is DetectionType.CARDINALITY_VIOLATION:
            p = _CardinalityPayload.model_validate(payload)
            return CONSTRAINT_CARDINALITY, (
                f"{p.relationship_type}:{p.entity_id}:{p.direction}"
            )
        if finding.detection_type is DetectionType.MISSING_REQUIRED:
            p = _RequiredPayload.model_validate(payload)
            return CONSTRAINT_REQUIRED, (
                f"{p.entity_type}:{p.missing_relationship_type}"
            )
    except ValidationError as e:
        logger.warning(
            "Keeping %s finding with undecodable payload: %s",
            finding.detection_type.value, e.errors()[0].get("msg", e),
        )
    return None


# ------------------------------------------------------------------
# OverrideFilter
# ------------------------------------------------------------------

class OverrideFilter:
    """Drops findings a human has already overridden.

    Parameters
    ----------
    has_override : callable
        ``has_override(campaign_id, constraint_type, key) -> bool``.  May
        raise; a raising lookup keeps the finding.
    """

    def __init__(self, has_override: HasOverrideFn):
        self._has_override = has_override

    def is_overridden(self, campaign_id: str, finding: Finding) -> bool:
        if not finding.is_overridable:
            return False
        derived = derive_override_key(finding)
        if derived is None:
            return False
        constraint_type, key = derived
        try:
            found = bool(self._has_override(campaign_id, constraint_type, key))
        except Exception as e:
            logger.warning(
                "Override lookup failed for %s %r in campaign %s; keeping finding: %s",
                constraint_type, key, campaign_id, e,
            )
            return False
        if found:
            logger.debug("Suppressed %s finding %r (overridden)", constraint_type, key)
        return found

    def apply(self, campaign_id: str, findings: list[Finding]) -> list[Finding]:
        """Return *findings* minus the overridden ones, order preserved."""
        kept = [f for f in findings if not self.is_overridden(campaign_id, f)]
        if len(kept) != len(findings):
            logger.info(
                "Override filter suppressed %d of %d finding(s) for campaign %s",
                len(findings) - len(kept), len(findings), campaign_id,
            )
        return kept
