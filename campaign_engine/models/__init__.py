"""
campaign_engine/models/ -- Pydantic v2 models for the campaign-consistency engine.

Submodules:
    campaign    Read-only campaign snapshot records (entities, relationships,
                relationship types, constraint rules, overrides).
    findings    Output records (Finding, AnalysisJob) and the closed
                detection-type vocabulary.
"""

from campaign_engine.models.campaign import (
    CardinalityRule,
    ConstraintRules,
    Entity,
    Override,
    Relationship,
    RelationshipSuggestion,
    RelationshipType,
    RequiredRule,
    ResolvedCandidate,
    TypePairRule,
)
from campaign_engine.models.findings import (
    OVERRIDABLE_TYPES,
    TEXT_SCAN_TYPES,
    AnalysisJob,
    DetectionType,
    Finding,
    Resolution,
    SourceRef,
)

__all__ = [
    "AnalysisJob",
    "CardinalityRule",
    "ConstraintRules",
    "DetectionType",
    "Entity",
    "Finding",
    "OVERRIDABLE_TYPES",
    "Override",
    "Relationship",
    "RelationshipSuggestion",
    "RelationshipType",
    "RequiredRule",
    "Resolution",
    "ResolvedCandidate",
    "SourceRef",
    "TEXT_SCAN_TYPES",
    "TypePairRule",
]
