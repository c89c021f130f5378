"""
campaign_engine/structural_rules.py -- Structural Rule Set

Four deterministic, campaign-scoped checks over one ``GraphSnapshot``:

    check_orphans                 entity with no relationship at all
    check_type_pairs              proposal whose (source, target) types are
                                  not allowed for its relationship type
    check_cardinality             entity holding more relationships of one
                                  type and direction than the cap allows
    check_required_relationships  entity missing a relationship its type
                                  requires

Each check is a pure function ``(snapshot, rules) -> list[Finding]``.  A
relationship type with no rule in a table is unconstrained by that table;
``rule_for`` is the single place that policy is spelled out.

Usage:
    from campaign_engine.structural_rules import run_structural_checks

    findings = run_structural_checks(snapshot, rules)
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional, TypeVar

from campaign_engine.graph_builder import GraphSnapshot
from campaign_engine.models import ConstraintRules, DetectionType, Finding

logger = logging.getLogger(__name__)

T = TypeVar("T")

StructuralCheck = Callable[[GraphSnapshot, ConstraintRules], list[Finding]]


def rule_for(table: Mapping[str, T], key: str) -> tuple[Optional[T], bool]:
    """Look up the rule for *key*.

    Returns ``(rule, True)`` when a rule exists and ``(None, False)``
    otherwise.  Callers treat ``found == False`` as "unconstrained".
    """
    if key in table:
        return table[key], True
    return None, False


def format_valid_pairs(pairs) -> str:
    """Render allowed pairs as ``"npc -> location, npc -> npc"``."""
    return ", ".join(f"{src} -> {tgt}" for src, tgt in sorted(pairs))


# ---------------------------------------------------------------------------
# Orphans
# ---------------------------------------------------------------------------

def check_orphans(snapshot: GraphSnapshot, rules: ConstraintRules) -> list[Finding]:
    """Entities that are neither source nor target of any relationship."""
    findings = []
    for entity_id in snapshot.graph.get_orphans():
        entity = snapshot.entities_by_id[entity_id]
        findings.append(Finding(
            detection_type=DetectionType.ORPHAN_WARNING,
            matched_text=entity.name,
            entity_ref=entity.id,
            suggested_content={
                "entity_id": entity.id,
                "entity_name": entity.name,
                "entity_type": entity.entity_type,
                "description": (
                    f"{entity.name} has no relationships to other entities."
                ),
            },
        ))
    return findings


# ---------------------------------------------------------------------------
# Type pairs
# ---------------------------------------------------------------------------

def check_type_pairs(snapshot: GraphSnapshot, rules: ConstraintRules) -> list[Finding]:
    """Proposals whose endpoint types are not allowed for their relationship type.

    Proposals that reference an entity missing from the snapshot are
    skipped; there is no type to check.
    """
    table = rules.type_pair_table()
    findings = []
    for proposal in snapshot.proposals:
        allowed, found = rule_for(table, proposal.relationship_type)
        if not found:
            continue
        source = snapshot.entities_by_id.get(proposal.source_entity_id)
        target = snapshot.entities_by_id.get(proposal.target_entity_id)
        if source is None or target is None:
            logger.debug(
                "Skipping type-pair check for %s: unknown endpoint",
                proposal.relationship_type,
            )
            continue
        if (source.entity_type, target.entity_type) in allowed:
            continue

        findings.append(Finding(
            detection_type=DetectionType.INVALID_TYPE_PAIR,
            matched_text=proposal.relationship_type,
            suggested_content={
                "relationship_type": proposal.relationship_type,
                "source_entity_id": source.id,
                "source_entity_name": source.name,
                "source_entity_type": source.entity_type,
                "target_entity_id": target.id,
                "target_entity_name": target.name,
                "target_entity_type": target.entity_type,
                "valid_pairs": format_valid_pairs(allowed),
                "description": (
                    f"Relationship type {proposal.relationship_type} is not valid "
                    f"between {source.entity_type} and {target.entity_type}."
                ),
            },
        ))
    return findings


# ---------------------------------------------------------------------------
# Cardinality
# ---------------------------------------------------------------------------

def check_cardinality(snapshot: GraphSnapshot, rules: ConstraintRules) -> list[Finding]:
    """Entities exceeding a per-direction cap, counting stored plus proposed edges."""
    table = rules.cardinality_table()
    if not table:
        return []

    counts = snapshot.graph.count_by_direction(set(table))
    findings = []
    for (entity_id, rel_type, direction), count in sorted(counts.items()):
        rule, found = rule_for(table, rel_type)
        if not found:
            continue
        limit = rule.limit_for(direction)
        if limit is None or count <= limit:
            continue

        name = snapshot.entity_name(entity_id)
        findings.append(Finding(
            detection_type=DetectionType.CARDINALITY_VIOLATION,
            matched_text=rel_type,
            entity_ref=entity_id,
            suggested_content={
                "entity_id": entity_id,
                "entity_name": name,
                "entity_type": snapshot.entity_type(entity_id),
                "relationship_type": rel_type,
                "direction": direction,
                "current_count": count,
                "max_allowed": limit,
                "description": (
                    f"{name} has {count} {rel_type} relationships as {direction}, "
                    f"exceeding the maximum of {limit}."
                ),
            },
        ))
    return findings


# ---------------------------------------------------------------------------
# Required relationships
# ---------------------------------------------------------------------------

def check_required_relationships(
    snapshot: GraphSnapshot, rules: ConstraintRules
) -> list[Finding]:
    """Entities lacking a stored relationship their type requires."""
    table = rules.required_table()
    if not table:
        return []
    vocabulary = rules.vocabulary()

    findings = []
    for entity in snapshot.entities:
        required, found = rule_for(table, entity.entity_type)
        if not found:
            continue
        for rel_type in required:
            if rel_type not in vocabulary:
                logger.debug(
                    "Required rule %s -> %s references an undefined relationship type",
                    entity.entity_type, rel_type,
                )
                continue
            if snapshot.graph.has_relationship(entity.id, rel_type):
                continue
            findings.append(Finding(
                detection_type=DetectionType.MISSING_REQUIRED,
                matched_text=rel_type,
                entity_ref=entity.id,
                suggested_content={
                    "entity_id": entity.id,
                    "entity_name": entity.name,
                    "entity_type": entity.entity_type,
                    "missing_relationship_type": rel_type,
                    "description": (
                        f"{entity.name} ({entity.entity_type}) is missing a "
                        f"required {rel_type} relationship."
                    ),
                },
            ))
    return findings


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

STRUCTURAL_CHECKS: tuple[StructuralCheck, ...] = (
    check_orphans,
    check_type_pairs,
    check_cardinality,
    check_required_relationships,
)


def run_structural_checks(
    snapshot: GraphSnapshot,
    rules: ConstraintRules,
    checks: tuple[StructuralCheck, ...] = STRUCTURAL_CHECKS,
) -> list[Finding]:
    """Run every check; a check that raises is logged and contributes nothing."""
    if not snapshot.entities:
        return []
    findings: list[Finding] = []
    for check in checks:
        try:
            findings.extend(check(snapshot, rules))
        except Exception:
            logger.exception(
                "Structural check %s failed for campaign %s",
                check.__name__, snapshot.campaign_id,
            )
    return findings
