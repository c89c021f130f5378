"""
campaign_engine/models/campaign.py -- Campaign snapshot records.

Everything in this module is read-only input to the engine: the entity
roster, the stored relationship graph, proposed relationships awaiting
review, the relationship-type vocabulary, and the campaign's constraint
tables.  All models are frozen so a snapshot cannot drift while the
structural checks run over it.

Usage::

    from campaign_engine.models import ConstraintRules, Entity

    arkham = Entity(id="e-1", name="Arkham", entity_type="location")
    rules = ConstraintRules.model_validate(payload["constraints"])
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DIRECTION_SOURCE = "source"
DIRECTION_TARGET = "target"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ------------------------------------------------------------------
# Graph records
# ------------------------------------------------------------------

class Entity(_Frozen):
    """A campaign entity (NPC, location, faction, ...)."""

    id: str
    name: str
    entity_type: str
    description: str = ""

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("entity name must not be blank")
        return value


class Relationship(_Frozen):
    """A stored, directed relationship between two entities."""

    id: str
    source_entity_id: str
    target_entity_id: str
    relationship_type: str
    display_label: str = ""
    description: str = ""


class RelationshipSuggestion(_Frozen):
    """A proposed relationship that has not been written to the graph yet."""

    source_entity_id: str
    target_entity_id: str
    relationship_type: str
    source_entity_name: str = ""
    target_entity_name: str = ""
    description: str = ""


class RelationshipType(_Frozen):
    """One entry of a campaign's relationship-type vocabulary."""

    name: str
    inverse_name: str = ""
    is_symmetric: bool = False
    display_label: str = ""


class ResolvedCandidate(_Frozen):
    """One scored answer from a fuzzy name lookup."""

    entity_id: str
    similarity: float = Field(ge=0.0, le=1.0)
    name: str = ""
    entity_type: str = ""


# ------------------------------------------------------------------
# Constraint tables
# ------------------------------------------------------------------

class TypePairRule(_Frozen):
    """Allowed (source type, target type) pair for a relationship type."""

    relationship_type: str
    source_entity_type: str
    target_entity_type: str


class CardinalityRule(_Frozen):
    """Per-direction cap on how many relationships of one type an entity holds.

    ``None`` for a direction means that side is unbounded.
    """

    relationship_type: str
    max_source: Optional[int] = Field(default=None, ge=0)
    max_target: Optional[int] = Field(default=None, ge=0)

    def limit_for(self, direction: str) -> Optional[int]:
        if direction == DIRECTION_SOURCE:
            return self.max_source
        if direction == DIRECTION_TARGET:
            return self.max_target
        raise ValueError(f"Unknown direction: {direction!r}")


class RequiredRule(_Frozen):
    """Every entity of ``entity_type`` must hold a ``relationship_type`` edge."""

    entity_type: str
    relationship_type: str


class ConstraintRules(_Frozen):
    """All constraint tables for one campaign.

    A relationship type with no entry in a table is unconstrained by that
    table.  The ``*_table`` helpers return lookup dicts keyed the way the
    structural checks query them.
    """

    relationship_types: tuple[RelationshipType, ...] = ()
    type_pairs: tuple[TypePairRule, ...] = ()
    cardinality: tuple[CardinalityRule, ...] = ()
    required: tuple[RequiredRule, ...] = ()

    def vocabulary(self) -> frozenset[str]:
        """Names of every relationship type the campaign defines."""
        return frozenset(rt.name for rt in self.relationship_types)

    def type_pair_table(self) -> dict[str, frozenset[tuple[str, str]]]:
        table: dict[str, set[tuple[str, str]]] = {}
        for rule in self.type_pairs:
            table.setdefault(rule.relationship_type, set()).add(
                (rule.source_entity_type, rule.target_entity_type)
            )
        return {rel: frozenset(pairs) for rel, pairs in table.items()}

    def cardinality_table(self) -> dict[str, CardinalityRule]:
        return {rule.relationship_type: rule for rule in self.cardinality}

    def required_table(self) -> dict[str, tuple[str, ...]]:
        table: dict[str, list[str]] = {}
        for rule in self.required:
            names = table.setdefault(rule.entity_type, [])
            if rule.relationship_type not in names:
                names.append(rule.relationship_type)
        return {etype: tuple(names) for etype, names in table.items()}


class Override(_Frozen):
    """A human-acknowledged exception for one exactly-keyed finding shape."""

    constraint_type: str
    override_key: str
