"""
campaign_engine/graph_builder.py -- Campaign Graph Snapshot (NetworkX)

Holds one immutable snapshot of a campaign's graph: every entity, every
stored relationship, and any proposed relationships under review.  The
snapshot lazily builds a NetworkX multigraph (entities are nodes; stored
and proposed relationships are keyed edges) that the structural checks
query for degree, per-direction counts and edge presence.

Usage:
    from campaign_engine.graph_builder import GraphSnapshot

    snapshot = GraphSnapshot.load(store, "campaign-1", proposals)
    orphans = snapshot.graph.get_orphans()
    counts = snapshot.graph.count_by_direction({"knows"})
"""

import logging
from collections import Counter
from dataclasses import dataclass
from functools import cached_property
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

try:
    import networkx as nx
except ImportError:
    raise ImportError(
        "The 'networkx' package is required but not installed. "
        "Install it with: pip install networkx"
    )

from campaign_engine.models import Entity, Relationship, RelationshipSuggestion
from campaign_engine.models.campaign import DIRECTION_SOURCE, DIRECTION_TARGET


# ---------------------------------------------------------------------------
# CampaignGraph
# ---------------------------------------------------------------------------

class CampaignGraph:
    """Directed multigraph of campaign entities and relationships.

    Stored relationships and proposals share the graph; proposals carry
    ``proposed=True`` on the edge so checks can tell them apart.  Edges may
    reference entities the roster does not contain; those endpoints become
    stub nodes with ``known=False``.
    """

    def __init__(self):
        self.graph: nx.MultiDiGraph = nx.MultiDiGraph()

    @classmethod
    def build(
        cls,
        entities: Iterable[Entity],
        relationships: Iterable[Relationship] = (),
        proposals: Iterable[RelationshipSuggestion] = (),
    ) -> "CampaignGraph":
        cg = cls()
        for entity in entities:
            cg.add_entity(entity)
        for rel in relationships:
            cg.add_relationship(
                rel.source_entity_id, rel.target_entity_id, rel.relationship_type,
                key=rel.id,
            )
        for i, proposal in enumerate(proposals):
            cg.add_relationship(
                proposal.source_entity_id, proposal.target_entity_id,
                proposal.relationship_type, key=f"proposed-{i}", proposed=True,
            )
        return cg

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_entity(self, entity: Entity) -> None:
        self.graph.add_node(
            entity.id,
            name=entity.name,
            entity_type=entity.entity_type,
            known=True,
        )

    def add_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        key: Optional[str] = None,
        proposed: bool = False,
    ) -> None:
        """Add one directed edge, creating stub nodes for unknown endpoints."""
        for node in (source_id, target_id):
            if node not in self.graph:
                self.graph.add_node(node, known=False)
        self.graph.add_edge(
            source_id,
            target_id,
            key=key,
            relationship_type=relationship_type,
            proposed=proposed,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_orphans(self) -> list[str]:
        """Return known entity IDs with zero connections, stored or proposed."""
        return sorted(
            node for node, attrs in self.graph.nodes(data=True)
            if attrs.get("known") and self.graph.degree(node) == 0
        )

    def count_by_direction(
        self, relationship_types: Optional[set[str]] = None
    ) -> Counter:
        """Count edges per ``(entity_id, relationship_type, direction)``.

        Each edge adds one to its source under ``"source"`` and one to its
        target under ``"target"``.  With *relationship_types* given, other
        types are not counted.
        """
        counts: Counter = Counter()
        for src, tgt, rel_type in self.graph.edges(data="relationship_type"):
            if relationship_types is not None and rel_type not in relationship_types:
                continue
            counts[(src, rel_type, DIRECTION_SOURCE)] += 1
            counts[(tgt, rel_type, DIRECTION_TARGET)] += 1
        return counts

    def has_relationship(
        self, entity_id: str, relationship_type: str, include_proposed: bool = False
    ) -> bool:
        """True when *entity_id* is source or target of a matching edge."""
        if entity_id not in self.graph:
            return False
        edges = list(self.graph.out_edges(entity_id, data=True))
        edges += list(self.graph.in_edges(entity_id, data=True))
        return any(
            attrs.get("relationship_type") == relationship_type
            and (include_proposed or not attrs.get("proposed"))
            for _, _, attrs in edges
        )

    def get_stats(self) -> dict:
        """Return ``node_count``, ``edge_count``, ``proposed_count``, ``orphan_count``."""
        proposed = sum(
            1 for _, _, p in self.graph.edges(data="proposed") if p
        )
        return {
            "node_count": self.graph.number_of_nodes(),
            "edge_count": self.graph.number_of_edges(),
            "proposed_count": proposed,
            "orphan_count": len(self.get_orphans()),
        }


# ---------------------------------------------------------------------------
# GraphSnapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GraphSnapshot:
    """Immutable input shared by the structural and semantic checks."""

    campaign_id: str
    entities: tuple[Entity, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    proposals: tuple[RelationshipSuggestion, ...] = ()

    @classmethod
    def load(
        cls,
        store,
        campaign_id: str,
        proposals: Iterable[RelationshipSuggestion] = (),
    ) -> "GraphSnapshot":
        """Read entities and relationships from *store*.

        A failed read is logged and yields an empty list for that half, so
        the checks degrade to fewer findings instead of aborting.
        """
        try:
            entities = tuple(store.list_entities(campaign_id))
        except Exception as e:
            logger.warning("Could not list entities for campaign %s: %s", campaign_id, e)
            entities = ()
        try:
            relationships = tuple(store.list_relationships(campaign_id))
        except Exception as e:
            logger.warning(
                "Could not list relationships for campaign %s: %s", campaign_id, e
            )
            relationships = ()
        return cls(
            campaign_id=campaign_id,
            entities=entities,
            relationships=relationships,
            proposals=tuple(proposals),
        )

    @cached_property
    def graph(self) -> CampaignGraph:
        return CampaignGraph.build(self.entities, self.relationships, self.proposals)

    @cached_property
    def entities_by_id(self) -> dict[str, Entity]:
        return {entity.id: entity for entity in self.entities}

    def entity_name(self, entity_id: str) -> str:
        entity = self.entities_by_id.get(entity_id)
        return entity.name if entity else f"entity-{entity_id}"

    def entity_type(self, entity_id: str) -> str:
        entity = self.entities_by_id.get(entity_id)
        return entity.entity_type if entity else "unknown"
