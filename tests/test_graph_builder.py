"""
Tests for campaign_engine/graph_builder.py -- CampaignGraph and GraphSnapshot.
"""

import logging
from unittest.mock import MagicMock

from campaign_engine.graph_builder import CampaignGraph, GraphSnapshot
from campaign_engine.models import Entity, Relationship, RelationshipSuggestion


def _entity(eid, name=None, etype="npc"):
    return Entity(id=eid, name=name or eid.title(), entity_type=etype)


def _rel(rid, src, tgt, rtype="knows"):
    return Relationship(id=rid, source_entity_id=src, target_entity_id=tgt,
                        relationship_type=rtype)


def _proposal(src, tgt, rtype="knows"):
    return RelationshipSuggestion(source_entity_id=src, target_entity_id=tgt,
                                  relationship_type=rtype)


class TestCampaignGraph:
    def test_build_counts(self):
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b"), _entity("c")],
            [_rel("r1", "a", "b")],
            [_proposal("b", "c")],
        )
        stats = cg.get_stats()
        assert stats["node_count"] == 3
        assert stats["edge_count"] == 2
        assert stats["proposed_count"] == 1
        assert stats["orphan_count"] == 0

    def test_parallel_edges_kept(self):
        """Two relationships between the same pair are two edges."""
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b")],
            [_rel("r1", "a", "b"), _rel("r2", "a", "b", "member_of")],
        )
        assert cg.graph.number_of_edges() == 2

    def test_orphans(self):
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b"), _entity("lonely")],
            [_rel("r1", "a", "b")],
        )
        assert cg.get_orphans() == ["lonely"]

    def test_proposal_connects(self):
        """An entity whose only link is a proposal is not an orphan."""
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b")], [], [_proposal("a", "b")],
        )
        assert cg.get_orphans() == []

    def test_unknown_endpoint_becomes_stub(self):
        cg = CampaignGraph.build([_entity("a")], [_rel("r1", "a", "ghost")])
        assert cg.graph.nodes["ghost"]["known"] is False
        assert cg.get_orphans() == []

    def test_count_by_direction(self):
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b"), _entity("c")],
            [_rel("r1", "a", "b"), _rel("r2", "a", "c"), _rel("r3", "b", "c", "leads")],
            [_proposal("c", "a")],
        )
        counts = cg.count_by_direction({"knows"})
        assert counts[("a", "knows", "source")] == 2
        assert counts[("a", "knows", "target")] == 1
        assert counts[("c", "knows", "target")] == 1
        assert ("b", "leads", "source") not in counts

    def test_count_all_types(self):
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b")],
            [_rel("r1", "a", "b"), _rel("r2", "a", "b", "leads")],
        )
        counts = cg.count_by_direction()
        assert counts[("a", "leads", "source")] == 1
        assert counts[("b", "knows", "target")] == 1

    def test_has_relationship_ignores_proposals_by_default(self):
        cg = CampaignGraph.build(
            [_entity("a"), _entity("b")], [], [_proposal("a", "b", "leads")],
        )
        assert not cg.has_relationship("a", "leads")
        assert cg.has_relationship("a", "leads", include_proposed=True)

    def test_has_relationship_either_end(self):
        cg = CampaignGraph.build([_entity("a"), _entity("b")], [_rel("r1", "a", "b", "leads")])
        assert cg.has_relationship("a", "leads")
        assert cg.has_relationship("b", "leads")
        assert not cg.has_relationship("b", "knows")
        assert not cg.has_relationship("missing", "leads")


class TestGraphSnapshot:
    def test_load_from_store(self, store, campaign_id):
        snapshot = GraphSnapshot.load(store, campaign_id, [_proposal("npc-lavinia", "npc-wilbur")])
        assert len(snapshot.entities) == 5
        assert len(snapshot.relationships) == 3
        assert len(snapshot.proposals) == 1
        assert snapshot.graph.get_stats()["proposed_count"] == 1

    def test_read_failure_degrades(self, caplog):
        store = MagicMock()
        store.list_entities.return_value = [_entity("a")]
        store.list_relationships.side_effect = RuntimeError("disk I/O error")
        with caplog.at_level(logging.WARNING):
            snapshot = GraphSnapshot.load(store, "c")
        assert len(snapshot.entities) == 1
        assert snapshot.relationships == ()
        assert "disk I/O error" in caplog.text

    def test_name_and_type_fallbacks(self, make_snapshot):
        snapshot = make_snapshot(entities=[{"id": "a", "name": "Arkham",
                                            "entity_type": "location"}])
        assert snapshot.entity_name("a") == "Arkham"
        assert snapshot.entity_type("a") == "location"
        assert snapshot.entity_name("zz") == "entity-zz"
        assert snapshot.entity_type("zz") == "unknown"

    def test_graph_is_cached(self, make_snapshot):
        snapshot = make_snapshot(entities=[{"id": "a", "name": "A", "entity_type": "npc"}])
        assert snapshot.graph is snapshot.graph
