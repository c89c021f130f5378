"""
Tests for campaign_engine/services/override_filter.py -- override keys and
suppression.

Validates:
    - override key derivation per constraint type
    - undecodable payloads are never overridable
    - exact-key suppression, scoped to one campaign
    - near-miss keys (other entity, other direction, other type) are kept
    - a failing override lookup keeps the finding
"""

import logging

import pytest

from campaign_engine.models import DetectionType, Finding
from campaign_engine.services.override_filter import OverrideFilter, derive_override_key


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _finding(detection_type, **content):
    """Build a finding whose payload is *content*."""
    return Finding(detection_type=detection_type, matched_text="x",
                   suggested_content=content)


def _cardinality(entity_id="npc-armitage", direction="source", rel_type="knows"):
    return _finding(DetectionType.CARDINALITY_VIOLATION, relationship_type=rel_type,
                    entity_id=entity_id, direction=direction)


def _type_pair(source_type="location", target_type="organization"):
    return _finding(DetectionType.INVALID_TYPE_PAIR, relationship_type="member_of",
                    source_entity_type=source_type, target_entity_type=target_type)


def _store_lookup(*keys):
    """Fake ``has_override`` answering True only for exact stored keys."""
    stored = set(keys)
    return lambda cid, ctype, key: (cid, ctype, key) in stored


TYPE_PAIR = _type_pair()
CARDINALITY = _cardinality()
REQUIRED = _finding(DetectionType.MISSING_REQUIRED, entity_type="cult_leader",
                    missing_relationship_type="leads")
ORPHAN = _finding(DetectionType.ORPHAN_WARNING, entity_id="npc-lavinia")

ARMITAGE_KNOWS = ("c", "cardinality", "knows:npc-armitage:source")
MEMBER_OF_LOCATION = ("c", "domain_range", "member_of:location:organization")


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

class TestDeriveOverrideKey:
    """Tests for derive_override_key."""

    @pytest.mark.parametrize("finding,expected", [
        (TYPE_PAIR, ("domain_range", "member_of:location:organization")),
        (CARDINALITY, ("cardinality", "knows:npc-armitage:source")),
        (REQUIRED, ("required", "cult_leader:leads")),
        (ORPHAN, None),
    ])
    def test_keys(self, finding, expected):
        """Each overridable type maps to its constraint type and key."""
        assert derive_override_key(finding) == expected

    def test_integer_entity_id(self):
        """Integer entity ids are rendered as text in the key."""
        f = _cardinality(entity_id=42, direction="target")
        assert derive_override_key(f) == ("cardinality", "knows:42:target")

    @pytest.mark.parametrize("content", [
        {"relationship_type": "knows", "direction": "source"},
        {"relationship_type": "knows", "entity_id": "", "direction": "source"},
        {"relationship_type": "knows", "entity_id": None, "direction": "source"},
    ])
    def test_undecodable_payload(self, content, caplog):
        """Missing or empty key fields make the finding non-overridable."""
        with caplog.at_level(logging.WARNING):
            f = _finding(DetectionType.CARDINALITY_VIOLATION, **content)
            assert derive_override_key(f) is None


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

class TestOverrideFilter:
    """Tests for OverrideFilter.apply."""

    def test_suppresses_matching(self):
        """Only the finding whose key is stored is dropped, order kept."""
        filt = OverrideFilter(_store_lookup(ARMITAGE_KNOWS))
        assert filt.apply("c", [TYPE_PAIR, CARDINALITY, REQUIRED]) == [TYPE_PAIR, REQUIRED]

    def test_other_campaign_not_suppressed(self):
        """An override in one campaign does not apply to another."""
        filt = OverrideFilter(_store_lookup(ARMITAGE_KNOWS))
        assert filt.apply("other", [CARDINALITY]) == [CARDINALITY]

    @pytest.mark.parametrize("finding", [
        _cardinality(entity_id="npc-wilbur"),
        _cardinality(direction="target"),
        _cardinality(rel_type="member_of"),
    ], ids=["other-entity", "other-direction", "other-type"])
    def test_near_miss_cardinality_kept(self, finding):
        """A cardinality key differing in one part is not suppressed."""
        filt = OverrideFilter(_store_lookup(ARMITAGE_KNOWS))
        assert filt.apply("c", [finding]) == [finding]

    @pytest.mark.parametrize("finding", [
        _type_pair(target_type="faction"),
        _type_pair(source_type="npc"),
    ], ids=["other-target-type", "other-source-type"])
    def test_near_miss_type_pair_kept(self, finding):
        """A type-pair key differing in one endpoint type is not suppressed."""
        filt = OverrideFilter(_store_lookup(MEMBER_OF_LOCATION))
        assert filt.apply("c", [TYPE_PAIR, finding]) == [finding]

    def test_near_miss_required_kept(self):
        """A required key for another relationship type is not suppressed."""
        other = _finding(DetectionType.MISSING_REQUIRED, entity_type="cult_leader",
                         missing_relationship_type="worships")
        filt = OverrideFilter(_store_lookup(("c", "required", "cult_leader:leads")))
        assert filt.apply("c", [REQUIRED, other]) == [other]

    def test_non_overridable_never_looked_up(self):
        """Orphan warnings skip the override store entirely."""
        calls = []
        filt = OverrideFilter(lambda *a: calls.append(a) or True)
        assert filt.apply("c", [ORPHAN]) == [ORPHAN]
        assert calls == []

    def test_lookup_failure_keeps_finding(self, caplog):
        """An unreachable override store keeps the finding and logs why."""
        def broken(*args):
            raise RuntimeError("database is locked")

        with caplog.at_level(logging.WARNING):
            assert OverrideFilter(broken).apply("c", [REQUIRED]) == [REQUIRED]
        assert "database is locked" in caplog.text

    def test_undecodable_payload_kept(self):
        """A payload missing a key field is kept even if every lookup says yes."""
        bad = _finding(DetectionType.MISSING_REQUIRED, entity_type="cult_leader")
        assert OverrideFilter(lambda *a: True).apply("c", [bad]) == [bad]
