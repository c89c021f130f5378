"""
Shared pytest fixtures for the campaign-consistency engine test suite.

Provides:
    - campaign_id: the id used by the sample campaign
    - sample_campaign: a campaign document (entities, relationships,
      relationship types, constraint tables) as a plain dict
    - store: a temp-dir SQLiteStore pre-loaded with sample_campaign
    - make_resolver: builds a fake name lookup from a {name: (id, score)} table
    - make_snapshot: builds a GraphSnapshot from model kwargs
"""

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure campaign_engine/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from campaign_engine.graph_builder import GraphSnapshot  # noqa: E402
from campaign_engine.models import (  # noqa: E402
    Entity,
    Relationship,
    RelationshipSuggestion,
    ResolvedCandidate,
)
from campaign_engine.sqlite_store import SQLiteStore  # noqa: E402

CAMPAIGN_ID = "campaign-1"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def campaign_id():
    return CAMPAIGN_ID


@pytest.fixture
def sample_campaign():
    """Return a small Arkham campaign with every constraint table populated.

    Entities:
        loc-arkham       Arkham                 location
        npc-armitage     Dr. Armitage           npc
        org-miskatonic   Miskatonic University  organization
        npc-wilbur       Wilbur Whateley        cult_leader
        npc-lavinia      Lavinia Whateley       npc      (orphan)
    """
    return {
        "campaign_id": CAMPAIGN_ID,
        "entities": [
            {"id": "loc-arkham", "name": "Arkham", "entity_type": "location"},
            {"id": "npc-armitage", "name": "Dr. Armitage", "entity_type": "npc"},
            {"id": "org-miskatonic", "name": "Miskatonic University",
             "entity_type": "organization"},
            {"id": "npc-wilbur", "name": "Wilbur Whateley", "entity_type": "cult_leader"},
            {"id": "npc-lavinia", "name": "Lavinia Whateley", "entity_type": "npc"},
        ],
        "relationships": [
            {"id": "rel-1", "source_entity_id": "npc-armitage",
             "target_entity_id": "org-miskatonic", "relationship_type": "member_of",
             "display_label": "works at"},
            {"id": "rel-2", "source_entity_id": "org-miskatonic",
             "target_entity_id": "loc-arkham", "relationship_type": "located_in"},
            {"id": "rel-3", "source_entity_id": "npc-armitage",
             "target_entity_id": "npc-wilbur", "relationship_type": "knows"},
        ],
        "constraints": {
            "relationship_types": [
                {"name": "knows", "is_symmetric": True},
                {"name": "member_of", "inverse_name": "has_member"},
                {"name": "located_in", "inverse_name": "contains"},
                {"name": "leads", "inverse_name": "led_by"},
            ],
            "type_pairs": [
                {"relationship_type": "member_of", "source_entity_type": "npc",
                 "target_entity_type": "organization"},
                {"relationship_type": "member_of", "source_entity_type": "cult_leader",
                 "target_entity_type": "organization"},
            ],
            "cardinality": [
                {"relationship_type": "knows", "max_source": 1},
            ],
            "required": [
                {"entity_type": "cult_leader", "relationship_type": "leads"},
            ],
        },
    }


@pytest.fixture
def store(tmp_path, sample_campaign):
    """A SQLiteStore in a temp dir, loaded with ``sample_campaign``."""
    s = SQLiteStore(str(tmp_path / "campaign.db"))
    s.load_campaign(sample_campaign)
    yield s
    s.close()


@pytest.fixture
def make_resolver():
    """Return a factory for fake ``resolve_entity_by_name`` callables.

    ``make_resolver({"Arkham": ("loc-arkham", 1.0)})`` answers "Arkham"
    with one candidate and everything else with no candidates.  The
    returned callable records every looked-up name in ``.calls``.
    """
    def factory(table):
        calls = []

        def resolve(campaign_id, name, limit):
            calls.append(name)
            hit = table.get(name)
            if hit is None:
                return []
            entity_id, score = hit
            return [ResolvedCandidate(entity_id=entity_id, similarity=score, name=name)]

        resolve.calls = calls
        return resolve

    return factory


@pytest.fixture
def make_snapshot():
    """Return a factory building a GraphSnapshot from plain dicts."""
    def factory(entities=(), relationships=(), proposals=(), campaign_id=CAMPAIGN_ID):
        return GraphSnapshot(
            campaign_id=campaign_id,
            entities=tuple(Entity.model_validate(e) for e in entities),
            relationships=tuple(Relationship.model_validate(r) for r in relationships),
            proposals=tuple(RelationshipSuggestion.model_validate(p) for p in proposals),
        )

    return factory
