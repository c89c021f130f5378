"""
campaign_engine/services/prompt_builder.py -- Semantic review prompts.

Builds the system and user prompts for the LLM graph review.  The system
prompt is a fixed, versioned constant; the user prompt renders the current
snapshot in three sections (existing relationships, proposed
relationships, entity roster).
"""

from __future__ import annotations

import logging

from campaign_engine.graph_builder import GraphSnapshot
from campaign_engine.utils import truncate

logger = logging.getLogger(__name__)

PROMPT_VERSION = "1.0"

DEFAULT_DESCRIPTION_MAX = 100

_SYSTEM_ROLE = (
    "You review the relationship graph of a tabletop RPG campaign. You are "
    "shown the relationships already stored between campaign entities and "
    "a set of newly proposed ones, and you point out structural problems in "
    "the graph."
)

_FINDING_TYPES = (
    "FINDING TYPES:\n"
    "- redundant_edge: two edges between the same pair of entities say the "
    "same thing under different type names. Example: 'works_for' and "
    "'employed_by' between the same NPC and the same organization.\n"
    "- implied_edge: a direct edge whose meaning is already reachable by "
    "walking through shared connections. Example: Alice leads the Silver "
    "Hand and Bob is a member of the Silver Hand, so a direct "
    "'associated_with' edge between Alice and Bob adds nothing."
)

_RULES = (
    "RULES:\n"
    "- Only report genuine problems. A proposal that adds independent "
    "meaning is not redundant.\n"
    "- Direction matters. An edge and its stored inverse (A -> B and "
    "B -> A through the inverse type) are one relationship, not a "
    "duplicate.\n"
    "- Be conservative. If you are unsure, do not report it.\n"
    "- If the graph is clean, return an empty findings list."
)

_OUTPUT_FORMAT = (
    "OUTPUT FORMAT:\n"
    "Reply with a single JSON object and nothing else:\n"
    "{\n"
    '  "findings": [\n'
    "    {\n"
    '      "findingType": "redundant_edge" or "implied_edge",\n'
    '      "description": "what is wrong",\n'
    '      "involvedEntities": ["Entity A", "Entity B"],\n'
    '      "suggestion": "how to fix it"\n'
    "    }\n"
    "  ]\n"
    "}"
)


def build_system_prompt() -> str:
    """Return the fixed system prompt for the semantic graph review."""
    return "\n\n".join([_SYSTEM_ROLE, _FINDING_TYPES, _RULES, _OUTPUT_FORMAT])


def build_user_prompt(
    snapshot: GraphSnapshot,
    description_max: int = DEFAULT_DESCRIPTION_MAX,
) -> str:
    """Render *snapshot* as the user prompt.

    Sections with nothing to show are omitted.
    """
    sections: list[str] = []

    if snapshot.relationships:
        lines = ["## Existing Relationships", ""]
        for rel in snapshot.relationships:
            label = rel.display_label or rel.relationship_type
            lines.append(
                f"- {snapshot.entity_name(rel.source_entity_id)} "
                f"({snapshot.entity_type(rel.source_entity_id)}) "
                f"--[{label}]--> "
                f"{snapshot.entity_name(rel.target_entity_id)} "
                f"({snapshot.entity_type(rel.target_entity_id)})"
            )
        sections.append("\n".join(lines))

    if snapshot.proposals:
        lines = [
            "## Proposed New Relationships",
            "",
            "Check whether any of these repeat an existing edge or are "
            "implied by existing connections:",
            "",
        ]
        for proposal in snapshot.proposals:
            source = proposal.source_entity_name or snapshot.entity_name(
                proposal.source_entity_id
            )
            target = proposal.target_entity_name or snapshot.entity_name(
                proposal.target_entity_id
            )
            line = f"- {source} --[{proposal.relationship_type}]--> {target}"
            if proposal.description:
                line += f" ({truncate(proposal.description, description_max)})"
            lines.append(line)
        sections.append("\n".join(lines))

    if snapshot.entities:
        lines = ["## Campaign Entities", ""]
        for entity in snapshot.entities:
            lines.append(
                f"- **{entity.name}** ({entity.entity_type}, ID: {entity.id})"
            )
        sections.append("\n".join(lines))

    prompt = "\n\n".join(sections)
    logger.debug(
        "Built semantic prompt v%s: %d chars", PROMPT_VERSION, len(prompt)
    )
    return prompt
