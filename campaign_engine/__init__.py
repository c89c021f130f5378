"""
campaign_engine -- Campaign-consistency engine.

Turns narrative text and a campaign's relationship graph into reviewable
findings: entity references in prose (wiki links, untagged mentions,
misspellings) and graph problems (orphans, invalid type pairs, cardinality
violations, missing required relationships, redundant edges).

Subpackages and modules:
    models            Pydantic records (snapshot inputs, findings, jobs).
    similarity        Threshold policy over a fuzzy name lookup.
    text_scanner      Three-pass prose scanner.
    graph_builder     NetworkX snapshot of the campaign graph.
    structural_rules  Orphan, type-pair, cardinality and required checks.
    sqlite_store      SQLite implementation of every consumed collaborator.
    services          LLM client, semantic checker, override filter, pipeline.
    cli               ``python -m campaign_engine`` entry point.
"""

__version__ = "1.0.0"
