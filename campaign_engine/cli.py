"""
campaign_engine/cli.py -- Command-line entry point.

Usage:
    python -m campaign_engine load campaign.json
    python -m campaign_engine analyze CAMPAIGN_ID notes.md --source-id session-12
    python -m campaign_engine check-graph CAMPAIGN_ID --proposals proposals.json
    python -m campaign_engine override CAMPAIGN_ID cardinality knows:npc-1:source

Global options ``--db PATH`` (default: the platform user-data directory)
and ``--verbose``.  Results print to stdout as JSON, or go to ``--output``.
"""

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from campaign_engine.config import EngineSettings
from campaign_engine.errors import PersistenceError
from campaign_engine.models import RelationshipSuggestion, SourceRef
from campaign_engine.paths import get_default_db_path
from campaign_engine.services.llm_client import CompletionClient
from campaign_engine.services.pipeline import ConsistencyPipeline
from campaign_engine.sqlite_store import SQLiteStore
from campaign_engine.utils import safe_read_json, safe_write_json

logger = logging.getLogger("campaign_engine")


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for command-line runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="campaign_engine",
        description="Campaign consistency engine",
    )
    parser.add_argument("--db", default="", help="SQLite database path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_load = sub.add_parser("load", help="Load a campaign JSON document")
    p_load.add_argument("campaign_file")

    p_analyze = sub.add_parser("analyze", help="Scan a text file for entity references")
    p_analyze.add_argument("campaign_id")
    p_analyze.add_argument("text_file")
    p_analyze.add_argument("--source-table", default="documents")
    p_analyze.add_argument("--source-id", default="")
    p_analyze.add_argument("--source-field", default="content")
    p_analyze.add_argument("--output", default="", help="Write JSON here instead of stdout")

    p_graph = sub.add_parser("check-graph", help="Check graph consistency")
    p_graph.add_argument("campaign_id")
    p_graph.add_argument("--proposals", default="", help="JSON list of proposed relationships")
    p_graph.add_argument("--no-llm", action="store_true", help="Skip the semantic pass")
    p_graph.add_argument("--output", default="", help="Write JSON here instead of stdout")

    p_override = sub.add_parser("override", help="Record a constraint override")
    p_override.add_argument("campaign_id")
    p_override.add_argument("constraint_type", choices=["domain_range", "cardinality", "required"])
    p_override.add_argument("override_key")

    return parser


def _emit(payload: dict, output: str) -> None:
    if output:
        safe_write_json(output, payload)
        logger.info("Wrote %s", output)
    else:
        json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")


def _cmd_load(store: SQLiteStore, args) -> int:
    document = safe_read_json(args.campaign_file)
    if document is None:
        logger.error("Could not read campaign file %s", args.campaign_file)
        return 2
    count = store.load_campaign(document)
    print(f"Loaded {count} entities")
    return 0


def _cmd_analyze(pipeline: ConsistencyPipeline, args) -> int:
    try:
        with open(args.text_file, "r", encoding="utf-8") as fh:
            text = fh.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Could not read %s: %s", args.text_file, e)
        return 2
    source = SourceRef(
        source_table=args.source_table,
        source_id=args.source_id or args.text_file,
        source_field=args.source_field,
    )
    job, findings = pipeline.analyze_content(args.campaign_id, source, text)
    _emit(
        {"job": job.model_dump(mode="json"), "findings": [f.to_dict() for f in findings]},
        args.output,
    )
    return 0


def _cmd_check_graph(pipeline: ConsistencyPipeline, args) -> int:
    proposals = []
    if args.proposals:
        raw = safe_read_json(args.proposals)
        if not isinstance(raw, list):
            logger.error("%s must contain a JSON list", args.proposals)
            return 2
        proposals = [RelationshipSuggestion.model_validate(p) for p in raw]
    result = pipeline.run_graph_check(args.campaign_id, proposals)
    _emit(
        {
            "job": result.job.model_dump(mode="json"),
            "summary": result.format_human(),
            "findings": [f.to_dict() for f in result.findings],
        },
        args.output,
    )
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    settings = EngineSettings.from_env()
    db_path = args.db or settings.database_path or get_default_db_path()
    logger.debug("Database: %s", db_path)

    with SQLiteStore(db_path) as store:
        try:
            if args.command == "load":
                return _cmd_load(store, args)
            if args.command == "override":
                store.add_override(args.campaign_id, args.constraint_type, args.override_key)
                return 0

            completion = None
            if args.command == "check-graph" and not args.no_llm:
                completion = CompletionClient(settings)
            pipeline = ConsistencyPipeline(store, completion=completion, settings=settings)
            if args.command == "analyze":
                return _cmd_analyze(pipeline, args)
            return _cmd_check_graph(pipeline, args)
        except ValidationError as e:
            logger.error("Invalid input: %s", e)
            return 2
        except PersistenceError as e:
            logger.error("%s", e)
            return 1


if __name__ == "__main__":
    sys.exit(main())
