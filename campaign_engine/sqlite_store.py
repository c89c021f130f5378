"""
campaign_engine/sqlite_store.py -- SQLite reference store.

Implements every collaborator the engine consumes -- entity and
relationship reads, constraint tables, override lookups, fuzzy name
resolution and job persistence -- on a single SQLite database.  Used by
the CLI and by the test suite; a production deployment can supply any
object with the same methods instead.

Fuzzy name resolution scores names with rapidfuzz (``fuzz.ratio`` after
``utils.default_process``) and reports similarity on a 0.0-1.0 scale.

Usage:
    from campaign_engine.sqlite_store import SQLiteStore

    with SQLiteStore("campaign.db") as store:
        store.load_campaign(document)
        store.resolve_entity_by_name("campaign-1", "Arkam", limit=5)
"""

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from rapidfuzz import fuzz, process, utils

from campaign_engine.errors import PersistenceError
from campaign_engine.models import (
    AnalysisJob,
    CardinalityRule,
    ConstraintRules,
    Entity,
    Finding,
    Override,
    Relationship,
    RelationshipType,
    RequiredRule,
    ResolvedCandidate,
    TypePairRule,
)

logger = logging.getLogger(__name__)

RESOLVE_DEFAULT_LIMIT = 10
RESOLVE_MAX_LIMIT = 20
RESOLVE_FLOOR = 0.3


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT NOT NULL,
    campaign_id TEXT NOT NULL,
    name TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    description TEXT DEFAULT '',
    PRIMARY KEY (campaign_id, id)
);

CREATE TABLE IF NOT EXISTS relationships (
    id TEXT NOT NULL,
    campaign_id TEXT NOT NULL,
    source_entity_id TEXT NOT NULL,
    target_entity_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    display_label TEXT DEFAULT '',
    description TEXT DEFAULT '',
    PRIMARY KEY (campaign_id, id)
);

CREATE TABLE IF NOT EXISTS relationship_types (
    campaign_id TEXT NOT NULL,
    name TEXT NOT NULL,
    inverse_name TEXT DEFAULT '',
    is_symmetric INTEGER DEFAULT 0,
    display_label TEXT DEFAULT '',
    PRIMARY KEY (campaign_id, name)
);

CREATE TABLE IF NOT EXISTS relationship_type_constraints (
    campaign_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    source_entity_type TEXT NOT NULL,
    target_entity_type TEXT NOT NULL,
    UNIQUE (campaign_id, relationship_type, source_entity_type, target_entity_type)
);

CREATE TABLE IF NOT EXISTS cardinality_constraints (
    campaign_id TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    max_source INTEGER,
    max_target INTEGER,
    UNIQUE (campaign_id, relationship_type)
);

CREATE TABLE IF NOT EXISTS required_relationships (
    campaign_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    UNIQUE (campaign_id, entity_type, relationship_type)
);

CREATE TABLE IF NOT EXISTS constraint_overrides (
    campaign_id TEXT NOT NULL,
    constraint_type TEXT NOT NULL,
    override_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (campaign_id, constraint_type, override_key)
);

CREATE TABLE IF NOT EXISTS content_analysis_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_id TEXT NOT NULL,
    source_table TEXT NOT NULL,
    source_id TEXT NOT NULL,
    source_field TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'completed',
    total_items INTEGER NOT NULL DEFAULT 0,
    resolved_items INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS content_analysis_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES content_analysis_jobs(id) ON DELETE CASCADE,
    detection_type TEXT NOT NULL,
    matched_text TEXT NOT NULL,
    entity_ref TEXT,
    similarity REAL,
    context_snippet TEXT,
    position_start INTEGER,
    position_end INTEGER,
    suggested_content JSON NOT NULL DEFAULT '{}',
    resolution TEXT NOT NULL DEFAULT 'pending'
);

CREATE INDEX IF NOT EXISTS idx_entities_campaign ON entities(campaign_id);
CREATE INDEX IF NOT EXISTS idx_relationships_campaign ON relationships(campaign_id);
CREATE INDEX IF NOT EXISTS idx_jobs_source
    ON content_analysis_jobs(campaign_id, source_table, source_id, source_field);
CREATE INDEX IF NOT EXISTS idx_items_job ON content_analysis_items(job_id);
"""

# Tables holding one campaign's graph and constraint data, cleared on reload.
_CAMPAIGN_TABLES = (
    "entities",
    "relationships",
    "relationship_types",
    "relationship_type_constraints",
    "cardinality_constraints",
    "required_relationships",
)


class CampaignDocument(BaseModel):
    """A whole campaign as loaded from JSON by ``load_campaign``."""

    model_config = ConfigDict(extra="ignore")

    campaign_id: str
    entities: list[Entity] = []
    relationships: list[Relationship] = []
    constraints: ConstraintRules = ConstraintRules()
    overrides: list[Override] = []


# ---------------------------------------------------------------------------
# SQLiteStore
# ---------------------------------------------------------------------------

class SQLiteStore:
    """Campaign data, constraint tables and analysis jobs in one SQLite file.

    Parameters
    ----------
    db_path : str
        Path to the database file, or ``":memory:"``.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            parent = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(parent, exist_ok=True)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.commit()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_campaign(self, document) -> int:
        """Replace one campaign's graph, constraints and overrides.

        Parameters
        ----------
        document : dict or CampaignDocument
            The campaign.  Dicts are validated with ``CampaignDocument``.

        Returns
        -------
        int
            The number of entities loaded.
        """
        doc = CampaignDocument.model_validate(document)
        cid = doc.campaign_id
        rules = doc.constraints
        with self._write(f"load campaign {cid}") as conn:
            for table in _CAMPAIGN_TABLES:
                conn.execute(f"DELETE FROM {table} WHERE campaign_id = ?", (cid,))
            conn.executemany(
                "INSERT INTO entities (id, campaign_id, name, entity_type, description) "
                "VALUES (?, ?, ?, ?, ?)",
                [(e.id, cid, e.name, e.entity_type, e.description) for e in doc.entities],
            )
            conn.executemany(
                "INSERT INTO relationships (id, campaign_id, source_entity_id, "
                "target_entity_id, relationship_type, display_label, description) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (r.id, cid, r.source_entity_id, r.target_entity_id,
                     r.relationship_type, r.display_label, r.description)
                    for r in doc.relationships
                ],
            )
            conn.executemany(
                "INSERT INTO relationship_types (campaign_id, name, inverse_name, "
                "is_symmetric, display_label) VALUES (?, ?, ?, ?, ?)",
                [
                    (cid, t.name, t.inverse_name, int(t.is_symmetric), t.display_label)
                    for t in rules.relationship_types
                ],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO relationship_type_constraints (campaign_id, "
                "relationship_type, source_entity_type, target_entity_type) "
                "VALUES (?, ?, ?, ?)",
                [
                    (cid, p.relationship_type, p.source_entity_type, p.target_entity_type)
                    for p in rules.type_pairs
                ],
            )
            conn.executemany(
                "INSERT OR REPLACE INTO cardinality_constraints (campaign_id, "
                "relationship_type, max_source, max_target) VALUES (?, ?, ?, ?)",
                [
                    (cid, c.relationship_type, c.max_source, c.max_target)
                    for c in rules.cardinality
                ],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO required_relationships (campaign_id, "
                "entity_type, relationship_type) VALUES (?, ?, ?)",
                [(cid, r.entity_type, r.relationship_type) for r in rules.required],
            )
        for override in doc.overrides:
            self.add_override(cid, override.constraint_type, override.override_key)
        logger.info(
            "Loaded campaign %s: %d entities, %d relationships",
            cid, len(doc.entities), len(doc.relationships),
        )
        return len(doc.entities)

    # ------------------------------------------------------------------
    # Graph snapshot reads
    # ------------------------------------------------------------------

    def list_entities(self, campaign_id: str) -> list[Entity]:
        rows = self._query(
            "SELECT id, name, entity_type, description FROM entities "
            "WHERE campaign_id = ? ORDER BY name, id",
            (campaign_id,),
        )
        return [Entity(**dict(row)) for row in rows]

    def list_relationships(self, campaign_id: str) -> list[Relationship]:
        rows = self._query(
            "SELECT id, source_entity_id, target_entity_id, relationship_type, "
            "display_label, description FROM relationships "
            "WHERE campaign_id = ? ORDER BY id",
            (campaign_id,),
        )
        return [Relationship(**dict(row)) for row in rows]

    def list_relationship_types(self, campaign_id: str) -> list[RelationshipType]:
        rows = self._query(
            "SELECT name, inverse_name, is_symmetric, display_label "
            "FROM relationship_types WHERE campaign_id = ? ORDER BY name",
            (campaign_id,),
        )
        return [
            RelationshipType(
                name=row["name"],
                inverse_name=row["inverse_name"] or "",
                is_symmetric=bool(row["is_symmetric"]),
                display_label=row["display_label"] or "",
            )
            for row in rows
        ]

    def get_constraint_rules(self, campaign_id: str) -> ConstraintRules:
        """Return every constraint table for *campaign_id*."""
        type_pairs = [
            TypePairRule(**dict(row)) for row in self._query(
                "SELECT relationship_type, source_entity_type, target_entity_type "
                "FROM relationship_type_constraints WHERE campaign_id = ? "
                "ORDER BY relationship_type, source_entity_type, target_entity_type",
                (campaign_id,),
            )
        ]
        cardinality = [
            CardinalityRule(**dict(row)) for row in self._query(
                "SELECT relationship_type, max_source, max_target "
                "FROM cardinality_constraints WHERE campaign_id = ? "
                "ORDER BY relationship_type",
                (campaign_id,),
            )
        ]
        required = [
            RequiredRule(**dict(row)) for row in self._query(
                "SELECT entity_type, relationship_type FROM required_relationships "
                "WHERE campaign_id = ? ORDER BY entity_type, relationship_type",
                (campaign_id,),
            )
        ]
        return ConstraintRules(
            relationship_types=tuple(self.list_relationship_types(campaign_id)),
            type_pairs=tuple(type_pairs),
            cardinality=tuple(cardinality),
            required=tuple(required),
        )

    # ------------------------------------------------------------------
    # Fuzzy name resolution
    # ------------------------------------------------------------------

    def resolve_entity_by_name(
        self, campaign_id: str, name: str, limit: int = RESOLVE_DEFAULT_LIMIT
    ) -> list[ResolvedCandidate]:
        """Return entities whose names resemble *name*, best first.

        *limit* defaults to 10 when not positive and is clamped to 20.
        Candidates scoring below 0.3 are never returned.
        """
        if limit <= 0:
            limit = RESOLVE_DEFAULT_LIMIT
        limit = min(limit, RESOLVE_MAX_LIMIT)
        if not name.strip():
            return []

        rows = self._query(
            "SELECT id, name, entity_type FROM entities WHERE campaign_id = ?",
            (campaign_id,),
        )
        by_id = {row["id"]: row for row in rows}
        matches = process.extract(
            name,
            {row["id"]: row["name"] for row in rows},
            scorer=fuzz.ratio,
            processor=utils.default_process,
            score_cutoff=RESOLVE_FLOOR * 100,
            limit=None,
        )
        matches.sort(key=lambda m: (-m[1], by_id[m[2]]["name"], m[2]))
        return [
            ResolvedCandidate(
                entity_id=entity_id,
                similarity=round(score / 100.0, 4),
                name=by_id[entity_id]["name"],
                entity_type=by_id[entity_id]["entity_type"],
            )
            for _, score, entity_id in matches[:limit]
        ]

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def has_override(self, campaign_id: str, constraint_type: str, key: str) -> bool:
        rows = self._query(
            "SELECT 1 FROM constraint_overrides WHERE campaign_id = ? "
            "AND constraint_type = ? AND override_key = ? LIMIT 1",
            (campaign_id, constraint_type, key),
        )
        return bool(rows)

    def add_override(self, campaign_id: str, constraint_type: str, key: str) -> None:
        with self._write(f"add override {constraint_type}:{key}") as conn:
            conn.execute(
                "INSERT OR IGNORE INTO constraint_overrides "
                "(campaign_id, constraint_type, override_key, created_at) "
                "VALUES (?, ?, ?, ?)",
                (campaign_id, constraint_type, key, datetime.now().isoformat()),
            )

    # ------------------------------------------------------------------
    # Analysis jobs
    # ------------------------------------------------------------------

    def save_analysis(self, job: AnalysisJob, findings: list[Finding]) -> AnalysisJob:
        """Persist *job* and its findings in one transaction.

        Earlier jobs for the same source are deleted first, so each source
        field has at most one job on record.

        Returns
        -------
        AnalysisJob
            *job* with its database ``id`` filled in.

        Raises
        ------
        PersistenceError
            The transaction failed and was rolled back.
        """
        if job.total_items != len(findings):
            raise ValueError(
                f"job.total_items ({job.total_items}) does not match "
                f"{len(findings)} finding(s)"
            )
        with self._write(f"save analysis job for {job.source_table}/{job.source_id}") as conn:
            conn.execute(
                "DELETE FROM content_analysis_jobs WHERE campaign_id = ? "
                "AND source_table = ? AND source_id = ? AND source_field = ?",
                (job.campaign_id, job.source_table, job.source_id, job.source_field),
            )
            cur = conn.execute(
                "INSERT INTO content_analysis_jobs (campaign_id, source_table, "
                "source_id, source_field, status, total_items, resolved_items, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (job.campaign_id, job.source_table, job.source_id, job.source_field,
                 job.status, job.total_items, job.resolved_items,
                 job.created_at.isoformat()),
            )
            job_id = cur.lastrowid
            conn.executemany(
                "INSERT INTO content_analysis_items (job_id, detection_type, "
                "matched_text, entity_ref, similarity, context_snippet, "
                "position_start, position_end, suggested_content, resolution) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (job_id, f.detection_type.value, f.matched_text, f.entity_ref,
                     f.similarity, f.context_snippet, f.position_start,
                     f.position_end, json.dumps(f.suggested_content, ensure_ascii=False),
                     f.resolution.value)
                    for f in findings
                ],
            )
        logger.info(
            "Saved analysis job %d (%d item(s)) for campaign %s",
            job_id, len(findings), job.campaign_id,
        )
        return job.model_copy(update={"id": job_id})

    def get_job(self, job_id: int) -> Optional[AnalysisJob]:
        rows = self._query("SELECT * FROM content_analysis_jobs WHERE id = ?", (job_id,))
        return AnalysisJob(**dict(rows[0])) if rows else None

    def list_jobs(self, campaign_id: str) -> list[AnalysisJob]:
        rows = self._query(
            "SELECT * FROM content_analysis_jobs WHERE campaign_id = ? ORDER BY id",
            (campaign_id,),
        )
        return [AnalysisJob(**dict(row)) for row in rows]

    def list_items(self, job_id: int) -> list[Finding]:
        rows = self._query(
            "SELECT * FROM content_analysis_items WHERE job_id = ? ORDER BY id",
            (job_id,),
        )
        return [self._row_to_finding(row) for row in rows]

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Row counts per table."""
        stats = {}
        for table in _CAMPAIGN_TABLES + (
            "constraint_overrides", "content_analysis_jobs", "content_analysis_items",
        ):
            stats[table] = self._query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]
        return stats

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _write(self, what: str) -> "_WriteTransaction":
        return _WriteTransaction(self, what)

    @staticmethod
    def _row_to_finding(row: sqlite3.Row) -> Finding:
        data = dict(row)
        data["suggested_content"] = json.loads(data.get("suggested_content") or "{}")
        data.pop("id", None)
        data.pop("job_id", None)
        return Finding(**data)


class _WriteTransaction:
    """Holds the store lock for one transaction; sqlite errors become PersistenceError."""

    def __init__(self, store: SQLiteStore, what: str):
        self._store = store
        self._what = what

    def __enter__(self) -> sqlite3.Connection:
        self._store._lock.acquire()
        return self._store._conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                try:
                    self._store._conn.commit()
                    return False
                except sqlite3.Error as e:
                    self._rollback()
                    raise PersistenceError(f"Could not {self._what}: {e}") from e
            self._rollback()
            if issubclass(exc_type, sqlite3.Error):
                raise PersistenceError(f"Could not {self._what}: {exc_val}") from exc_val
            return False
        finally:
            self._store._lock.release()

    def _rollback(self) -> None:
        try:
            self._store._conn.rollback()
        except sqlite3.Error:
            logger.exception("Rollback failed while trying to %s", self._what)
