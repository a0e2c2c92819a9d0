"""
mnemo SQLite Store -- single-file persistence for chunks, entities and policies.

Everything mnemo knows lives in one SQLite database: content chunks and their
FTS5 index, the entity graph, entity mentions, capability policies, the audit
log and session summaries. There is no secondary cache, so every read sees the
latest committed write.

Usage:
    store = KnowledgeStore()
    store.insert_chunk(id="c1", source_uri="file:///notes.md", content="Hello world")
    chunk = store.get_chunk("c1")
"""

import hashlib
import json
import logging
import os
import sqlite3
import stat
import struct
import threading
import time as _time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger("mnemo.sqlite_store")

POLICY_EFFECTS = ("allow", "deny", "approval_required")

# ---------------------------------------------------------------------------
# SQLite retry -- handles write contention when the hook server thread and
# the MCP loop share one database. busy_timeout covers most cases; this
# retries with exponential backoff before surfacing the error.
# ---------------------------------------------------------------------------
_DB_RETRY_ATTEMPTS = 3
_DB_RETRY_BASE_DELAY = 0.5  # seconds


def _retry_on_locked(fn, *args, **kwargs):
    """Call fn with retry on 'database is locked' OperationalError."""
    for attempt in range(_DB_RETRY_ATTEMPTS):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as e:
            if "database is locked" in str(e) and attempt < _DB_RETRY_ATTEMPTS - 1:
                delay = _DB_RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning("database is locked (attempt %d/%d), retrying in %.1fs",
                               attempt + 1, _DB_RETRY_ATTEMPTS, delay)
                _time.sleep(delay)
            else:
                raise


def secure_connect(db_path, **kwargs) -> sqlite3.Connection:
    """Create a SQLite connection with secure file permissions (0o600).

    Pre-creates the DB file with restricted permissions before connecting,
    and fixes existing files that have overly permissive permissions.
    """
    db_path_str = str(db_path)
    if db_path_str == ":memory:":
        return sqlite3.connect(db_path_str, **kwargs)

    path_obj = Path(db_path_str)
    if not path_obj.exists():
        # Pre-create with restricted permissions (no TOCTOU window)
        fd = os.open(db_path_str, os.O_CREAT | os.O_WRONLY, 0o600)
        os.close(fd)
    else:
        current_mode = path_obj.stat().st_mode
        if current_mode & (stat.S_IRWXG | stat.S_IRWXO):
            os.chmod(db_path_str, 0o600)

    return sqlite3.connect(db_path_str, **kwargs)


def _serialize_f32(vector: Sequence[float]) -> bytes:
    """Serialize a float32 vector to bytes (sqlite-vec compatible layout)."""
    return struct.pack(f"{len(vector)}f", *vector)


def _deserialize_f32(data: bytes) -> List[float]:
    return list(struct.unpack(f"{len(data) // 4}f", data))


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_dt(value: Any) -> Optional[datetime]:
    """Parse an ISO datetime string to an aware UTC datetime.

    Handles naive strings (no tz), Z-suffix and +00:00 suffix. Returns None
    for falsy or unparsable values.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _loads(raw: Optional[str], default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Unparsable JSON column, using default: %.80r", raw)
        return default


# ---------------------------------------------------------------------------
# Migrations -- additive, applied in order, at most once each. The index in
# this list is the ledger key in _migrations.
# ---------------------------------------------------------------------------

MIGRATIONS: List[str] = [
    # 0: core tables + FTS5 index kept in sync by triggers
    """
    CREATE TABLE IF NOT EXISTS content_chunks (
        pk INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        source_uri TEXT NOT NULL,
        chunk_index INTEGER NOT NULL DEFAULT 0,
        content TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        embedding BLOB,
        token_count INTEGER,
        metadata TEXT DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_content_chunks_source ON content_chunks(source_uri);
    CREATE INDEX IF NOT EXISTS idx_content_chunks_hash ON content_chunks(content_hash);

    CREATE VIRTUAL TABLE IF NOT EXISTS content_chunks_fts USING fts5(
        content,
        content='content_chunks',
        content_rowid='pk'
    );

    CREATE TRIGGER IF NOT EXISTS content_chunks_ai AFTER INSERT ON content_chunks BEGIN
        INSERT INTO content_chunks_fts(rowid, content) VALUES (new.pk, new.content);
    END;
    CREATE TRIGGER IF NOT EXISTS content_chunks_ad AFTER DELETE ON content_chunks BEGIN
        INSERT INTO content_chunks_fts(content_chunks_fts, rowid, content)
        VALUES ('delete', old.pk, old.content);
    END;
    CREATE TRIGGER IF NOT EXISTS content_chunks_au AFTER UPDATE OF content ON content_chunks BEGIN
        INSERT INTO content_chunks_fts(content_chunks_fts, rowid, content)
        VALUES ('delete', old.pk, old.content);
        INSERT INTO content_chunks_fts(rowid, content) VALUES (new.pk, new.content);
    END;

    CREATE TABLE IF NOT EXISTS entities (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        description TEXT,
        metadata TEXT DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type);
    CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name);

    CREATE TABLE IF NOT EXISTS relationships (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL REFERENCES entities(id),
        target_id TEXT NOT NULL REFERENCES entities(id),
        type TEXT NOT NULL,
        weight REAL DEFAULT 1.0,
        metadata TEXT DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_relationships_source ON relationships(source_id);
    CREATE INDEX IF NOT EXISTS idx_relationships_target ON relationships(target_id);

    CREATE TABLE IF NOT EXISTS entity_mentions (
        id TEXT PRIMARY KEY,
        entity_id TEXT NOT NULL REFERENCES entities(id),
        chunk_id TEXT NOT NULL REFERENCES content_chunks(id),
        start_offset INTEGER,
        end_offset INTEGER,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS audit_log (
        id TEXT PRIMARY KEY,
        action TEXT NOT NULL,
        actor TEXT,
        target TEXT,
        details TEXT DEFAULT '{}',
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_audit_log_action ON audit_log(action);
    CREATE INDEX IF NOT EXISTS idx_audit_log_created ON audit_log(created_at);

    CREATE TABLE IF NOT EXISTS capability_policies (
        id TEXT PRIMARY KEY,
        capability TEXT NOT NULL,
        channel TEXT,
        persona TEXT,
        user_id TEXT,
        effect TEXT NOT NULL DEFAULT 'allow',
        conditions TEXT DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_capability_policies_cap ON capability_policies(capability);

    CREATE TABLE IF NOT EXISTS session_summaries (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        channel TEXT,
        summary TEXT NOT NULL,
        key_topics TEXT DEFAULT '[]',
        metadata TEXT DEFAULT '{}',
        created_at TEXT NOT NULL
    );
    """,
    # 1: typed soft-delete flag on entities, lookup indexes for mentions/summaries
    """
    ALTER TABLE entities ADD COLUMN forgotten INTEGER NOT NULL DEFAULT 0;
    CREATE INDEX IF NOT EXISTS idx_entities_forgotten ON entities(forgotten);
    CREATE INDEX IF NOT EXISTS idx_entity_mentions_chunk ON entity_mentions(chunk_id);
    CREATE INDEX IF NOT EXISTS idx_entity_mentions_entity ON entity_mentions(entity_id);
    CREATE INDEX IF NOT EXISTS idx_session_summaries_session
        ON session_summaries(session_id, created_at);
    """,
]


# ---------------------------------------------------------------------------
# Row records
# ---------------------------------------------------------------------------


@dataclass
class Chunk:
    id: str
    source_uri: str
    chunk_index: int
    content: str
    content_hash: str
    token_count: Optional[int] = None
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Entity:
    id: str
    name: str
    type: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    forgotten: bool = False
    created_at: Optional[datetime] = None


@dataclass
class Relationship:
    id: str
    source_id: str
    target_id: str
    type: str
    weight: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Policy:
    id: str
    capability: str
    effect: str
    channel: Optional[str] = None
    persona: Optional[str] = None
    user_id: Optional[str] = None
    conditions: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditEntry:
    id: str
    action: str
    actor: Optional[str]
    target: Optional[str]
    details: Dict[str, Any]
    created_at: Optional[datetime]


@dataclass
class SessionSummary:
    id: str
    session_id: str
    summary: str
    key_topics: List[str] = field(default_factory=list)
    channel: Optional[str] = None
    created_at: Optional[datetime] = None


class KnowledgeStore:
    """SQLite-backed knowledge store.

    Owns the connection, the migrations ledger and every table. Graph, gate
    and search modules are stateless views over this object.
    """

    def __init__(self, db_path=None, embedding_provider=None):
        if db_path is None:
            env_path = os.environ.get("MNEMO_DB_PATH")
            if env_path:
                db_path = env_path
            else:
                mnemo_home = Path(os.environ.get("MNEMO_HOME", str(Path.home() / ".mnemo")))
                db_path = mnemo_home / "mnemo.db"
        self.in_memory = str(db_path) == ":memory:"
        self.db_path = str(db_path) if self.in_memory else Path(db_path)
        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        if embedding_provider is None:
            from mnemo.embeddings import StubEmbeddingProvider

            embedding_provider = StubEmbeddingProvider()
        self.embeddings = embedding_provider

        self._lock = threading.RLock()
        self.vec_available = False
        self._conn = self._connect()
        self._run_migrations()

    def _connect(self) -> sqlite3.Connection:
        """Open the database. Only open errors are fatal; sqlite-vec is optional."""
        conn = secure_connect(self.db_path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if not self.in_memory:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.execute("PRAGMA foreign_keys=ON")

        try:
            import sqlite_vec

            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            self.vec_available = True
        except (ImportError, AttributeError, sqlite3.Error) as e:
            logger.warning("sqlite-vec not available, vector search disabled: %s", e)
            self.vec_available = False

        return conn

    def _run_migrations(self) -> None:
        """Apply pending migrations in order, each inside its own transaction."""
        c = self._conn
        c.execute(
            "CREATE TABLE IF NOT EXISTS _migrations (id INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
        )
        c.commit()
        applied = {row[0] for row in c.execute("SELECT id FROM _migrations").fetchall()}

        for index, sql in enumerate(MIGRATIONS):
            if index in applied:
                continue
            # Ledger row is written inside the same transaction as the DDL
            c.executescript(
                "BEGIN;\n"
                f"{sql}\n"
                f"INSERT INTO _migrations (id, applied_at) VALUES ({index}, '{_utcnow()}');\n"
                "COMMIT;"
            )
            logger.info("Applied schema migration %d", index)

    def applied_migrations(self) -> List[int]:
        rows = self._conn.execute("SELECT id FROM _migrations ORDER BY id").fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Low-level access shared by graph / gate / search
    # ------------------------------------------------------------------

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return _retry_on_locked(self._conn.execute, sql, tuple(params)).fetchall()

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return _retry_on_locked(self._conn.execute, sql, tuple(params)).fetchone()

    def execute_write(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement, commit, and return the affected row count."""
        with self._lock:
            cursor = _retry_on_locked(self._conn.execute, sql, tuple(params))
            _retry_on_locked(self._conn.commit)
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Content chunks
    # ------------------------------------------------------------------

    @staticmethod
    def content_hash(content: str) -> str:
        """SHA-256 hex digest of content, used for dedup-by-hash."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def insert_chunk(
        self,
        id: str,
        source_uri: str,
        content: str,
        chunk_index: int = 0,
        embedding: Optional[Sequence[float]] = None,
        token_count: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Insert or replace a chunk by id. The content hash is always recomputed.

        Uses an upsert rather than INSERT OR REPLACE so the row keeps its pk
        and the FTS update trigger fires instead of a trigger-less delete.
        """
        if not isinstance(content, str):
            raise ValueError("content must be a string")
        now = _utcnow()
        blob = _serialize_f32(embedding) if embedding is not None else None
        self.execute_write(
            """INSERT INTO content_chunks
                   (id, source_uri, chunk_index, content, content_hash, embedding,
                    token_count, metadata, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   source_uri = excluded.source_uri,
                   chunk_index = excluded.chunk_index,
                   content = excluded.content,
                   content_hash = excluded.content_hash,
                   embedding = excluded.embedding,
                   token_count = excluded.token_count,
                   metadata = excluded.metadata,
                   updated_at = excluded.updated_at""",
            (
                id,
                source_uri,
                chunk_index,
                content,
                self.content_hash(content),
                blob,
                token_count,
                json.dumps(metadata or {}),
                now,
                now,
            ),
        )
        return id

    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        row = self.fetch_one("SELECT * FROM content_chunks WHERE id = ?", (chunk_id,))
        return self._row_to_chunk(row) if row else None

    def find_chunks_by_hash(self, content_hash: str) -> List[Chunk]:
        rows = self.fetch_all(
            "SELECT * FROM content_chunks WHERE content_hash = ? ORDER BY pk", (content_hash,)
        )
        return [self._row_to_chunk(r) for r in rows]

    def get_chunks_by_source(self, source_uri: str) -> List[Chunk]:
        rows = self.fetch_all(
            "SELECT * FROM content_chunks WHERE source_uri = ? ORDER BY chunk_index, pk",
            (source_uri,),
        )
        return [self._row_to_chunk(r) for r in rows]

    def delete_chunk(self, chunk_id: str) -> bool:
        with self._lock:
            self._conn.execute("DELETE FROM entity_mentions WHERE chunk_id = ?", (chunk_id,))
            cursor = self._conn.execute("DELETE FROM content_chunks WHERE id = ?", (chunk_id,))
            _retry_on_locked(self._conn.commit)
            return cursor.rowcount > 0

    def delete_chunks_by_source(self, source_uri: str) -> int:
        """Purge every mention and chunk for a source. Returns chunks removed."""
        with self._lock:
            self._conn.execute(
                """DELETE FROM entity_mentions
                   WHERE chunk_id IN (SELECT id FROM content_chunks WHERE source_uri = ?)""",
                (source_uri,),
            )
            cursor = self._conn.execute(
                "DELETE FROM content_chunks WHERE source_uri = ?", (source_uri,)
            )
            _retry_on_locked(self._conn.commit)
            return cursor.rowcount

    def chunk_count(self) -> int:
        return self.fetch_one("SELECT COUNT(*) FROM content_chunks")[0]

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        blob = row["embedding"]
        return Chunk(
            id=row["id"],
            source_uri=row["source_uri"],
            chunk_index=row["chunk_index"],
            content=row["content"],
            content_hash=row["content_hash"],
            token_count=row["token_count"],
            embedding=_deserialize_f32(blob) if blob else None,
            metadata=_loads(row["metadata"], {}),
            created_at=parse_dt(row["created_at"]),
            updated_at=parse_dt(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Entities / relationships / mentions
    # ------------------------------------------------------------------

    def insert_entity(
        self,
        id: str,
        name: str,
        type: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        forgotten: bool = False,
    ) -> str:
        now = _utcnow()
        self.execute_write(
            """INSERT INTO entities (id, name, type, description, metadata, forgotten,
                                     created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name,
                   type = excluded.type,
                   description = excluded.description,
                   metadata = excluded.metadata,
                   forgotten = excluded.forgotten,
                   updated_at = excluded.updated_at""",
            (id, name, type, description, json.dumps(metadata or {}), int(forgotten), now, now),
        )
        return id

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = self.fetch_one("SELECT * FROM entities WHERE id = ?", (entity_id,))
        return self.row_to_entity(row) if row else None

    @staticmethod
    def row_to_entity(row: sqlite3.Row) -> Entity:
        return Entity(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            description=row["description"],
            metadata=_loads(row["metadata"], {}),
            forgotten=bool(row["forgotten"]),
            created_at=parse_dt(row["created_at"]),
        )

    def insert_relationship(
        self,
        id: str,
        source_id: str,
        target_id: str,
        type: str,
        weight: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        now = _utcnow()
        self.execute_write(
            """INSERT INTO relationships (id, source_id, target_id, type, weight, metadata,
                                          created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   source_id = excluded.source_id,
                   target_id = excluded.target_id,
                   type = excluded.type,
                   weight = excluded.weight,
                   metadata = excluded.metadata,
                   updated_at = excluded.updated_at""",
            (id, source_id, target_id, type, weight, json.dumps(metadata or {}), now, now),
        )
        return id

    @staticmethod
    def row_to_relationship(row: sqlite3.Row) -> Relationship:
        return Relationship(
            id=row["id"],
            source_id=row["source_id"],
            target_id=row["target_id"],
            type=row["type"],
            weight=row["weight"],
            metadata=_loads(row["metadata"], {}),
        )

    def insert_mention(
        self,
        id: str,
        entity_id: str,
        chunk_id: str,
        start_offset: Optional[int] = None,
        end_offset: Optional[int] = None,
    ) -> str:
        self.execute_write(
            """INSERT INTO entity_mentions (id, entity_id, chunk_id, start_offset, end_offset, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (id, entity_id, chunk_id, start_offset, end_offset, _utcnow()),
        )
        return id

    def get_mentions_for_chunk(self, chunk_id: str) -> List[str]:
        """Entity ids mentioned in a chunk."""
        rows = self.fetch_all(
            "SELECT entity_id FROM entity_mentions WHERE chunk_id = ?", (chunk_id,)
        )
        return [r["entity_id"] for r in rows]

    # ------------------------------------------------------------------
    # Capability policies
    # ------------------------------------------------------------------

    def insert_policy(
        self,
        id: str,
        capability: str,
        effect: str,
        channel: Optional[str] = None,
        persona: Optional[str] = None,
        user_id: Optional[str] = None,
        conditions: Optional[Dict[str, Any]] = None,
    ) -> str:
        effect = getattr(effect, "value", effect)
        if effect not in POLICY_EFFECTS:
            raise ValueError(f"effect must be one of {POLICY_EFFECTS}, got {effect!r}")
        now = _utcnow()
        self.execute_write(
            """INSERT INTO capability_policies
                   (id, capability, channel, persona, user_id, effect, conditions, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   capability = excluded.capability,
                   channel = excluded.channel,
                   persona = excluded.persona,
                   user_id = excluded.user_id,
                   effect = excluded.effect,
                   conditions = excluded.conditions,
                   updated_at = excluded.updated_at""",
            (id, capability, channel, persona, user_id, effect,
             json.dumps(conditions or {}), now, now),
        )
        return id

    def get_policies(self, capability: str) -> List[Policy]:
        rows = self.fetch_all(
            "SELECT * FROM capability_policies WHERE capability = ? ORDER BY created_at, rowid",
            (capability,),
        )
        return [
            Policy(
                id=r["id"],
                capability=r["capability"],
                effect=r["effect"],
                channel=r["channel"],
                persona=r["persona"],
                user_id=r["user_id"],
                conditions=_loads(r["conditions"], {}),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Audit log (append-only)
    # ------------------------------------------------------------------

    def log_audit(
        self,
        id: str,
        action: str,
        actor: Optional[str] = None,
        target: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        self.execute_write(
            "INSERT INTO audit_log (id, action, actor, target, details, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (id, action, actor, target, json.dumps(details or {}, default=str), _utcnow()),
        )
        return id

    def get_audit_log(self, action: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        if action:
            rows = self.fetch_all(
                "SELECT * FROM audit_log WHERE action = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (action, limit),
            )
        else:
            rows = self.fetch_all(
                "SELECT * FROM audit_log ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
            )
        return [
            AuditEntry(
                id=r["id"],
                action=r["action"],
                actor=r["actor"],
                target=r["target"],
                details=_loads(r["details"], {}),
                created_at=parse_dt(r["created_at"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Session summaries
    # ------------------------------------------------------------------

    def insert_session_summary(
        self,
        id: str,
        session_id: str,
        summary: str,
        key_topics: Optional[List[str]] = None,
        channel: Optional[str] = None,
    ) -> str:
        self.execute_write(
            """INSERT INTO session_summaries (id, session_id, channel, summary, key_topics, metadata, created_at)
               VALUES (?, ?, ?, ?, ?, '{}', ?)""",
            (id, session_id, channel, summary, json.dumps(key_topics or []), _utcnow()),
        )
        return id

    def get_latest_session_summary(self, session_id: str) -> Optional[SessionSummary]:
        row = self.fetch_one(
            """SELECT * FROM session_summaries WHERE session_id = ?
               ORDER BY created_at DESC, rowid DESC LIMIT 1""",
            (session_id,),
        )
        if not row:
            return None
        return SessionSummary(
            id=row["id"],
            session_id=row["session_id"],
            summary=row["summary"],
            key_topics=_loads(row["key_topics"], []),
            channel=row["channel"],
            created_at=parse_dt(row["created_at"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        try:
            if not self.in_memory:
                self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)")
        except sqlite3.Error as e:
            logger.debug("WAL checkpoint on close failed: %s", e)
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug("Database close failed: %s", e)
