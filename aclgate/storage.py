"""
Persistence adapters for aclgate.

The gateway sees the document store through DocumentStore: an async
interface with prefix lookup, upsert and delete over JSON documents keyed by
"_id". Two implementations are provided: an in-memory store for tests and
development, and a SQLite store (one table per collection, WAL journal).

SQLite calls are blocking, so SqliteDocumentStore runs them in worker
threads; a single connection is shared and serialized with a lock.
"""

import asyncio
import copy
import json
import logging
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StorageError
from .util import canonicalize, now_epoch, sha256_hex

logger = logging.getLogger(__name__)

COLLECTION_PATTERN = re.compile(r'^[a-z][a-z0-9_]{0,31}$')

Record = Dict[str, Any]


def record_cid(record: Record) -> str:
    """Content identifier of a stored document (SHA-256 of its canonical JSON)."""
    return sha256_hex(canonicalize(record))


class DocumentStore(ABC):
    """Abstract document collection with prefix-style lookup."""

    name: str = "documents"

    async def open(self) -> None:
        """Prepare the store for use."""

    async def close(self) -> None:
        """Release resources held by the store."""

    @abstractmethod
    async def get(self, prefix: str) -> List[Record]:
        """
        Return every document whose _id starts with prefix, ordered by _id.

        An empty prefix returns the whole collection.
        """

    @abstractmethod
    async def put(self, record: Record) -> str:
        """Insert or replace a document by _id and return its cid."""

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Delete a document by exact _id. Missing ids are ignored."""

    async def get_one(self, record_id: str) -> Optional[Record]:
        """Exact-id lookup built on the prefix query."""
        for record in await self.get(record_id):
            if record.get("_id") == record_id:
                return record
        return None


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store. Documents are copied in and out."""

    def __init__(self, name: str = "documents"):
        self.name = name
        self._docs: Dict[str, Record] = {}

    async def get(self, prefix: str) -> List[Record]:
        return [copy.deepcopy(self._docs[k]) for k in sorted(self._docs) if k.startswith(prefix)]

    async def put(self, record: Record) -> str:
        _require_id(record)
        self._docs[record["_id"]] = copy.deepcopy(record)
        return record_cid(record)

    async def get_one(self, record_id: str) -> Optional[Record]:
        doc = self._docs.get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def delete(self, record_id: str) -> None:
        self._docs.pop(record_id, None)


class SqliteDatabase:
    """
    Shared SQLite connection for all collections and the outbox.

    Explicit lifecycle: connect() before use, close() on shutdown.
    """

    def __init__(self, path: str):
        self.path = path
        self.lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        with self.lock:
            if self._conn is None:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.path, check_same_thread=False)
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.execute("PRAGMA temp_store=MEMORY;")
                conn.row_factory = sqlite3.Row
                self._conn = conn
            return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("database is not open")
        return self._conn

    def close(self) -> None:
        with self.lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class SqliteDocumentStore(DocumentStore):
    """SQLite-backed collection; one table named docs_<collection>."""

    def __init__(self, db: SqliteDatabase, name: str):
        if not COLLECTION_PATTERN.match(name):
            raise ValueError(f"invalid collection name: {name}")
        self.db = db
        self.name = name
        self._table = f"docs_{name}"

    async def open(self) -> None:
        await self._run(self._init_table)

    def _init_table(self) -> None:
        conn = self.db.connect()
        conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {self._table} (
            id TEXT PRIMARY KEY,
            body TEXT NOT NULL,
            cid TEXT NOT NULL,
            updated_at INTEGER NOT NULL
        );""")
        conn.commit()

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except sqlite3.Error as e:
            logger.error("sqlite failure on %s: %s", self._table, e)
            raise StorageError(f"storage failure on {self.name}") from e

    def _locked(self, fn, *args):
        with self.db.lock:
            return fn(*args)

    def _select(self, prefix: str) -> List[Record]:
        cur = self.db.conn.execute(
            f"SELECT body FROM {self._table} WHERE substr(id, 1, ?) = ? ORDER BY id ASC",
            (len(prefix), prefix)
        )
        return [json.loads(row["body"]) for row in cur.fetchall()]

    def _select_one(self, record_id: str) -> Optional[Record]:
        cur = self.db.conn.execute(f"SELECT body FROM {self._table} WHERE id=?", (record_id,))
        row = cur.fetchone()
        return json.loads(row["body"]) if row else None

    def _upsert(self, record: Record, cid: str) -> None:
        conn = self.db.conn
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO {self._table}(id, body, cid, updated_at) VALUES(?,?,?,?)",
                (record["_id"], json.dumps(record), cid, now_epoch())
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

    def _remove(self, record_id: str) -> None:
        conn = self.db.conn
        try:
            conn.execute(f"DELETE FROM {self._table} WHERE id=?", (record_id,))
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

    async def get(self, prefix: str) -> List[Record]:
        return await self._run(self._select, prefix)

    async def get_one(self, record_id: str) -> Optional[Record]:
        return await self._run(self._select_one, record_id)

    async def put(self, record: Record) -> str:
        _require_id(record)
        cid = record_cid(record)
        await self._run(self._upsert, record, cid)
        return cid

    async def delete(self, record_id: str) -> None:
        await self._run(self._remove, record_id)


def _require_id(record: Record) -> None:
    if not isinstance(record.get("_id"), str) or not record["_id"]:
        raise StorageError("document is missing a string _id")


async def keep_alive(store: DocumentStore, interval: float) -> None:
    """
    Poll the store on a fixed timer so idle connections stay warm.

    Runs until cancelled; failures are logged and polling continues.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            records = await store.get("")
            logger.debug("keep-alive query on %s returned %d records", store.name, len(records))
        except StorageError as e:
            logger.error("keep-alive query on %s failed: %s", store.name, e)
