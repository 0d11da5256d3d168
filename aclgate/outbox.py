"""
Notification outbox for aclgate.

Every committed write produces a content identifier that downstream
replication (a pinning service) should hear about. Instead of calling the
service inline, writers enqueue the cid here and a background worker
delivers it. Delivery is at-least-once, so sinks must tolerate repeats;
pinning an already-pinned hash is a no-op on the service side.

A failing sink never fails the write that produced the cid.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import config
from .errors import StorageError
from .logging_config import audit_log
from .storage import SqliteDatabase
from .util import now_epoch

logger = logging.getLogger(__name__)


# ============================================================
# Sinks
# ============================================================

class NotificationSink:
    """Receives cids from the outbox worker. notify() may block."""

    def notify(self, cid: str) -> Any:
        raise NotImplementedError


class LoggingSink(NotificationSink):
    """Default sink: records the cid in the application log."""

    def notify(self, cid: str) -> Any:
        logger.info("replication notification for %s", cid)
        return {"cid": cid, "status": "logged"}


class PinningServiceSink(NotificationSink):
    """Asks an HTTP pinning service to pin each cid (POST /pinning/pinByHash)."""

    def __init__(self, base_url: str, api_key: str = "", api_secret: str = "",
                 jwt: str = "", timeout: float = 10.0, session=None):
        self.url = base_url.rstrip("/") + "/pinning/pinByHash"
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["pinata_api_key"] = api_key
        if api_secret:
            self.headers["pinata_secret_api_key"] = api_secret
        if jwt:
            self.headers["Authorization"] = f"Bearer {jwt}"
        self.timeout = timeout
        self._session = session

    def _get_session(self):
        if self._session is None:
            import requests
            self._session = requests.Session()
        return self._session

    def notify(self, cid: str) -> Any:
        r = self._get_session().post(self.url, json={"hashToPin": cid},
                                     headers=self.headers, timeout=self.timeout)
        r.raise_for_status()
        return r.json()


def get_notification_sink() -> NotificationSink:
    if config.NOTIFICATION_SINK == "pinning":
        return PinningServiceSink(
            base_url=config.PINNING_BASE_URL,
            api_key=config.PINNING_API_KEY,
            api_secret=config.PINNING_API_SECRET,
            jwt=config.PINNING_JWT,
            timeout=config.PINNING_TIMEOUT,
        )
    return LoggingSink()


# ============================================================
# Outbox storage
# ============================================================

@dataclass
class OutboxEntry:
    entry_id: int
    cid: str
    attempts: int = 0
    last_error: Optional[str] = None


class Outbox(ABC):
    """Pending notifications, keyed by cid while undelivered."""

    async def open(self) -> None:
        """Prepare the outbox for use."""

    @abstractmethod
    async def enqueue(self, cid: str) -> None:
        """Record a cid for delivery. A cid already pending is not duplicated."""

    @abstractmethod
    async def pending(self, max_attempts: int, limit: int = 100) -> List[OutboxEntry]:
        """Undelivered entries that have not exhausted their attempts, oldest first."""

    @abstractmethod
    async def mark_delivered(self, entry_id: int) -> None:
        """Drop a delivered entry, keeping only the delivery count."""

    @abstractmethod
    async def mark_failed(self, entry_id: int, error: str) -> int:
        """Record a failed attempt and return the attempt count."""

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        ...


class InMemoryOutbox(Outbox):

    def __init__(self):
        self._entries: Dict[int, OutboxEntry] = {}
        self._delivered = 0
        self._seq = 0

    async def enqueue(self, cid: str) -> None:
        if any(e.cid == cid for e in self._entries.values()):
            return
        self._seq += 1
        self._entries[self._seq] = OutboxEntry(entry_id=self._seq, cid=cid)

    async def pending(self, max_attempts: int, limit: int = 100) -> List[OutboxEntry]:
        live = [e for _, e in sorted(self._entries.items()) if e.attempts < max_attempts]
        return live[:limit]

    async def mark_delivered(self, entry_id: int) -> None:
        if self._entries.pop(entry_id, None) is not None:
            self._delivered += 1

    async def mark_failed(self, entry_id: int, error: str) -> int:
        entry = self._entries[entry_id]
        entry.attempts += 1
        entry.last_error = error
        return entry.attempts

    async def stats(self) -> Dict[str, int]:
        return {"pending": len(self._entries), "delivered": self._delivered}


class SqliteOutbox(Outbox):
    """
    Outbox table stored alongside the document collections.

    Delivered rows are deleted; only a running count of deliveries is kept.
    Rows that exhausted their attempts stay for inspection.
    """

    def __init__(self, db: SqliteDatabase):
        self.db = db

    async def _run(self, fn, *args):
        def locked():
            with self.db.lock:
                conn = self.db.conn
                try:
                    result = fn(conn, *args)
                    conn.commit()
                    return result
                except Exception:
                    conn.rollback()
                    raise
        try:
            return await asyncio.to_thread(locked)
        except StorageError:
            raise
        except Exception as e:
            logger.error("outbox storage failure: %s", e)
            raise StorageError("outbox storage failure") from e

    async def open(self) -> None:
        def init(conn):
            conn.execute("""
            CREATE TABLE IF NOT EXISTS outbox (
                entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                cid TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            );""")
            conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_outbox_cid ON outbox(cid);")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS outbox_counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            );""")
            conn.execute("INSERT OR IGNORE INTO outbox_counters(name, value) VALUES('delivered', 0)")
        await asyncio.to_thread(self.db.connect)
        await self._run(init)

    async def enqueue(self, cid: str) -> None:
        await self._run(lambda conn: conn.execute(
            "INSERT OR IGNORE INTO outbox(cid, created_at) VALUES(?,?)", (cid, now_epoch())))

    async def pending(self, max_attempts: int, limit: int = 100) -> List[OutboxEntry]:
        def select(conn):
            cur = conn.execute(
                "SELECT entry_id, cid, attempts, last_error FROM outbox "
                "WHERE attempts < ? ORDER BY entry_id ASC LIMIT ?",
                (max_attempts, limit)
            )
            return [OutboxEntry(**dict(row)) for row in cur.fetchall()]
        return await self._run(select)

    async def mark_delivered(self, entry_id: int) -> None:
        def remove(conn):
            cur = conn.execute("DELETE FROM outbox WHERE entry_id=?", (entry_id,))
            if cur.rowcount:
                conn.execute("UPDATE outbox_counters SET value=value+1 WHERE name='delivered'")
        await self._run(remove)

    async def mark_failed(self, entry_id: int, error: str) -> int:
        def update(conn):
            conn.execute(
                "UPDATE outbox SET attempts=attempts+1, last_error=? WHERE entry_id=?",
                (error[:500], entry_id)
            )
            row = conn.execute("SELECT attempts FROM outbox WHERE entry_id=?", (entry_id,)).fetchone()
            return row["attempts"] if row else 0
        return await self._run(update)

    async def stats(self) -> Dict[str, int]:
        def count(conn):
            pending = conn.execute("SELECT COUNT(*) AS cnt FROM outbox").fetchone()
            delivered = conn.execute("SELECT value FROM outbox_counters WHERE name='delivered'").fetchone()
            return {"pending": pending["cnt"], "delivered": delivered["value"] if delivered else 0}
        return await self._run(count)


# ============================================================
# Worker
# ============================================================

class OutboxWorker:
    """Drains the outbox into a sink on a polling timer."""

    def __init__(self, outbox: Outbox, sink: NotificationSink,
                 poll_seconds: float = 5.0, max_attempts: int = 10):
        self.outbox = outbox
        self.sink = sink
        self.poll_seconds = poll_seconds
        self.max_attempts = max_attempts
        self._task: Optional[asyncio.Task] = None

    async def flush(self) -> int:
        """Attempt delivery of every pending entry once. Returns the number delivered."""
        delivered = 0
        for entry in await self.outbox.pending(self.max_attempts):
            try:
                await asyncio.to_thread(self.sink.notify, entry.cid)
            except Exception as e:
                attempts = await self.outbox.mark_failed(entry.entry_id, str(e))
                audit_log.notification_failed(entry.cid, attempts, str(e))
                continue
            await self.outbox.mark_delivered(entry.entry_id)
            delivered += 1
        return delivered

    async def run(self) -> None:
        while True:
            try:
                await self.flush()
            except StorageError as e:
                logger.error("outbox drain failed: %s", e)
            await asyncio.sleep(self.poll_seconds)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


async def notify_best_effort(outbox: Outbox, cid: str) -> None:
    """Enqueue a cid; outbox failures are logged, never raised to the writer."""
    try:
        await outbox.enqueue(cid)
    except StorageError as e:
        audit_log.notification_failed(cid, 0, str(e))
