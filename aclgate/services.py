"""
Component wiring for aclgate.

Services owns every adapter the HTTP layer uses and their lifecycle:
start() opens the stores and launches the outbox worker and keep-alive
task, stop() cancels the tasks and closes the stores.
"""

import asyncio
import logging
from typing import List, Optional

from . import config
from .acl import AccessControl
from .gateway import ContentGateway
from .outbox import (InMemoryOutbox, NotificationSink, Outbox, OutboxWorker,
                     SqliteOutbox, get_notification_sink, LoggingSink)
from .session import IdentityService, TokenService
from .storage import (DocumentStore, InMemoryDocumentStore, SqliteDatabase,
                      SqliteDocumentStore, keep_alive)

logger = logging.getLogger(__name__)


class Services:

    def __init__(
        self,
        acl_store: DocumentStore,
        credential_store: DocumentStore,
        data_store: DocumentStore,
        outbox: Outbox,
        sink: NotificationSink,
        tokens: TokenService,
        namespace_root: str = "users",
        claim_requires_write: bool = True,
        check_deletes: bool = False,
        outbox_poll_seconds: float = 5.0,
        outbox_max_attempts: int = 10,
        keepalive_seconds: float = 300.0,
        db: Optional[SqliteDatabase] = None,
    ):
        self.acl_store = acl_store
        self.credential_store = credential_store
        self.data_store = data_store
        self.outbox = outbox
        self.tokens = tokens
        self.check_deletes = check_deletes
        self.keepalive_seconds = keepalive_seconds
        self.db = db

        self.acl = AccessControl(acl_store, outbox, namespace_root=namespace_root,
                                 claim_requires_write=claim_requires_write)
        self.gateway = ContentGateway(data_store, outbox)
        self.identity = IdentityService(credential_store, self.acl, tokens, outbox)
        self.worker = OutboxWorker(outbox, sink, poll_seconds=outbox_poll_seconds,
                                   max_attempts=outbox_max_attempts)
        self._tasks: List[asyncio.Task] = []

    @property
    def stores(self) -> List[DocumentStore]:
        return [self.acl_store, self.credential_store, self.data_store]

    @classmethod
    def in_memory(cls, secret: str = config.DEV_JWT_SECRET, sink: Optional[NotificationSink] = None,
                  tokens: Optional[TokenService] = None, **kwargs) -> "Services":
        """Fully in-process wiring, used by tests and the memory backend."""
        return cls(
            acl_store=InMemoryDocumentStore("acl"),
            credential_store=InMemoryDocumentStore("credentials"),
            data_store=InMemoryDocumentStore("data"),
            outbox=InMemoryOutbox(),
            sink=sink or LoggingSink(),
            tokens=tokens or TokenService(secret),
            **kwargs
        )

    @classmethod
    def sqlite(cls, path: str, secret: str = config.DEV_JWT_SECRET, sink: Optional[NotificationSink] = None,
               tokens: Optional[TokenService] = None, **kwargs) -> "Services":
        db = SqliteDatabase(path)
        return cls(
            acl_store=SqliteDocumentStore(db, "acl"),
            credential_store=SqliteDocumentStore(db, "credentials"),
            data_store=SqliteDocumentStore(db, "data"),
            outbox=SqliteOutbox(db),
            sink=sink or LoggingSink(),
            tokens=tokens or TokenService(secret),
            db=db,
            **kwargs
        )

    @classmethod
    def from_config(cls) -> "Services":
        tokens = TokenService(
            config.jwt_secret(),
            temp_ttl=config.TEMP_TOKEN_TTL,
            access_ttl=config.ACCESS_TOKEN_TTL,
            refresh_ttl=config.REFRESH_TOKEN_TTL,
            algorithm=config.JWT_ALGORITHM,
        )
        options = dict(
            tokens=tokens,
            sink=get_notification_sink(),
            namespace_root=config.NAMESPACE_ROOT,
            claim_requires_write=config.ACL_CLAIM_REQUIRES_WRITE,
            check_deletes=config.ACL_CHECK_DELETES,
            outbox_poll_seconds=config.OUTBOX_POLL_SECONDS,
            outbox_max_attempts=config.OUTBOX_MAX_ATTEMPTS,
            keepalive_seconds=config.KEEPALIVE_SECONDS,
        )
        if config.STORE_BACKEND == "memory":
            return cls.in_memory(**options)
        return cls.sqlite(config.DB_PATH, **options)

    async def start(self, background: bool = True) -> None:
        for store in self.stores:
            await store.open()
        await self.outbox.open()
        if background:
            self.worker.start()
            if self.keepalive_seconds > 0:
                self._tasks.append(asyncio.create_task(
                    keep_alive(self.data_store, self.keepalive_seconds)))
        logger.info("services started")

    async def stop(self) -> None:
        await self.worker.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        for store in self.stores:
            await store.close()
        if self.db is not None:
            await asyncio.to_thread(self.db.close)
        logger.info("services stopped")
