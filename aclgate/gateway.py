"""
Content-addressed write gateway.

Path shape decides how a payload is stored. A path with a digest-marker
segment (one starting with "#", sent on the wire as "%23") is
content-addressed: the segment after the marker must equal the base64
SHA-256 of the payload, and the record is stored once at
"<base>/<digest>/" and never overwritten or deleted. Any other path is
mutable and simply upserted.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import Conflict, Forbidden, ValidationError
from .locks import PathLocks
from .logging_config import audit_log
from .models import DataRecord, Payload
from .outbox import Outbox, notify_best_effort
from .paths import SEPARATOR, StorePath, key_is_content_addressed
from .storage import DocumentStore
from .util import constant_time_compare

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    path: str
    cid: str
    immutable: bool

    def to_dict(self) -> Dict[str, Any]:
        if self.immutable:
            return {"message": "Data saved successfully under hash", "path": self.path, "cid": self.cid}
        return {"message": "Data saved successfully", "path": self.path, "cid": self.cid}


@dataclass
class DeleteResult:
    prefix: str
    deleted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        if not self.deleted:
            message = "No entries found to delete"
        else:
            message = "Data deleted successfully"
        return {"message": message, "deletedPaths": self.deleted, "skippedPaths": self.skipped}


def prefix_key(raw: str, path: StorePath) -> str:
    """Lookup prefix for a wire path; a trailing "/" restricts it to children."""
    return path.key(trailing_slash=raw.endswith(SEPARATOR))


def split_content_address(path: StorePath) -> Tuple[StorePath, str, Optional[StorePath]]:
    """
    Split a content-addressed path into (base, digest segment, remainder).

    The base runs up to and including the marker segment.

    Raises:
        ValidationError: If the path has no marker or no digest after it
    """
    index = path.digest_marker_index()
    if index is None:
        raise ValidationError("path has no digest marker segment", field="path")
    if index + 1 >= len(path):
        raise ValidationError("digest segment missing after marker", field="path")
    base = StorePath(path.segments[:index + 1])
    digest = path.segments[index + 1]
    remainder = StorePath(path.segments[index + 2:]) if index + 2 < len(path) else None
    return base, digest, remainder


class ContentGateway:
    """Validates and stores data records."""

    def __init__(self, store: DocumentStore, outbox: Outbox):
        self.store = store
        self.outbox = outbox
        self._locks = PathLocks()

    async def write(self, path: StorePath, payload: Payload) -> WriteResult:
        """Route by path shape to the mutable or immutable write."""
        if path.is_content_addressed():
            base, digest, remainder = split_content_address(path)
            return await self.write_immutable(base, digest, remainder, payload)
        return await self.write_mutable(path, payload)

    async def write_mutable(self, path: StorePath, payload: Payload) -> WriteResult:
        key = path.key()
        cid = await self.store.put(DataRecord(key, payload.value).to_doc())
        await notify_best_effort(self.outbox, cid)
        audit_log.data_written(key, cid, immutable=False)
        return WriteResult(path=key, cid=cid, immutable=False)

    async def write_immutable(self, base: StorePath, claimed_digest: str,
                              remainder: Optional[StorePath], payload: Payload) -> WriteResult:
        """
        Store payload once under its digest.

        Raises:
            ValidationError: If the payload does not hash to claimed_digest
            Conflict: If a record already exists at the canonical id
        """
        if not constant_time_compare(payload.digest, claimed_digest):
            raise ValidationError("Hash mismatch: The provided hash does not match the calculated hash of the data.")

        key = base.child(claimed_digest).key(trailing_slash=True)
        if remainder is not None:
            logger.debug("ignoring path remainder %s for content-addressed write", remainder)

        async with self._locks.hold(key):
            existing = await self.store.get(key)
            if existing:
                raise Conflict("Data under this hash already exists.")
            cid = await self.store.put(DataRecord(key, payload.value).to_doc())

        await notify_best_effort(self.outbox, cid)
        audit_log.data_written(key, cid, immutable=True)
        return WriteResult(path=key, cid=cid, immutable=True)

    async def delete_mutable(self, raw: str) -> DeleteResult:
        """
        Delete every mutable record under a path prefix.

        Prefixes that name content-addressed data are refused before any
        lookup. Content-addressed records that happen to sit under a
        mutable prefix are left in place and reported as skipped.
        """
        path = StorePath.parse(raw)
        if path.is_content_addressed():
            audit_log.security_event("immutable_delete_refused", path=path.key())
            raise Forbidden("Deletion of immutable hashed data is not allowed.")

        prefix = prefix_key(raw, path)
        result = DeleteResult(prefix=prefix)
        for record in await self.store.get(prefix):
            record_id = record["_id"]
            if key_is_content_addressed(record_id):
                result.skipped.append(record_id)
                continue
            await self.store.delete(record_id)
            result.deleted.append(record_id)

        audit_log.data_deleted(prefix, result.deleted)
        return result

    async def fetch(self, raw: str) -> List[Dict[str, Any]]:
        path = StorePath.parse(raw)
        return await self.store.get(prefix_key(raw, path))
