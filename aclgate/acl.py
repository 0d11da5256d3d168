"""
Hierarchical write ACLs.

Each AccessRecord names an owner key and a set of keys allowed to write at
or below its path. Permission is inherited downwards: a write to
users/K/a/b is allowed if any of users/K/a/b, users/K/a, users/K or users
grants the requester. Paths outside the namespace root are not guarded.

Grants and revokes must be signed by the record owner over
"{path}-{granteeKey}-grant" or "{path}-{granteeKey}-revoke", where path is
either the path exactly as the client sent it or its canonical key.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .errors import AccessDenied, Conflict, NotFound, ServerError, SignatureInvalid
from .keys import verify_ed25519
from .locks import PathLocks
from .logging_config import audit_log
from .models import WILDCARD, AccessRecord
from .outbox import Outbox, notify_best_effort
from .paths import StorePath
from .storage import DocumentStore

logger = logging.getLogger(__name__)

GRANTED = "granted"
GRANTED_ALL = "granted_all"
ALREADY_PRESENT = "already_present"
REVOKED = "revoked"

MESSAGES = {
    GRANTED: "Write access granted successfully.",
    GRANTED_ALL: "Write access granted to all users.",
    ALREADY_PRESENT: "Public key already has access.",
    REVOKED: "Write access removed successfully.",
}


def grant_message(key: str, grantee: str) -> str:
    return f"{key}-{grantee}-grant"


def revoke_message(key: str, grantee: str) -> str:
    return f"{key}-{grantee}-revoke"


def signed_forms(key: str, raw_path: Optional[str]) -> List[str]:
    """Path strings a mutation signature may cover: the path as sent, then the canonical key."""
    if raw_path is None or raw_path == key:
        return [key]
    return [raw_path, key]


@dataclass
class MutationResult:
    outcome: str
    path: str
    cid: Optional[str] = None

    @property
    def message(self) -> str:
        return MESSAGES[self.outcome]

    def to_dict(self):
        return {"message": self.message, "outcome": self.outcome, "path": self.path}


class AccessControl:
    """ACL component: permission resolution and owner-signed mutations."""

    def __init__(self, store: DocumentStore, outbox: Outbox,
                 namespace_root: str = "users", claim_requires_write: bool = True):
        self.store = store
        self.outbox = outbox
        self.namespace_root = namespace_root
        self.claim_requires_write = claim_requires_write
        self._locks = PathLocks()

    async def get_record(self, key: str) -> Optional[AccessRecord]:
        doc = await self.store.get_one(key)
        return AccessRecord.from_doc(doc) if doc else None

    async def resolve_effective_permission(self, path: StorePath, requester_key: str) -> bool:
        """
        Walk from path up to the namespace root; allow on the first record
        that names the requester as owner or allowed key, or allows "*".
        A missing or non-matching record at one level never stops the walk.
        """
        if not path.in_namespace(self.namespace_root):
            return True
        if not requester_key:
            return False
        for ancestor in path.ancestors():
            record = await self.get_record(ancestor.key())
            if record is not None and record.allows(requester_key):
                logger.debug("write on %s allowed by record %s", path, record.id)
                return True
        return False

    async def check_write(self, path: StorePath, requester_key: str) -> None:
        """Raise AccessDenied unless requester_key may write to path."""
        if not await self.resolve_effective_permission(path, requester_key):
            audit_log.access_denied(path.key(), requester_key)
            raise AccessDenied("Access denied.")

    async def _persist(self, record: AccessRecord, notify: bool = True) -> str:
        record.version += 1
        cid = await self.store.put(record.to_doc())
        if notify:
            await notify_best_effort(self.outbox, cid)
        return cid

    def _verify_owner_signature(self, record: AccessRecord, messages: List[str], signature: str,
                                action: str, requester_key: str) -> None:
        if not record.owner:
            logger.error("ACL record %s has no owner key", record.id)
            raise ServerError("Owner public key is not set.")
        if not any(verify_ed25519(signature, m.encode("utf-8"), record.owner) for m in messages):
            audit_log.security_event("acl_signature_rejected", action=action,
                                     path=record.id, requester=requester_key)
            raise SignatureInvalid("Signature verification failed")

    async def grant_write(self, path: StorePath, grantee_key: str, signature: str,
                          requester_key: str, raw_path: Optional[str] = None) -> MutationResult:
        """
        Add grantee_key to the record at path, creating the record (owned by
        the requester) when none exists yet. Granting "*" replaces every
        explicit entry with the wildcard.

        The signature may cover raw_path as the client sent it or the
        canonical key of path.
        """
        key = path.key()
        async with self._locks.hold(key):
            record = await self.get_record(key)
            if record is None:
                if self.claim_requires_write and not await self.resolve_effective_permission(path, requester_key):
                    audit_log.access_denied(key, requester_key)
                    raise AccessDenied("Access denied.")
                record = AccessRecord(id=key, owner=requester_key, allowed_public_keys=[])

            messages = [grant_message(p, grantee_key) for p in signed_forms(key, raw_path)]
            self._verify_owner_signature(record, messages, signature, "grant", requester_key)

            if grantee_key == WILDCARD:
                if record.allowed_public_keys == [WILDCARD]:
                    outcome = ALREADY_PRESENT
                else:
                    record.allowed_public_keys = [WILDCARD]
                    outcome = GRANTED_ALL
            elif grantee_key in record.allowed_public_keys:
                outcome = ALREADY_PRESENT
            else:
                record.allowed_public_keys.append(grantee_key)
                outcome = GRANTED

            cid = None
            if outcome != ALREADY_PRESENT:
                cid = await self._persist(record)

        audit_log.acl_changed("grant", key, grantee_key, requester_key, outcome)
        return MutationResult(outcome=outcome, path=key, cid=cid)

    async def revoke_write(self, path: StorePath, grantee_key: str, signature: str,
                           requester_key: str, raw_path: Optional[str] = None) -> MutationResult:
        """Remove grantee_key from the record at path. Signature rules as for grant_write."""
        key = path.key()
        async with self._locks.hold(key):
            record = await self.get_record(key)
            if record is None:
                raise NotFound("Path does not exist.")

            messages = [revoke_message(p, grantee_key) for p in signed_forms(key, raw_path)]
            self._verify_owner_signature(record, messages, signature, "revoke", requester_key)

            if grantee_key not in record.allowed_public_keys:
                raise NotFound("Public key does not have access or path does not exist.")

            record.allowed_public_keys = [k for k in record.allowed_public_keys if k != grantee_key]
            cid = await self._persist(record)

        audit_log.acl_changed("revoke", key, grantee_key, requester_key, REVOKED)
        return MutationResult(outcome=REVOKED, path=key, cid=cid)

    def owner_path(self, public_key: str) -> StorePath:
        return StorePath.of(self.namespace_root, public_key)

    async def create_owner_record(self, public_key: str) -> Optional[str]:
        """
        Create the self-owned record for a newly registered key.

        Returns the cid of the new record, or None when the key already owns
        its record. The caller enqueues the notification once registration
        has fully committed.

        Raises:
            Conflict: If the record exists with a different owner
        """
        key = self.owner_path(public_key).key()
        async with self._locks.hold(key):
            existing = await self.get_record(key)
            if existing is not None:
                if existing.owner != public_key:
                    raise Conflict("Access record for this key is owned by another key.")
                return None
            record = AccessRecord(id=key, owner=public_key, allowed_public_keys=[public_key])
            return await self._persist(record, notify=False)

    async def remove_record(self, key: str) -> None:
        """Drop a record; used to undo a half-finished registration."""
        async with self._locks.hold(key):
            await self.store.delete(key)
