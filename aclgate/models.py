from dataclasses import dataclass, field
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from .util import payload_digest, payload_text

WILDCARD = "*"


# ============================================================
# Request bodies
# ============================================================

class RequestTokenBody(BaseModel):
    alias: str = Field(min_length=1, max_length=256)


class RegisterBody(BaseModel):
    alias: str = Field(min_length=1, max_length=256)
    publicKey: str = Field(min_length=1, max_length=512)
    hashedPassword: str = Field(min_length=1, max_length=1024)


class AuthenticateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alias: str = Field(min_length=1, max_length=256)
    password: str = Field(alias="pass", min_length=1, max_length=1024)


class RefreshBody(BaseModel):
    refreshToken: str = Field(min_length=1)


class AccessChangeBody(BaseModel):
    path: str = Field(min_length=1)
    publicKey: str = Field(min_length=1, max_length=512)
    signature: str = Field(min_length=1, max_length=512)


class AliasBody(BaseModel):
    alias: str = Field(min_length=1, max_length=256)


class PathBody(BaseModel):
    path: str = Field(min_length=1)


class UpdateDataBody(BaseModel):
    path: str = Field(min_length=1)
    value: Any


# ============================================================
# Stored records
# ============================================================

@dataclass
class AccessRecord:
    """Per-path ACL entry. The owner key signs every later mutation."""
    id: str
    owner: str
    allowed_public_keys: List[str] = field(default_factory=list)
    version: int = 0

    def allows(self, public_key: str) -> bool:
        return (
            self.owner == public_key
            or public_key in self.allowed_public_keys
            or WILDCARD in self.allowed_public_keys
        )

    def to_doc(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "owner": self.owner,
            "allowedPublicKeys": list(self.allowed_public_keys),
            "version": self.version,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "AccessRecord":
        return cls(
            id=doc["_id"],
            owner=doc.get("owner") or "",
            allowed_public_keys=list(doc.get("allowedPublicKeys") or []),
            version=int(doc.get("version", 0)),
        )


@dataclass
class Credential:
    alias: str
    public_key: str
    hashed_password: str

    def to_doc(self) -> Dict[str, Any]:
        return {"_id": self.alias, "publicKey": self.public_key, "hashedPassword": self.hashed_password}

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Credential":
        return cls(alias=doc["_id"], public_key=doc.get("publicKey", ""),
                   hashed_password=doc.get("hashedPassword", ""))

    def is_complete(self) -> bool:
        return bool(self.public_key and self.hashed_password)


@dataclass
class DataRecord:
    id: str
    data: Any

    def to_doc(self) -> Dict[str, Any]:
        return {"_id": self.id, "data": self.data}


@dataclass(frozen=True)
class Payload:
    """
    A write payload after boundary normalization.

    Clients send either the raw value or an object wrapping it as
    {"value": ...}; both become the same Payload.
    """
    value: Any

    @classmethod
    def from_wire(cls, raw: Any) -> "Payload":
        if isinstance(raw, dict) and "value" in raw:
            raw = raw["value"]
        return cls(raw)

    @property
    def text(self) -> str:
        return payload_text(self.value)

    @property
    def digest(self) -> str:
        return payload_digest(self.value)
