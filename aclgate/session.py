"""
Session and identity.

Bearer tokens are HS256 JWTs carrying the subject's alias and public key
("pub") plus a "kind": temporary tokens only allow registration, access
tokens authorize requests, refresh tokens are exchanged for a new pair.
Nothing is revoked server-side; expiry is the only bound on a token.

Passwords are never seen in clear at registration: the client submits a
modular-crypt hash. At login argon2id, argon2i and scrypt hashes are checked
with nacl.pwhash, bcrypt ($2a$, $2b$, $2y$) hashes with the bcrypt package.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import bcrypt
import jwt
from nacl import pwhash
from nacl.exceptions import InvalidkeyError

from .acl import AccessControl
from .errors import AuthError, Conflict, NotFound, StorageError, ValidationError
from .locks import PathLocks
from .logging_config import audit_log
from .models import Credential
from .outbox import Outbox, notify_best_effort
from .storage import DocumentStore
from .util import decode_key_material, generate_id, now_epoch

logger = logging.getLogger(__name__)

TEMPORARY = "temporary"
ACCESS = "access"
REFRESH = "refresh"

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
PASSWORD_HASH_PREFIXES = ("$argon2id$", "$argon2i$", "$7$") + BCRYPT_PREFIXES


@dataclass
class TokenClaims:
    alias: str
    kind: str
    issued_at: int
    expires_at: int
    public_key: Optional[str] = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str

    def to_dict(self) -> Dict[str, str]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


class TokenService:
    """Issues and verifies signed bearer tokens."""

    def __init__(self, secret: str, temp_ttl: int = 300, access_ttl: int = 3600,
                 refresh_ttl: int = 7 * 24 * 3600, algorithm: str = "HS256",
                 clock: Callable[[], int] = now_epoch):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock
        self.ttls = {TEMPORARY: temp_ttl, ACCESS: access_ttl, REFRESH: refresh_ttl}

    def issue(self, alias: str, kind: str, public_key: Optional[str] = None) -> str:
        if kind not in self.ttls:
            raise ValueError(f"unknown token kind: {kind}")
        issued_at = self._clock()
        claims = {
            "alias": alias,
            "kind": kind,
            "iat": issued_at,
            "exp": issued_at + self.ttls[kind],
            "jti": generate_id(8),
        }
        if public_key is not None:
            claims["pub"] = public_key
        audit_log.token_issued(alias, kind)
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def issue_pair(self, alias: str, public_key: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue(alias, ACCESS, public_key),
            refresh_token=self.issue(alias, REFRESH, public_key),
        )

    def verify(self, token: str, kind: str) -> TokenClaims:
        """
        Decode a token and check its kind.

        Raises:
            AuthError: If the token is malformed, forged, expired or of another kind
        """
        if not token:
            raise AuthError("Access denied. No token provided.")
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm],
                                options={"require": ["exp", "iat"]})
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired.")
        except jwt.InvalidTokenError:
            raise AuthError("Invalid token.")

        if claims.get("kind") != kind:
            raise AuthError("Invalid token type.")
        if not claims.get("alias"):
            raise AuthError("Invalid token.")
        if kind != TEMPORARY and not claims.get("pub"):
            raise AuthError("Invalid token.")

        return TokenClaims(
            alias=claims["alias"],
            kind=claims["kind"],
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
            public_key=claims.get("pub"),
        )


def validate_public_key(public_key: str) -> str:
    try:
        raw = decode_key_material(public_key)
    except ValueError:
        raise ValidationError("must be base64", field="publicKey")
    if len(raw) != 32:
        raise ValidationError("must be a 32-byte Ed25519 key", field="publicKey")
    return public_key


def validate_password_hash(hashed_password: str) -> str:
    if not hashed_password.startswith(PASSWORD_HASH_PREFIXES):
        raise ValidationError("unsupported password hash format", field="hashedPassword")
    return hashed_password


def check_password(password: str, hashed_password: str) -> bool:
    if hashed_password.startswith(BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("ascii"))
        except (UnicodeEncodeError, ValueError):
            return False
    try:
        return pwhash.verify(hashed_password.encode("ascii"), password.encode("utf-8"))
    except (InvalidkeyError, UnicodeEncodeError, ValueError):
        return False


class IdentityService:
    """Registration, login, token refresh and credential lookup."""

    def __init__(self, credentials: DocumentStore, acl: AccessControl,
                 tokens: TokenService, outbox: Outbox):
        self.credentials = credentials
        self.acl = acl
        self.tokens = tokens
        self.outbox = outbox
        self._locks = PathLocks()

    def request_token(self, alias: str) -> str:
        """Short-lived token that only allows registering alias."""
        return self.tokens.issue(alias, TEMPORARY)

    async def get_credential(self, alias: str) -> Optional[Credential]:
        doc = await self.credentials.get_one(alias)
        return Credential.from_doc(doc) if doc else None

    async def register(self, temp: TokenClaims, alias: str, public_key: str,
                       hashed_password: str) -> TokenPair:
        """
        Create the credential and the self-owned ACL record for public_key,
        then issue an access/refresh pair.

        Raises:
            AuthError: If the temporary token was issued for another alias
            ValidationError: If the key or password hash is malformed
            Conflict: If the alias is taken or the key's record has another owner
        """
        if temp.kind != TEMPORARY:
            raise AuthError("Invalid temporary token usage.")
        if temp.alias != alias:
            audit_log.authentication_failed(alias, "temporary token alias mismatch")
            raise AuthError("Temporary token was issued for a different alias.")
        validate_public_key(public_key)
        validate_password_hash(hashed_password)

        async with self._locks.hold(alias):
            if await self.get_credential(alias) is not None:
                raise Conflict("Alias is already registered.")

            acl_cid = await self.acl.create_owner_record(public_key)
            try:
                cred_cid = await self.credentials.put(
                    Credential(alias, public_key, hashed_password).to_doc())
            except StorageError:
                if acl_cid is not None:
                    logger.warning("registration of %s failed, removing its ACL record", alias)
                    await self.acl.remove_record(self.acl.owner_path(public_key).key())
                raise

        for cid in (acl_cid, cred_cid):
            if cid is not None:
                await notify_best_effort(self.outbox, cid)
        audit_log.registration(alias, public_key)
        return self.tokens.issue_pair(alias, public_key)

    async def authenticate(self, alias: str, password: str) -> TokenPair:
        """
        Raises:
            NotFound: If no credential exists for alias
            AuthError: If the password does not match
        """
        credential = await self.get_credential(alias)
        if credential is None:
            audit_log.authentication_failed(alias, "unknown alias")
            raise NotFound("User not found")
        ok = await asyncio.to_thread(check_password, password, credential.hashed_password)
        if not ok:
            audit_log.authentication_failed(alias, "password mismatch")
            raise AuthError("Authentication failed")
        return self.tokens.issue_pair(credential.alias, credential.public_key)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a new pair with the same subject."""
        claims = self.tokens.verify(refresh_token, REFRESH)
        return self.tokens.issue_pair(claims.alias, claims.public_key)

    async def credential_exists(self, alias: str) -> bool:
        credential = await self.get_credential(alias)
        return credential is not None and credential.is_complete()
