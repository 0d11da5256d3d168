"""
Token issuance and the registration / login / refresh flow.
"""

import time

import bcrypt
import jwt
import pytest

from aclgate.acl import AccessControl
from aclgate.errors import AuthError, Conflict, NotFound, ValidationError
from aclgate.keys import generate_keypair
from aclgate.outbox import InMemoryOutbox
from aclgate.session import (ACCESS, REFRESH, TEMPORARY, IdentityService, TokenService,
                             check_password, validate_password_hash, validate_public_key)
from aclgate.storage import InMemoryDocumentStore

SECRET = "session-test-secret"

# format written by bcryptjs clients
NODE_BCRYPT_HASH = "$2a$10$N9qo8uLOickgx2ZMRZoMyeIjZAgcfl7p92ldGxad68LJZdL17lhWy"


class Clock:
    def __init__(self, now=None):
        self.now = int(time.time()) if now is None else now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def tokens(clock):
    return TokenService(SECRET, temp_ttl=60, access_ttl=600, refresh_ttl=3600, clock=clock)


@pytest.fixture
def identity(tokens):
    outbox = InMemoryOutbox()
    acl = AccessControl(InMemoryDocumentStore("acl"), outbox)
    return IdentityService(InMemoryDocumentStore("credentials"), acl, tokens, outbox)


def test_token_roundtrip(tokens, clock):
    token = tokens.issue("alice", ACCESS, "PK1")
    claims = tokens.verify(token, ACCESS)
    assert claims.alias == "alice"
    assert claims.public_key == "PK1"
    assert claims.expires_at == clock.now + 600


def test_token_kind_enforced(tokens):
    refresh = tokens.issue("alice", REFRESH, "PK1")
    with pytest.raises(AuthError) as exc:
        tokens.verify(refresh, ACCESS)
    assert exc.value.message == "Invalid token type."


def test_token_expiry(clock):
    # PyJWT checks exp against wall time, so issue in the past
    tokens = TokenService(SECRET, temp_ttl=60, clock=lambda: clock.now - 3600)
    with pytest.raises(AuthError) as exc:
        tokens.verify(tokens.issue("alice", TEMPORARY), TEMPORARY)
    assert exc.value.message == "Token expired."


def test_token_forged_secret(tokens):
    forged = jwt.encode({"alias": "alice", "kind": ACCESS, "pub": "PK1", "iat": 1, "exp": 2**31},
                        "another-secret", algorithm="HS256")
    with pytest.raises(AuthError):
        tokens.verify(forged, ACCESS)


def test_empty_token(tokens):
    with pytest.raises(AuthError):
        tokens.verify("", ACCESS)


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        TokenService("")


def test_validate_public_key():
    _, pk = generate_keypair()
    assert validate_public_key(pk) == pk
    with pytest.raises(ValidationError):
        validate_public_key("c2hvcnQ")
    with pytest.raises(ValidationError):
        validate_public_key("not base64 at all!")


def test_check_password(password_hash):
    hashed = password_hash("secret")
    assert check_password("secret", hashed)
    assert not check_password("wrong", hashed)


def test_register_and_authenticate(identity, tokens, run, password_hash):
    _, pk = generate_keypair()
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)

    pair = run(identity.register(temp, "alice", pk, password_hash("pw")))
    assert tokens.verify(pair.access_token, ACCESS).public_key == pk
    assert run(identity.credential_exists("alice"))

    # registration creates the self-owned record at users/<pk>
    record = run(identity.acl.get_record(identity.acl.owner_path(pk).key()))
    assert record.owner == pk
    assert record.allowed_public_keys == [pk]

    login = run(identity.authenticate("alice", "pw"))
    assert tokens.verify(login.refresh_token, REFRESH).alias == "alice"


def test_register_notifies_both_records(identity, tokens, run, password_hash):
    _, pk = generate_keypair()
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)
    run(identity.register(temp, "alice", pk, password_hash("pw")))
    assert run(identity.outbox.stats())["pending"] == 2


def test_register_alias_must_match_token(identity, tokens, run, password_hash):
    _, pk = generate_keypair()
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)
    with pytest.raises(AuthError):
        run(identity.register(temp, "mallory", pk, password_hash("pw")))
    assert not run(identity.credential_exists("mallory"))


def test_register_existing_alias(identity, tokens, run, password_hash):
    _, pk1 = generate_keypair()
    _, pk2 = generate_keypair()
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)
    run(identity.register(temp, "alice", pk1, password_hash("pw")))
    with pytest.raises(Conflict):
        run(identity.register(temp, "alice", pk2, password_hash("pw")))
    assert run(identity.get_credential("alice")).public_key == pk1


def test_register_rejects_unknown_hash_format(identity, tokens, run):
    _, pk = generate_keypair()
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)
    with pytest.raises(ValidationError):
        run(identity.register(temp, "alice", pk, "$1$saltsalt$qjXMvbEw8oaL.CzflDugX/"))
    with pytest.raises(ValidationError):
        run(identity.register(temp, "alice", pk, "plaintext-password"))


def test_bcrypt_hash_accepted():
    assert validate_password_hash(NODE_BCRYPT_HASH) == NODE_BCRYPT_HASH
    assert validate_password_hash("$2y$04$abcdefghijklmnopqrstuu5AaWnFKZp8GX1Q1r5m8cX0iC.ZQj2Xy")


def test_register_and_authenticate_with_bcrypt(identity, tokens, run):
    _, pk = generate_keypair()
    hashed = bcrypt.hashpw(b"hunter2", bcrypt.gensalt(rounds=4, prefix=b"2a")).decode("ascii")
    assert hashed.startswith("$2a$")
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)
    run(identity.register(temp, "alice", pk, hashed))

    pair = run(identity.authenticate("alice", "hunter2"))
    assert tokens.verify(pair.access_token, ACCESS).public_key == pk
    with pytest.raises(AuthError):
        run(identity.authenticate("alice", "hunter3"))


def test_check_password_bcrypt_variants():
    hashed = bcrypt.hashpw(b"pw", bcrypt.gensalt(rounds=4)).decode("ascii")
    assert check_password("pw", hashed)
    assert not check_password("nope", hashed)
    assert not check_password("pw", "$2b$04$truncated")


def test_authenticate_failures(identity, tokens, run, password_hash):
    _, pk = generate_keypair()
    temp = tokens.verify(identity.request_token("alice"), TEMPORARY)
    run(identity.register(temp, "alice", pk, password_hash("pw")))

    with pytest.raises(NotFound):
        run(identity.authenticate("bob", "pw"))
    with pytest.raises(AuthError):
        run(identity.authenticate("alice", "nope"))


def test_refresh(identity, tokens):
    pair = tokens.issue_pair("alice", "PK1")
    renewed = identity.refresh(pair.refresh_token)
    assert tokens.verify(renewed.access_token, ACCESS).public_key == "PK1"
    with pytest.raises(AuthError):
        identity.refresh(pair.access_token)
