import asyncio

import pytest
from fastapi.testclient import TestClient
from nacl import pwhash

from aclgate.keys import generate_keypair
from aclgate.main import create_app
from aclgate.services import Services

TEST_SECRET = "aclgate-test-secret"


def fast_password_hash(password: str) -> str:
    return pwhash.argon2id.str(
        password.encode("utf-8"),
        opslimit=pwhash.argon2id.OPSLIMIT_MIN,
        memlimit=pwhash.argon2id.MEMLIMIT_MIN,
    ).decode("ascii")


@pytest.fixture
def password_hash():
    return fast_password_hash


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def keypair():
    """Factory for fresh (private, public) Ed25519 keys."""
    return generate_keypair


@pytest.fixture
def services():
    return Services.in_memory(secret=TEST_SECRET, keepalive_seconds=0)


@pytest.fixture
def client(services):
    app = create_app(services, background=False)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def register_user(client):
    """Register an alias through the HTTP flow; returns a dict with keys and tokens."""
    def _register(alias: str, password: str = "correct horse"):
        private_key, public_key = generate_keypair()
        temp = client.post("/request-token", json={"alias": alias}).json()["token"]
        r = client.post(
            "/register",
            json={"alias": alias, "publicKey": public_key, "hashedPassword": fast_password_hash(password)},
            headers={"Authorization": f"Bearer {temp}"},
        )
        assert r.status_code == 200, r.text
        body = r.json()
        return {
            "alias": alias,
            "password": password,
            "private_key": private_key,
            "public_key": public_key,
            "access": body["accessToken"],
            "refresh": body["refreshToken"],
            "headers": {"Authorization": f"Bearer {body['accessToken']}"},
        }
    return _register
