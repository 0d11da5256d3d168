"""
Document store adapters.
"""

import pytest

from aclgate.errors import StorageError
from aclgate.storage import (InMemoryDocumentStore, SqliteDatabase, SqliteDocumentStore,
                             record_cid)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, run):
    if request.param == "memory":
        yield InMemoryDocumentStore("data")
        return
    db = SqliteDatabase(str(tmp_path / "store.db"))
    store = SqliteDocumentStore(db, "data")
    run(store.open())
    yield store
    db.close()


def test_put_and_prefix_get(store, run):
    for key in ("users/K/b", "users/K/a", "users/L/a", "users/K"):
        run(store.put({"_id": key, "data": key}))

    assert [r["_id"] for r in run(store.get("users/K/"))] == ["users/K/a", "users/K/b"]
    assert [r["_id"] for r in run(store.get("users/K"))] == ["users/K", "users/K/a", "users/K/b"]
    assert len(run(store.get(""))) == 4


def test_get_one_is_exact(store, run):
    run(store.put({"_id": "users/K/ab", "data": 1}))
    assert run(store.get_one("users/K/a")) is None
    assert run(store.get_one("users/K/ab")) == {"_id": "users/K/ab", "data": 1}


def test_put_replaces_and_returns_cid(store, run):
    doc = {"_id": "users/K", "owner": "K", "allowedPublicKeys": ["K"]}
    cid = run(store.put(doc))
    assert cid == record_cid(doc)
    run(store.put({"_id": "users/K", "owner": "K", "allowedPublicKeys": []}))
    assert run(store.get_one("users/K"))["allowedPublicKeys"] == []


def test_prefix_is_literal(store, run):
    # LIKE wildcards must not leak into prefix matching
    run(store.put({"_id": "users/a_b", "data": 1}))
    run(store.put({"_id": "users/axb", "data": 2}))
    run(store.put({"_id": "users/100%", "data": 3}))
    assert [r["_id"] for r in run(store.get("users/a_"))] == ["users/a_b"]
    assert [r["_id"] for r in run(store.get("users/100%"))] == ["users/100%"]


def test_delete(store, run):
    run(store.put({"_id": "users/K/a", "data": 1}))
    run(store.delete("users/K/a"))
    run(store.delete("users/K/missing"))
    assert run(store.get("users/K/")) == []


def test_missing_id_rejected(store, run):
    with pytest.raises(StorageError):
        run(store.put({"data": 1}))


def test_returned_documents_are_copies(run):
    store = InMemoryDocumentStore("data")
    run(store.put({"_id": "k", "data": {"n": 1}}))
    doc = run(store.get_one("k"))
    doc["data"]["n"] = 2
    assert run(store.get_one("k"))["data"] == {"n": 1}


def test_sqlite_persists_across_connections(tmp_path, run):
    path = str(tmp_path / "nested" / "store.db")
    db = SqliteDatabase(path)
    store = SqliteDocumentStore(db, "acl")
    run(store.open())
    run(store.put({"_id": "users/K", "owner": "K"}))
    db.close()

    reopened = SqliteDocumentStore(SqliteDatabase(path), "acl")
    run(reopened.open())
    assert run(reopened.get_one("users/K")) == {"_id": "users/K", "owner": "K"}
    reopened.db.close()


def test_sqlite_closed_database(tmp_path, run):
    db = SqliteDatabase(str(tmp_path / "store.db"))
    store = SqliteDocumentStore(db, "data")
    with pytest.raises(StorageError):
        run(store.get(""))


def test_collection_name_validated():
    with pytest.raises(ValueError):
        SqliteDocumentStore(SqliteDatabase(":memory:"), "bad name; drop")
