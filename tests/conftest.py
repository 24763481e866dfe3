import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
from main import app


@pytest.fixture
def mongo(monkeypatch):
    test_db = mongomock.MongoClient()["dreams_test"]
    monkeypatch.setattr(database, "db", test_db)
    return test_db


@pytest.fixture
def client(mongo):
    return TestClient(app)


@pytest.fixture
def author_id():
    return str(ObjectId())


@pytest.fixture
def make_topic(client):
    def _make(name="flying", color="#3366ff"):
        res = client.post("/topics", json={"name": name, "color": color})
        assert res.status_code == 201
        return res.json()["id"]
    return _make


@pytest.fixture
def make_type(client):
    def _make(name="lucid", color="#ff0000"):
        res = client.post("/types", json={"name": name, "color": color})
        assert res.status_code == 201
        return res.json()["id"]
    return _make


@pytest.fixture
def make_dream(client, make_topic, make_type, author_id):
    def _make(title="t", content="c", topics=None, **extra):
        body = {
            "title": title,
            "content": content,
            "topics": topics if topics is not None else [make_topic()],
            "type": make_type(),
            "author": author_id,
            **extra,
        }
        res = client.post("/dreams", json=body)
        assert res.status_code == 201, res.json()
        return res.json()["id"]
    return _make
