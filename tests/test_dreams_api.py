from bson import ObjectId


def test_create_dream_returns_id_and_link(client, make_topic, make_type, author_id):
    res = client.post("/dreams", json={
        "title": "t",
        "content": "c",
        "topics": [make_topic()],
        "type": make_type(),
        "author": author_id,
    })

    assert res.status_code == 201
    body = res.json()
    assert body["links"][0]["action"] == "GET"
    assert body["links"][0]["href"].endswith(f"/dreams/{body['id']}")


def test_create_dream_lists_every_missing_field(client):
    res = client.post("/dreams", json={"topics": []})

    assert res.status_code == 400
    fields = {e["field"] for e in res.json()["errors"]}
    assert {"title", "content", "type", "author"} <= fields
    assert all(e["error"] == "validation_error" for e in res.json()["errors"])


def test_create_dream_reports_missing_fields_with_empty_topics(client, mongo):
    res = client.post("/dreams", json={"topics": []})

    assert res.status_code == 400
    kinds = {(e["field"], e["kind"]) for e in res.json()["errors"]}
    assert ("title", "required") in kinds
    assert ("topics", "topic_required") in kinds
    assert mongo["dreams"].count_documents({}) == 0


def test_create_dream_reports_missing_title_with_unknown_topic(client, mongo, make_type, author_id):
    res = client.post("/dreams", json={
        "content": "c",
        "topics": [str(ObjectId())],
        "type": make_type(),
        "author": author_id,
    })

    assert res.status_code == 400
    kinds = {(e["field"], e["kind"]) for e in res.json()["errors"]}
    assert kinds == {("title", "required"), ("topics", "invalid_topic")}
    assert mongo["dreams"].count_documents({}) == 0


def test_create_dream_with_unknown_topic(client, mongo, make_topic, make_type, author_id):
    res = client.post("/dreams", json={
        "title": "t",
        "content": "c",
        "topics": [make_topic(), str(ObjectId())],
        "type": make_type(),
        "author": author_id,
    })

    assert res.status_code == 400
    errors = res.json()["errors"]
    assert len(errors) == 1
    assert errors[0]["field"] == "topics"
    assert errors[0]["kind"] == "invalid_topic"
    assert mongo["dreams"].count_documents({}) == 0


def test_create_dream_without_topics(client, mongo, make_type, author_id):
    res = client.post("/dreams", json={
        "title": "t", "content": "c", "topics": [], "type": make_type(), "author": author_id,
    })

    assert res.status_code == 400
    assert res.json()["errors"][0]["kind"] == "topic_required"
    assert mongo["dreams"].count_documents({}) == 0


def test_create_dream_with_malformed_author(client, make_topic, make_type):
    res = client.post("/dreams", json={
        "title": "t", "content": "c", "topics": [make_topic()], "type": make_type(), "author": "bob",
    })

    assert res.status_code == 400
    assert res.json()["errors"][0] == {
        "error": "validation_error",
        "field": "author",
        "kind": "invalid_id",
        "error_description": "Invalid identifier",
    }


def test_get_dream_includes_comments(client, make_dream, author_id):
    dream_id = make_dream()
    client.post(f"/dreams/{dream_id}/comments", json={"content": "hi", "author": author_id})

    res = client.get(f"/dreams/{dream_id}")

    assert res.status_code == 200
    dream = res.json()["dream"]
    assert dream["id"] == dream_id
    assert dream["anonym"] is False
    assert dream["published"] is False
    assert [c["content"] for c in dream["comments"]] == ["hi"]


def test_get_unknown_dream(client):
    res = client.get(f"/dreams/{ObjectId()}")

    assert res.status_code == 404
    assert res.json() == {"errors": [{
        "error": "not_found",
        "entity": "dream",
        "kind": "dream_not_found",
        "error_description": "Dream not found",
    }]}


def test_patch_dream_only_touches_sent_fields(client, make_dream):
    dream_id = make_dream(title="before", content="kept")

    res = client.patch(f"/dreams/{dream_id}", json={"title": "after", "content": None, "anonym": True})

    assert res.status_code == 200
    dream = client.get(f"/dreams/{dream_id}").json()["dream"]
    assert dream["title"] == "after"
    assert dream["content"] == "kept"
    assert dream["anonym"] is True


def test_patch_dream_replaces_topics(client, make_dream, make_topic):
    dream_id = make_dream()
    falling = make_topic(name="falling", color="#abc")

    res = client.patch(f"/dreams/{dream_id}", json={"topics": [falling]})

    assert res.status_code == 200
    assert client.get(f"/dreams/{dream_id}").json()["dream"]["topics"] == [falling]


def test_patch_dream_with_empty_topics_is_rejected(client, make_dream):
    dream_id = make_dream()

    res = client.patch(f"/dreams/{dream_id}", json={"topics": []})

    assert res.status_code == 400
    assert res.json()["errors"][0]["kind"] == "topic_required"


def test_patch_dream_reports_bad_type_with_empty_topics(client, make_dream):
    dream_id = make_dream(title="before")
    before = client.get(f"/dreams/{dream_id}").json()["dream"]

    res = client.patch(f"/dreams/{dream_id}", json={"title": "after", "type": "bob", "topics": []})

    assert res.status_code == 400
    kinds = {(e["field"], e["kind"]) for e in res.json()["errors"]}
    assert kinds == {("type", "invalid_id"), ("topics", "topic_required")}
    assert client.get(f"/dreams/{dream_id}").json()["dream"] == before


def test_patch_dream_with_unknown_topic_keeps_old_set(client, make_dream, make_topic):
    topic = make_topic()
    dream_id = make_dream(topics=[topic])

    res = client.patch(f"/dreams/{dream_id}", json={"topics": [str(ObjectId())]})

    assert res.status_code == 400
    assert res.json()["errors"][0]["kind"] == "invalid_topic"
    assert client.get(f"/dreams/{dream_id}").json()["dream"]["topics"] == [topic]


def test_patch_unknown_dream(client):
    res = client.patch(f"/dreams/{ObjectId()}", json={"title": "x"})
    assert res.status_code == 404


def test_delete_dream_keeps_comments(client, mongo, make_dream, author_id):
    dream_id = make_dream()
    client.post(f"/dreams/{dream_id}/comments", json={"content": "hi", "author": author_id})

    assert client.delete(f"/dreams/{dream_id}").status_code == 204
    assert client.get(f"/dreams/{dream_id}").status_code == 404
    assert mongo["comments"].count_documents({"dream": ObjectId(dream_id)}) == 1


def test_delete_unknown_dream(client):
    assert client.delete(f"/dreams/{ObjectId()}").status_code == 404


def test_list_dreams_filters(client, make_dream, make_topic):
    flying = make_topic()
    falling = make_topic(name="falling", color="#000000")
    make_dream(topics=[flying])
    make_dream(topics=[falling], title="other")

    res = client.get("/dreams", params={"topic": falling})

    assert res.status_code == 200
    assert [d["title"] for d in res.json()["dreams"]] == ["other"]
    assert client.get("/dreams", params={"published": True}).json()["dreams"] == []


def test_list_dreams_rejects_malformed_filter(client):
    res = client.get("/dreams", params={"author": "bob"})

    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "author"


def test_list_dreams_pagination_links(client, make_dream):
    for i in range(3):
        make_dream(title=f"dream {i}")

    first = client.get("/dreams", params={"limit": 2}).json()
    assert [d["title"] for d in first["dreams"]] == ["dream 0", "dream 1"]
    assert first["total"] == 3
    assert [l["rel"] for l in first["links"]] == ["next"]
    assert "skip=2" in first["links"][0]["href"]

    second = client.get("/dreams", params={"skip": 2, "limit": 2}).json()
    assert [d["title"] for d in second["dreams"]] == ["dream 2"]
    assert [l["rel"] for l in second["links"]] == ["previous"]


def test_list_dreams_rejects_bad_limit(client):
    res = client.get("/dreams", params={"limit": 0})
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "limit"
