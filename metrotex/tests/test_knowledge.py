def test_train_requires_question_and_answer(client):
    resp = client.post("/train", json={"question": "Where are you?"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing Q/A"


def test_train_rejects_null_fields(client):
    resp = client.post("/train", json={"question": None, "answer": "Austin"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing Q/A"


def test_train_and_list(client):
    resp = client.post("/train", json={"question": "  Where are you?  ", "answer": "Austin"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True

    entries = client.get("/knowledge").json()
    assert len(entries) == 1
    assert entries[0]["id"] == body["id"]
    assert entries[0]["question"] == "Where are you?"
    assert entries[0]["answer"] == "Austin"


def test_list_pagination(client):
    for i in range(3):
        client.post("/train", json={"question": f"q{i}", "answer": f"a{i}"})
    entries = client.get("/knowledge", params={"limit": 1, "offset": 1}).json()
    assert [e["question"] for e in entries] == ["q1"]


def test_delete_entry(client):
    entry_id = client.post("/train", json={"question": "q", "answer": "a"}).json()["id"]
    resp = client.delete(f"/knowledge/{entry_id}")
    assert resp.status_code == 204
    assert client.get("/knowledge").json() == []

    resp = client.delete(f"/knowledge/{entry_id}")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Knowledge entry not found"
