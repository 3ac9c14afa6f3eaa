"""Queries over knowledge bases: references, scoping, conversations"""

import fitz  # PyMuPDF
import pytest

from conftest import FakeLLM, create_kb, ingest_text, run_job, upload

ON_PREMISE = (
    "Running AI on-premise gives organisations full control over their data. "
    "The benefits of running AI on-premise include data privacy, predictable costs, "
    "low latency for internal users and compliance with strict regulations. "
)
FILLER = "Unrelated appendix text about office furniture, parking rules and cafeteria menus. "


def _make_pdf() -> bytes:
    doc = fitz.open()
    for body in (ON_PREMISE * 8, FILLER * 20, ON_PREMISE * 5):
        page = doc.new_page()
        page.insert_textbox(fitz.Rect(50, 50, 550, 800), body, fontsize=8)
    data = doc.tobytes()
    doc.close()
    return data


def test_end_to_end_pdf_query_references_ingested_file(app_client):
    kb = create_kb(app_client, name="whitepapers", chunk_size=400, chunk_overlap=200)
    uploaded = upload(app_client, kb["id"], "on-premise.pdf", _make_pdf(), "application/pdf")
    job = run_job(app_client, kb["id"], [{"fileName": "on-premise.pdf", "connector": "local"}])
    assert job["status"] == "completed", job
    assert job["files"][0]["chunks"] >= 1

    response = app_client.post("/ask/query", params={
        "q": "What are the benefits of running AI on-premise?",
        "kb": kb["id"],
        "withReference": "true",
        "threshold": 0.05,
    })

    assert response.status_code == 200
    body = response.json()
    assert body["queryId"]
    assert body["conversationId"]
    assert "triggeredGuardRails" not in body
    assert len(body["response"]) >= 1
    for fragment in body["response"]:
        assert fragment["answer"]
        reference = fragment["reference"]
        assert reference["fileId"] == uploaded["fileId"]
        assert reference["knowledgeBaseId"] == kb["id"]
        assert reference["fileName"] == "on-premise.pdf"
        assert reference["chunkId"].startswith(uploaded["fileId"])
        assert reference["score"] >= 0.05


def test_references_omitted_without_flag(app_client):
    kb = create_kb(app_client)
    ingest_text(app_client, kb["id"], "a.txt", "solar panels convert sunlight into electricity")

    body = app_client.post("/ask/query", params={
        "q": "solar panels convert sunlight into electricity", "kb": kb["id"],
    }).json()

    assert len(body["response"]) == 1
    assert "reference" not in body["response"][0]


def test_threshold_excludes_weak_matches(app_client):
    kb = create_kb(app_client)
    ingest_text(app_client, kb["id"], "a.txt", "solar panels convert sunlight into electricity")

    body = app_client.post("/ask/query", params={
        "q": "recipes for chocolate cake", "kb": kb["id"], "threshold": 0.8,
    }).json()

    assert body["response"] == []


def test_hybrid_search_finds_keyword_matches(app_client):
    kb = create_kb(app_client)
    ingest_text(app_client, kb["id"], "a.txt", "the warranty covers turbine blades for ten years")
    ingest_text(app_client, kb["id"], "b.txt", "office hours are nine to five on weekdays")
    ingest_text(app_client, kb["id"], "c.txt", "parking is free for visitors after six")

    dense = app_client.post("/ask/query", params={
        "q": "turbine warranty period", "kb": kb["id"], "threshold": 0.9,
    }).json()
    hybrid = app_client.post("/ask/query", params={
        "q": "turbine warranty period", "kb": kb["id"], "threshold": 0.9,
        "hybridSearch": "true", "withReference": "true",
    }).json()

    assert dense["response"] == []
    assert [f["reference"]["fileName"] for f in hybrid["response"]] == ["a.txt"]


def test_file_filter_restricts_answers(app_client):
    kb = create_kb(app_client)
    text = "shared sentence about quarterly planning"
    ingest_text(app_client, kb["id"], "a.txt", text)
    ingest_text(app_client, kb["id"], "b.txt", text)
    files = {f["fileName"]: f["id"] for f in app_client.get(f"/knowledge-base/{kb['id']}/files").json()}

    body = app_client.post("/ask/query", params={
        "q": text, "kb": kb["id"], "withReference": "true", "fileIds": [files["b.txt"]],
    }).json()

    assert [f["reference"]["fileId"] for f in body["response"]] == [files["b.txt"]]


@pytest.mark.parametrize("q", ["hi", "x" * 2001])
def test_query_length_is_validated(app_client, q):
    response = app_client.post("/ask/query", params={"q": q})

    assert response.status_code == 400
    assert response.json()["errorCode"] == "VALIDATION_ERROR"


def test_unknown_scope_and_conversation_are_not_found(app_client):
    assert app_client.post("/ask/query", params={"q": "hello there", "kb": "nope"}).status_code == 404
    assert app_client.post("/ask/query", params={
        "q": "hello there", "conversationId": "nope",
    }).status_code == 404
    assert app_client.get("/ask/conversations/nope").status_code == 404


def test_conversation_threads_turns(app_client):
    kb = create_kb(app_client)
    ingest_text(app_client, kb["id"], "a.txt", "the launch date is the third of march")

    first = app_client.post("/ask/query", params={
        "q": "the launch date is the third of march", "kb": kb["id"],
    }).json()
    second = app_client.post("/ask/query", params={
        "q": "when is the launch date", "kb": kb["id"], "threshold": 0.3,
        "conversationId": first["conversationId"],
    }).json()

    assert second["conversationId"] == first["conversationId"]
    assert second["queryId"] != first["queryId"]
    history = app_client.get(f"/ask/conversations/{first['conversationId']}").json()
    user_turns = [m for m in history["messages"] if m["sender"] == "user"]
    assert [m["content"] for m in user_turns] == [
        "the launch date is the third of march", "when is the launch date",
    ]
    assert [m["queryId"] for m in user_turns] == [first["queryId"], second["queryId"]]


def test_conversation_history_is_replayed_to_the_llm(app_client):
    from main import app
    from services.factory import get_llm_service

    llm = FakeLLM([
        {"role": "assistant", "content": "It launches on March 3rd."},
        {"role": "assistant", "content": "Still March 3rd."},
    ])
    app.dependency_overrides[get_llm_service] = lambda: llm
    kb = create_kb(app_client)
    ingest_text(app_client, kb["id"], "a.txt", "the launch date is the third of march")

    first = app_client.post("/ask/query", params={
        "q": "what is the launch date", "kb": kb["id"], "threshold": 0.1, "withReference": "true",
    }).json()
    second = app_client.post("/ask/query", params={
        "q": "are you sure about the launch date", "kb": kb["id"], "threshold": 0.1,
        "conversationId": first["conversationId"],
    }).json()

    assert first["response"][0]["answer"] == "It launches on March 3rd."
    assert first["response"][0]["reference"]["fileName"] == "a.txt"
    assert second["response"][0]["answer"] == "Still March 3rd."
    replayed = llm.calls[1]["messages"]
    assert {"role": "user", "content": "what is the launch date"} in replayed
    assert {"role": "assistant", "content": "It launches on March 3rd."} in replayed
    assert "the launch date is the third of march" in replayed[-1]["content"]
