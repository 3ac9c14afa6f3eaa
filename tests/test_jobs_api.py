"""Two-phase ingestion jobs"""

from conftest import create_kb, ingest_text, run_job, upload, wait_for_job

TEXT = " ".join(f"token{i}" for i in range(25))


def test_job_lifecycle_indexes_uploaded_file(app_client, vector_store):
    kb = create_kb(app_client, chunk_size=10, chunk_overlap=5)
    uploaded = upload(app_client, kb["id"], "notes.txt", TEXT.encode(), "text/plain")

    job = app_client.post(f"/knowledge-base/{kb['id']}/jobs").json()
    assert job["status"] == "created"
    assert job["files"] == []

    populated = app_client.put(
        f"/knowledge-base/{kb['id']}/jobs/{job['id']}",
        json=[{"fileName": "notes.txt", "lastModified": "2024-05-01T10:00:00Z", "connector": "local"}],
    ).json()
    assert populated["status"] == "populated"
    assert [f["fileName"] for f in populated["files"]] == ["notes.txt"]

    triggered = app_client.post(f"/knowledge-base/{kb['id']}/jobs/{job['id']}/trigger")
    assert triggered.status_code == 202
    assert triggered.json()["dateTriggered"] is not None

    finished = wait_for_job(app_client, kb["id"], job["id"])
    assert finished["status"] == "completed"
    assert finished["dateFinished"] is not None
    file_result = finished["files"][0]
    assert file_result["status"] == "indexed"
    assert file_result["fileId"] == uploaded["fileId"]
    # 25 tokens, windows of 10 stepping by 5: [0,10) [5,15) [10,20) [15,25)
    assert file_result["chunks"] == 4

    files = app_client.get(f"/knowledge-base/{kb['id']}/files").json()
    assert files[0]["status"] == "indexed"
    assert files[0]["chunkCount"] == 4
    assert files[0]["lastModified"] == "2024-05-01T10:00:00Z"


def test_partial_failure_is_recorded_per_file(app_client):
    kb = create_kb(app_client)
    upload(app_client, kb["id"], "good.txt", b"some useful words", "text/plain")
    upload(app_client, kb["id"], "blank.txt", b"   \n  ", "text/plain")

    job = run_job(app_client, kb["id"], [
        {"fileName": "good.txt"},
        {"fileName": "missing.txt"},
        {"fileName": "blank.txt"},
        {"fileName": "good.txt", "connector": "s3"},
    ])

    # The last descriptor for a name wins
    by_name = {f["fileName"]: f for f in job["files"]}
    assert set(by_name) == {"good.txt", "missing.txt", "blank.txt"}
    assert by_name["good.txt"]["errorCode"] == "UNSUPPORTED_CONNECTOR"
    assert by_name["missing.txt"]["errorCode"] == "FILE_NOT_UPLOADED"
    assert by_name["blank.txt"]["errorCode"] == "NO_TEXT_FOUND"
    assert job["status"] == "failed"


def test_job_completes_when_some_files_fail(app_client):
    kb = create_kb(app_client)
    upload(app_client, kb["id"], "good.txt", b"some useful words", "text/plain")

    job = run_job(app_client, kb["id"], [{"fileName": "good.txt"}, {"fileName": "missing.txt"}])

    assert job["status"] == "completed"
    statuses = {f["fileName"]: f["status"] for f in job["files"]}
    assert statuses == {"good.txt": "indexed", "missing.txt": "failed"}


def test_reingestion_replaces_previous_chunks(app_client, vector_store):
    import asyncio

    kb = create_kb(app_client, chunk_size=10, chunk_overlap=5)
    ingest_text(app_client, kb["id"], "notes.txt", TEXT)
    job = ingest_text(app_client, kb["id"], "notes.txt", "just three words")

    assert job["files"][0]["chunks"] == 1
    assert asyncio.run(vector_store.count(kb["id"])) == 1


def test_trigger_requires_populated_job(app_client):
    kb = create_kb(app_client)
    job = app_client.post(f"/knowledge-base/{kb['id']}/jobs").json()

    response = app_client.post(f"/knowledge-base/{kb['id']}/jobs/{job['id']}/trigger")

    assert response.status_code == 409
    assert response.json()["errorCode"] == "INVALID_STATE"


def test_populate_rejects_empty_list(app_client):
    kb = create_kb(app_client)
    job = app_client.post(f"/knowledge-base/{kb['id']}/jobs").json()

    response = app_client.put(f"/knowledge-base/{kb['id']}/jobs/{job['id']}", json=[])

    assert response.status_code == 400


def test_finished_job_cannot_be_repopulated_or_cancelled(app_client):
    kb = create_kb(app_client)
    job = ingest_text(app_client, kb["id"], "a.txt", "alpha beta gamma")

    repopulate = app_client.put(f"/knowledge-base/{kb['id']}/jobs/{job['id']}",
                                json=[{"fileName": "a.txt"}])
    cancel = app_client.post(f"/knowledge-base/{kb['id']}/jobs/{job['id']}/cancel")

    assert repopulate.status_code == 409
    assert cancel.status_code == 409


def test_cancel_before_trigger(app_client):
    kb = create_kb(app_client)
    job = app_client.post(f"/knowledge-base/{kb['id']}/jobs").json()

    cancelled = app_client.post(f"/knowledge-base/{kb['id']}/jobs/{job['id']}/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    trigger = app_client.post(f"/knowledge-base/{kb['id']}/jobs/{job['id']}/trigger")
    assert trigger.status_code == 409


def test_job_of_another_knowledge_base_is_not_found(app_client):
    kb_one = create_kb(app_client)
    kb_two = create_kb(app_client)
    job = app_client.post(f"/knowledge-base/{kb_one['id']}/jobs").json()

    assert app_client.get(f"/knowledge-base/{kb_two['id']}/jobs/{job['id']}").status_code == 404
    assert app_client.post("/knowledge-base/missing/jobs").status_code == 404
