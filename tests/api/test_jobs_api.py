"""Tests for the job, batch, result and library endpoints."""
import pytest

from bitlab.jobs.models import JobStatus

LUA_STRATEGY = 'function run()\n  apply_operation("XOR", {start=0, stop=8})\n  apply_operation("NOT")\nend\n'


@pytest.fixture
async def seeded(client):
    """Upload a data file, strategy, scoring and policy; return their ids."""
    file_resp = await client.post("/api/library/files", json={"name": "alpha.bin", "bits": "0" * 64})
    strat_resp = await client.post("/api/library/strategies", json={"name": "s.lua", "source": LUA_STRATEGY})
    await client.post("/api/library/scoring", json={"name": "scoring.lua", "source": "costs = { XOR = 2 }"})
    await client.post("/api/library/policies", json={"name": "policy.lua", "source": "max_operations = 10"})
    return {"file_id": file_resp.json()["data"]["id"], "strategy_id": strat_resp.json()["data"]["id"]}


async def _create_job(client, seeded, name="api job", **extra):
    body = {
        "name": name,
        "data_file_id": seeded["file_id"],
        "presets": [{"strategy_id": seeded["strategy_id"]}],
        **extra,
    }
    return await client.post("/api/jobs", json=body)


@pytest.mark.asyncio
async def test_library_uploads(client, seeded):
    files = (await client.get("/api/library/files")).json()["data"]
    assert files["files"][0]["size"] == 64
    assert files["active_id"] == seeded["file_id"]

    strategies = (await client.get("/api/library/strategies")).json()["data"]
    assert strategies[0]["language"] == "lua"

    bad = await client.post("/api/library/files", json={"name": "bad", "bits": "012"})
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_invalid_strategy_rejected(client):
    resp = await client.post("/api/library/strategies", json={"name": "s.py", "source": "def (:"})
    assert resp.status_code == 422
    assert "Syntax error" in resp.json()["error"]


@pytest.mark.asyncio
async def test_catalog_endpoints(client):
    catalog = (await client.get("/api/library/catalog")).json()["data"]
    assert "XOR" in catalog["enabled_operations"]

    resp = await client.put("/api/library/catalog/operations", json={"ids": ["XOR", "NOT"]})
    assert resp.json()["data"] == ["XOR", "NOT"]

    resp = await client.put("/api/library/catalog/metrics", json={"ids": ["nope"]})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_job_validation_error(client, seeded):
    resp = await client.post("/api/jobs", json={
        "name": "x", "data_file_id": "missing", "presets": [{"strategy_id": seeded["strategy_id"]}],
    })
    assert resp.status_code == 422
    body = resp.json()
    assert body["ok"] is False
    assert "Data file not found" in body["meta"]["warnings"]


@pytest.mark.asyncio
async def test_job_lifecycle(client, services, seeded):
    created = await _create_job(client, seeded)
    assert created.status_code == 200
    job_id = created.json()["data"]["id"]
    assert created.json()["data"]["queue_position"] == 1

    queue = (await client.get("/api/jobs/queue")).json()["data"]
    assert [j["id"] for j in queue] == [job_id]

    started = await client.post(f"/api/jobs/{job_id}/start")
    assert started.status_code == 200
    await services.scheduler.wait_for_job(job_id)

    detail = (await client.get(f"/api/jobs/{job_id}")).json()["data"]
    assert detail["status"] == JobStatus.completed.value
    assert detail["progress"] == 100.0
    assert len(detail["results"]) == 1

    counts = (await client.get("/api/jobs/counts")).json()["data"]
    assert counts["completed"] == 1

    stats = (await client.get("/api/jobs/stats")).json()["data"]
    assert stats["completed"] == 1
    assert stats["stalled"] == 0
    assert stats["avg_duration_s"] >= 0

    listed = (await client.get("/api/jobs", params={"status": "completed"})).json()["data"]
    assert [j["id"] for j in listed] == [job_id]
    assert "results" not in listed[0]

    replay = await client.post(f"/api/jobs/{job_id}/replay")
    assert replay.json()["data"]["status"] == "pending"

    deleted = await client.delete(f"/api/jobs/{job_id}")
    assert deleted.json()["data"]["deleted"] is True
    assert (await client.get(f"/api/jobs/{job_id}")).status_code == 404


@pytest.mark.asyncio
async def test_replay_unfinished_job_conflicts(client, seeded):
    job_id = (await _create_job(client, seeded)).json()["data"]["id"]
    resp = await client.post(f"/api/jobs/{job_id}/replay")
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_cancel_pending_job(client, seeded):
    job_id = (await _create_job(client, seeded)).json()["data"]["id"]
    resp = await client.post(f"/api/jobs/{job_id}/cancel")
    assert resp.json()["data"]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_results_endpoints(client, services, seeded):
    job_id = (await _create_job(client, seeded)).json()["data"]["id"]
    await client.post(f"/api/jobs/{job_id}/start")
    await services.scheduler.wait_for_job(job_id)

    results = (await client.get("/api/results")).json()["data"]
    assert len(results) == 1
    assert "steps" not in results[0]
    result_id = results[0]["id"]

    detail = (await client.get(f"/api/results/{result_id}")).json()["data"]
    assert [s["operation"] for s in detail["steps"]] == ["XOR", "NOT"]

    csv_resp = await client.get(f"/api/results/{result_id}/csv")
    assert csv_resp.status_code == 200
    assert csv_resp.headers["content-type"].startswith("text/csv")
    assert "# Summary" in csv_resp.text

    stats = (await client.get("/api/results/statistics")).json()["data"]
    assert stats["successful"] == 1

    replay = (await client.post(f"/api/results/{result_id}/replay")).json()["data"]
    assert replay["matches"] is True

    assert (await client.delete(f"/api/results/{result_id}")).status_code == 200
    assert (await client.get(f"/api/results/{result_id}")).status_code == 404


@pytest.mark.asyncio
async def test_batch_endpoints(client, services, seeded):
    second = await client.post("/api/library/files", json={"name": "beta.bin", "bits": "1" * 32})
    body = {
        "name": "Sweep",
        "data_file_ids": [seeded["file_id"], second.json()["data"]["id"]],
        "presets": [{"strategy_id": seeded["strategy_id"]}],
    }
    created = (await client.post("/api/batches", json=body)).json()["data"]
    assert len(created["job_ids"]) == 2
    assert created["status"] == "pending"

    await client.post(f"/api/batches/{created['id']}/start")
    await services.batches.wait_for_batch(created["id"])

    detail = (await client.get(f"/api/batches/{created['id']}")).json()["data"]
    assert detail["status"] == "completed"
    assert (await client.get("/api/batches/missing")).status_code == 404
