import asyncio
import io

import httpx
import pytest
from PIL import Image

from jinx.core.queue import Queue
from jinx.core.stable_diffusion import (
    StableDiffusionClient,
    StableDiffusionError,
    Txt2ImgResult,
)
from jinx.web import app
from jinx.web.workers import JOBS
from jinx.web.workers import dream as dream_worker


def png_bytes() -> bytes:
    bio = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 40, 40)).save(bio, format="PNG")
    return bio.getvalue()


class FakeWorker:
    """Stands in for the web UI; each call waits until the test resolves it."""

    def __init__(self) -> None:
        self.calls: list[tuple[dict, asyncio.Future]] = []

    async def txt2img(self, payload: dict) -> Txt2ImgResult:
        fut = asyncio.get_running_loop().create_future()
        self.calls.append((payload, fut))
        return await fut

    def resolve(self, index: int, result: Txt2ImgResult) -> None:
        self.calls[index][1].set_result(result)

    def fail(self, index: int, exc: Exception) -> None:
        self.calls[index][1].set_exception(exc)

    def resolve_rest(self) -> None:
        for _, fut in self.calls:
            if not fut.done():
                fut.set_result(Txt2ImgResult())


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def exports(tmp_path, monkeypatch):
    monkeypatch.setattr("jinx.web.utils.files.EXPORT_FOLDER", tmp_path)
    return tmp_path


@pytest.fixture
def queue(monkeypatch):
    fresh = Queue()
    monkeypatch.setattr(dream_worker, "GEN_QUEUE", fresh)
    JOBS.clear()
    yield fresh
    JOBS.clear()


@pytest.fixture
def worker(monkeypatch):
    fake = FakeWorker()
    monkeypatch.setattr(dream_worker, "client", fake)
    return fake


@pytest.fixture
async def client(exports, queue, worker):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    worker.resolve_rest()
    await drain(queue)


async def drain(queue: Queue) -> None:
    await queue.join()
    await asyncio.gather(*list(dream_worker._deliveries))


async def dream(client: httpx.AsyncClient, text: str) -> dict:
    resp = await client.post("/api/dream/", data={"text": text})
    assert resp.status_code == 200, resp.text
    return resp.json()


async def test_dream_is_generated_and_saved(client, queue, worker, exports):
    body = await dream(client, "a red fox -q 4 -w 640")
    await settle()

    assert body["status"] == "processing"
    assert body["position"] == 1
    assert body["message"] == "Generating image..."
    payload, _ = worker.calls[0]
    assert payload["prompt"] == "a red fox"
    assert payload["steps"] == 50
    assert payload["width"] == 640

    worker.resolve(0, Txt2ImgResult(images=[png_bytes()]))
    await drain(queue)

    status = (await client.get(f"/api/dream/status/{body['job_id']}")).json()
    assert status["status"] == "done"
    assert status["position"] == 0
    assert (exports / "dream1.png").is_file()

    resp = await client.get(f"/api/dream/result/{body['job_id']}")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    with Image.open(io.BytesIO(resp.content)) as image:
        assert image.size == (8, 8)


async def test_invalid_flags_are_rejected(client, worker):
    resp = await client.post("/api/dream/", data={"text": "a fox -q 9 -x"})

    assert resp.status_code == 400
    assert resp.json()["detail"] == [
        "Quality flag must be between 1 and 5.",
        "Unknown flag: x",
    ]
    assert worker.calls == []
    assert JOBS == {}


async def test_positions_and_cancel(client, queue, worker):
    first = await dream(client, "one")
    second = await dream(client, "two")
    third = await dream(client, "three")
    await settle()

    assert [first["position"], second["position"], third["position"]] == [1, 2, 3]
    assert third["message"] == "You are currently in position 3 in the queue."
    listed = (await client.get("/api/dream/queue")).json()["jobs"]
    assert [job["job_id"] for job in listed] == [first["job_id"], second["job_id"], third["job_id"]]

    resp = await client.post(f"/api/dream/cancel/{second['job_id']}")
    assert resp.json() == {"job_id": second["job_id"], "canceled": True, "status": "canceled"}

    third_status = (await client.get(f"/api/dream/status/{third['job_id']}")).json()
    assert third_status["position"] == 2
    assert third_status["message"] == "You are currently in position 2 in the queue."

    running = await client.post(f"/api/dream/cancel/{first['job_id']}")
    assert running.json()["canceled"] is False

    worker.resolve(0, Txt2ImgResult(images=[png_bytes()]))
    await settle()
    third_status = (await client.get(f"/api/dream/status/{third['job_id']}")).json()
    assert third_status["position"] == 1
    assert third_status["status"] == "processing"


async def test_canceled_dream_result_is_discarded(client, queue, worker, exports):
    await dream(client, "one")
    second = await dream(client, "two")
    await settle()

    await client.post(f"/api/dream/cancel/{second['job_id']}")
    worker.resolve(1, Txt2ImgResult(images=[png_bytes()]))
    worker.resolve(0, Txt2ImgResult(images=[png_bytes()]))
    await drain(queue)

    status = (await client.get(f"/api/dream/status/{second['job_id']}")).json()
    assert status["status"] == "canceled"
    assert sorted(p.name for p in exports.iterdir()) == ["dream1.png"]
    resp = await client.get(f"/api/dream/result/{second['job_id']}")
    assert resp.status_code == 409


async def test_worker_failure_is_recorded(client, queue, worker):
    failing = await dream(client, "one")
    following = await dream(client, "two")
    await settle()

    worker.fail(0, StableDiffusionError("txt2img request failed: connection refused"))
    worker.resolve(1, Txt2ImgResult(images=[png_bytes()]))
    await drain(queue)

    status = (await client.get(f"/api/dream/status/{failing['job_id']}")).json()
    assert status["status"] == "error"
    assert "connection refused" in status["error"]
    following_status = (await client.get(f"/api/dream/status/{following['job_id']}")).json()
    assert following_status["status"] == "done"


async def test_malformed_worker_url_is_recorded(client, queue, monkeypatch):
    monkeypatch.setattr(dream_worker, "client", StableDiffusionClient("http://[::1:7861"))

    body = await dream(client, "a fox")
    await drain(queue)

    status = (await client.get(f"/api/dream/status/{body['job_id']}")).json()
    assert status["status"] == "error"
    assert status["error"].startswith("txt2img request failed")
    assert status["message"] == "Error generating image."


async def test_empty_image_list_is_an_error(client, queue, worker):
    body = await dream(client, "one")
    await settle()

    worker.resolve(0, Txt2ImgResult(images=[]))
    await drain(queue)

    status = (await client.get(f"/api/dream/status/{body['job_id']}")).json()
    assert status["status"] == "error"
    assert status["error"] == "The API server may be down."


async def test_unknown_job(client):
    assert (await client.get("/api/dream/status/missing")).status_code == 404
    assert (await client.get("/api/dream/result/missing")).status_code == 404
    assert (await client.post("/api/dream/cancel/missing")).status_code == 404


async def test_result_not_ready(client):
    body = await dream(client, "one")

    resp = await client.get(f"/api/dream/result/{body['job_id']}")

    assert resp.status_code == 409


async def test_index_lists_queue_and_exports(client, worker, exports):
    (exports / "dream7.png").write_bytes(png_bytes())
    await dream(client, "a castle in the clouds")
    waiting = await dream(client, "a ship in a bottle")
    await settle()

    resp = await client.get("/")

    assert resp.status_code == 200
    assert "a castle in the clouds" in resp.text
    assert "a ship in a bottle" in resp.text
    assert "/api/exports/dream7.png" in resp.text
    assert f'data-job-id="{waiting["job_id"]}"' in resp.text
    assert 'action="/api/dream/cancel' not in resp.text


async def test_exports_list_serve_and_delete(client, exports):
    (exports / "dream1.png").write_bytes(png_bytes())

    listing = (await client.get("/api/exports/list")).json()
    assert listing == {"exports": ["dream1.png"]}

    served = await client.get("/api/exports/dream1.png")
    assert served.status_code == 200
    assert (await client.get("/api/exports/nope.png")).status_code == 404

    resp = await client.post("/api/exports/delete", data={"filename": "../dream1.png"})
    assert resp.status_code == 303
    assert not (exports / "dream1.png").exists()


def test_describe_position():
    assert dream_worker.describe_position(0) == "Done."
    assert dream_worker.describe_position(1) == "Generating image..."
    assert dream_worker.describe_position(4) == "You are currently in position 4 in the queue."
