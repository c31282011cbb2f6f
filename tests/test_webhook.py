from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx

from harvest_timer.config import WebhookConfig
from harvest_timer.webhook import Delivered, Exhausted, WebhookClient, build_envelope

CONFIG = WebhookConfig(
    base_url="https://hooks.test/webhook",
    environment="staging",
    api_key="secret-key",
    timeout_seconds=1.0,
    retry_attempts=2,
    retry_delay_seconds=0.5,
)

CARD = {
    "id": "c1",
    "name": "Website Redesign",
    "desc": "Refresh the marketing site",
    "idBoard": "b1",
    "idList": "l1",
    "labels": [{"name": "Acme"}],
    "url": "https://trello.com/c/abc/12-website-redesign",
    "shortUrl": "https://trello.com/c/abc",
    "badges": {"comments": 0},
    "checklists": [{"id": "cl1", "name": "Pages", "checkItems": [{"name": "Home"}]}],
}
MEMBER = {"id": "t1", "fullName": "Ada Lovelace", "username": "ada", "avatarUrl": None, "initials": "AL"}
BOARD = {"id": "b1", "name": "Client Work"}
LIST = {"id": "l1", "name": "In Progress"}


class Sequence:
    def __init__(self, *steps: object):
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step)


class FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(seq: Sequence, sleep: FakeSleep) -> WebhookClient:
    return WebhookClient(CONFIG, transport=httpx.MockTransport(seq), sleep=sleep)


def test_webhook_urls_include_environment():
    assert CONFIG.start_timer_url == "https://hooks.test/webhook/staging/start-timer"
    assert CONFIG.stop_timer_url == "https://hooks.test/webhook/staging/stop-timer"
    assert CONFIG.create_child_cards_url == "https://hooks.test/webhook/staging/create-child-cards"


def test_first_attempt_success():
    seq, sleep = Sequence(200), FakeSleep()

    result = asyncio.run(_client(seq, sleep).post(CONFIG.start_timer_url, {"a": 1}))

    assert result == Delivered(status_code=200, attempts=1)
    assert sleep.delays == []
    request = seq.requests[0]
    assert request.method == "POST"
    assert request.headers["X-API-Key"] == "secret-key"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"a": 1}


def test_any_2xx_is_success():
    seq, sleep = Sequence(204), FakeSleep()

    result = asyncio.run(_client(seq, sleep).post(CONFIG.stop_timer_url, {}))

    assert isinstance(result, Delivered)
    assert result.status_code == 204


def test_retries_then_succeeds():
    seq, sleep = Sequence(500, httpx.ReadTimeout("slow"), 200), FakeSleep()

    result = asyncio.run(_client(seq, sleep).post(CONFIG.start_timer_url, {}))

    assert result == Delivered(status_code=200, attempts=3)
    assert sleep.delays == [0.5, 0.5]


def test_exhausts_after_configured_attempts():
    seq, sleep = Sequence(502, 503, 504), FakeSleep()

    result = asyncio.run(_client(seq, sleep).post(CONFIG.start_timer_url, {}))

    assert isinstance(result, Exhausted)
    assert result.attempts == 3
    assert result.status_code == 504
    assert "504" in result.last_error
    assert len(seq.requests) == 3
    assert sleep.delays == [0.5, 0.5]


def test_transport_errors_exhaust_without_raising():
    seq = Sequence(httpx.ConnectError("refused"), httpx.ConnectError("refused"), httpx.ReadTimeout("slow"))
    sleep = FakeSleep()

    result = asyncio.run(_client(seq, sleep).post(CONFIG.start_timer_url, {}))

    assert isinstance(result, Exhausted)
    assert result.status_code is None
    assert "timed out" in result.last_error


@asynccontextmanager
async def _slow_hook(pause: float = 0.2):
    """Local webhook that accepts the POST and then trickles its response body."""
    body = b'{"status": "accepted", "detail": "queued for processing"}'

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            length = 0
            for line in head.decode("latin-1").split("\r\n"):
                if line.lower().startswith("content-length:"):
                    length = int(line.split(":", 1)[1])
            await reader.readexactly(length)
            writer.write(f"HTTP/1.1 200 OK\r\nContent-Length: {len(body)}\r\n\r\n".encode())
            for start in range(0, len(body), 4):
                writer.write(body[start : start + 4])
                await writer.drain()
                await asyncio.sleep(pause)
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield f"http://127.0.0.1:{port}/hook"
    finally:
        server.close()


def test_slow_response_counts_as_timed_out_attempt():
    config = WebhookConfig(api_key="k", timeout_seconds=0.5, retry_attempts=1, retry_delay_seconds=0.0)
    sleep = FakeSleep()

    async def run():
        async with _slow_hook() as url:
            client = WebhookClient(config, transport=httpx.AsyncHTTPTransport(), sleep=sleep)
            started = time.monotonic()
            result = await client.post(url, {"card": {"id": "c1"}})
            return result, time.monotonic() - started

    result, elapsed = asyncio.run(run())

    assert isinstance(result, Exhausted)
    assert result.attempts == 2
    assert "timed out" in result.last_error
    assert elapsed < 2.5


def test_zero_retries_means_single_attempt():
    config = WebhookConfig(api_key="k", retry_attempts=0, retry_delay_seconds=0.0)
    seq, sleep = Sequence(500), FakeSleep()
    client = WebhookClient(config, transport=httpx.MockTransport(seq), sleep=sleep)

    result = asyncio.run(client.post(config.start_timer_url, {}))

    assert isinstance(result, Exhausted)
    assert result.attempts == 1
    assert sleep.delays == []


def test_envelope_for_start_timer():
    now = datetime(2025, 10, 27, 16, 18, 15, 97000, tzinfo=timezone.utc)

    payload = build_envelope(CARD, MEMBER, BOARD, LIST, category="Design", now=now)

    assert payload["card"]["id"] == "c1"
    assert payload["card"]["members"] == []
    assert payload["card"]["dueComplete"] is False
    assert payload["card"]["customFieldItems"] == []
    assert "checklists" not in payload["card"]
    assert payload["user"] == MEMBER
    assert payload["category"] == "Design"
    assert "project" not in payload
    assert "checklists" not in payload
    assert payload["timestamp"] == "2025-10-27T16:18:15.097Z"
    assert payload["boardName"] == "Client Work"
    assert payload["listName"] == "In Progress"


def test_envelope_for_checklists():
    payload = build_envelope(CARD, MEMBER, BOARD, LIST, checklists=CARD["checklists"])

    assert payload["checklists"] == [{"id": "cl1", "name": "Pages", "checkItems": [{"name": "Home"}]}]
    assert "category" not in payload
    assert payload["timestamp"].endswith("Z")
