"""Unit tests for data source clients and the concurrent fetcher."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from strata_core.config import EvaluationConfig, RetryConfig
from strata_core.errors import DataSourceError
from strata_core.evaluator import DataSourceFetcher, DataSourceStatus, HttpDataSourceClient, ServiceDispatcher
from strata_core.schemas import DataSource, DataSourceKind, HttpRequest

FAST_RETRY = RetryConfig(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0, jitter_seconds=0)

Handler = Callable[[httpx.Request], httpx.Response]


def _http_source(**request: Any) -> DataSource:
    return DataSource(
        id="stats",
        kind=DataSourceKind.HTTP,
        request=HttpRequest(url="https://api.example.test/stats", **request),
    )


def _fetch(handler: Handler, source: DataSource | None = None) -> Any:
    async def run() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpDataSourceClient(client, retry=FAST_RETRY).fetch(source or _http_source())

    return asyncio.run(run())


class _SlowClient:
    """http client that sleeps before answering."""

    def __init__(self, delay: float, payload: Any = None) -> None:
        self.delay = delay
        self.payload = payload
        self.in_flight = 0
        self.peak = 0

    async def fetch(self, source: DataSource) -> Any:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self.payload


class TestHttpDataSourceClient:
    def test_success(self) -> None:
        assert _fetch(lambda request: httpx.Response(200, json={"data": {"count": 7}})) == {"data": {"count": 7}}

    def test_request_descriptor_is_sent(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        source = _http_source(method="POST", headers={"X-Tenant": "acme"}, params={"page": 2}, body={"q": "x"})
        _fetch(handler, source)

        (request,) = seen
        assert request.method == "POST"
        assert request.headers["X-Tenant"] == "acme"
        assert request.url.params["page"] == "2"
        assert json.loads(request.content) == {"q": "x"}

    def test_server_errors_are_retried(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"ok": True})

        assert _fetch(handler) == {"ok": True}
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(502)

        with pytest.raises(DataSourceError, match="returned HTTP 502"):
            _fetch(handler)
        assert len(calls) == 3

    def test_client_errors_fail_at_once(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(404)

        with pytest.raises(DataSourceError, match="returned HTTP 404") as exc:
            _fetch(handler)
        assert exc.value.source_id == "stats"
        assert len(calls) == 1

    def test_transport_errors_are_retried(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DataSourceError, match="request failed"):
            _fetch(handler)
        assert len(calls) == 3

    def test_non_json_body(self) -> None:
        with pytest.raises(DataSourceError, match="did not return JSON"):
            _fetch(lambda request: httpx.Response(200, text="<html>"))


class TestServiceDispatcher:
    def _source(self, handler: str) -> DataSource:
        return DataSource(id="members", kind=DataSourceKind.SERVICE, handler=handler, config={"table": "members"})

    def test_sync_handler(self) -> None:
        dispatcher = ServiceDispatcher()

        @dispatcher.handler("members.count")
        def count(config: Any) -> dict[str, Any]:
            return {"table": config["table"], "count": 42}

        assert asyncio.run(dispatcher.dispatch(self._source("members.count"))) == {"table": "members", "count": 42}

    def test_async_handler(self) -> None:
        async def count(config: Any) -> int:
            await asyncio.sleep(0)
            return 7

        dispatcher = ServiceDispatcher({"members.count": count})
        assert asyncio.run(dispatcher.dispatch(self._source("members.count"))) == 7
        assert dispatcher.names == ["members.count"]

    def test_missing_handler(self) -> None:
        with pytest.raises(DataSourceError, match="No service handler registered for 'supabase'"):
            asyncio.run(ServiceDispatcher().dispatch(self._source("supabase")))


class TestDataSourceFetcher:
    def test_static_source(self) -> None:
        source = DataSource(id="profile", kind=DataSourceKind.STATIC, value={"name": "Acme"})
        result = asyncio.run(DataSourceFetcher().fetch(source))
        assert result.ok
        assert result.value == {"name": "Acme"}

    def test_http_without_client(self) -> None:
        result = asyncio.run(DataSourceFetcher().fetch(_http_source()))
        assert result.status is DataSourceStatus.FAILED
        assert result.error == "No http client configured"

    def test_service_without_dispatcher(self) -> None:
        source = DataSource(id="members", kind=DataSourceKind.SERVICE, handler="x")
        result = asyncio.run(DataSourceFetcher().fetch(source))
        assert result.error == "No service dispatcher configured"

    def test_timeout_is_isolated(self) -> None:
        fetcher = DataSourceFetcher(_SlowClient(delay=1.0), config=EvaluationConfig(default_timeout_seconds=0.05))
        sources = [_http_source(), DataSource(id="profile", kind=DataSourceKind.STATIC, value=1)]

        results = asyncio.run(fetcher.fetch_all(sources))

        assert results["stats"].status is DataSourceStatus.TIMEOUT
        assert results["stats"].error == "timed out after 0.05s"
        assert results["profile"].ok

    def test_source_timeout_overrides_default(self) -> None:
        source = _http_source().model_copy(update={"timeout_seconds": 0.05})
        result = asyncio.run(DataSourceFetcher(_SlowClient(delay=1.0)).fetch(source))
        assert result.status is DataSourceStatus.TIMEOUT

    def test_handler_exception_is_isolated(self) -> None:
        def broken(config: Any) -> Any:
            raise RuntimeError("handler bug")

        fetcher = DataSourceFetcher(services=ServiceDispatcher({"broken": broken}))
        source = DataSource(id="members", kind=DataSourceKind.SERVICE, handler="broken")
        result = asyncio.run(fetcher.fetch(source))
        assert result.status is DataSourceStatus.FAILED
        assert result.error == "handler bug"

    def test_concurrency_limit(self) -> None:
        client = _SlowClient(delay=0.01, payload={})
        fetcher = DataSourceFetcher(client, config=EvaluationConfig(max_concurrency=2))
        request = HttpRequest(url="https://x.test")
        sources = [DataSource(id=f"s{i}", kind=DataSourceKind.HTTP, request=request) for i in range(6)]
        results = asyncio.run(fetcher.fetch_all(sources))
        assert all(r.ok for r in results.values())
        assert client.peak == 2
