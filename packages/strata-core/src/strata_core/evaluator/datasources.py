"""Data source clients and concurrent fetching.

This module provides:
- HttpClientProtocol / HttpDataSourceClient: http sources over httpx with tenacity retries
- ServiceDispatcherProtocol / ServiceDispatcher: named service handlers
- DataSourceFetcher: fetch every visible source concurrently, each bounded by
  a timeout, failures isolated per source

Cancelling the coroutine that runs ``DataSourceFetcher.fetch_all`` cancels
every in-flight fetch; no partial result is returned.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from strata_core.config import EvaluationConfig, RetryConfig
from strata_core.errors import DataSourceError
from strata_core.evaluator.models import DataSourceStatus
from strata_core.observability import log_retry_attempt
from strata_core.schemas.page import DataSource, DataSourceKind

logger = structlog.get_logger(__name__)

ServiceHandler = Callable[[Mapping[str, Any]], Any]


@runtime_checkable
class HttpClientProtocol(Protocol):
    """Fetches the payload of an http data source."""

    async def fetch(self, source: DataSource) -> Any:
        ...


@runtime_checkable
class ServiceDispatcherProtocol(Protocol):
    """Invokes the handler of a service data source."""

    async def dispatch(self, source: DataSource) -> Any:
        ...


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class HttpDataSourceClient:
    """http data source client over ``httpx.AsyncClient``.

    Transport errors and 5xx responses are retried with exponential backoff
    and jitter; 4xx responses fail at once. The response body is parsed as
    JSON.

    Example:
        >>> async with HttpDataSourceClient(retry=RetryConfig(max_attempts=2)) as client:
        ...     payload = await client.fetch(source)

        >>> # Tests inject a transport
        >>> client = HttpDataSourceClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        retry: RetryConfig | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self.retry = retry or RetryConfig()

    async def __aenter__(self) -> HttpDataSourceClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _log_retry(self, source_id: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome is not None else None
            log_retry_attempt(
                operation=f"data_source:{source_id}",
                attempt=state.attempt_number,
                max_attempts=self.retry.max_attempts,
                error=str(error),
            )

        return before_sleep

    async def fetch(self, source: DataSource) -> Any:
        """Fetch an http data source.

        Raises:
            DataSourceError: If the request fails after all attempts or the
                body is not JSON.
        """
        request = source.request
        if request is None:
            raise DataSourceError(f"Data source '{source.id}' has no request", source_id=source.id)

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.retry.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self.retry.initial_wait_seconds,
                    max=self.retry.max_wait_seconds,
                    jitter=self.retry.jitter_seconds,
                ),
                before_sleep=self._log_retry(source.id),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.request(
                        request.method,
                        request.url,
                        headers=request.headers or None,
                        params=request.params or None,
                        json=request.body,
                    )
                    response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DataSourceError(
                f"Data source '{source.id}' returned HTTP {exc.response.status_code}",
                source_id=source.id,
            ) from exc
        except httpx.HTTPError as exc:
            raise DataSourceError(
                f"Data source '{source.id}' request failed",
                source_id=source.id,
                internal_details=str(exc),
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise DataSourceError(f"Data source '{source.id}' did not return JSON", source_id=source.id) from exc


class ServiceDispatcher:
    """Registry of named service handlers.

    Handlers receive the source's ``config`` mapping. Coroutine functions
    are awaited; plain functions run in a worker thread.

    Example:
        >>> dispatcher = ServiceDispatcher()
        >>> @dispatcher.handler("members.count")
        ... def count_members(config):
        ...     return {"count": 42}
    """

    def __init__(self, handlers: Mapping[str, ServiceHandler] | None = None) -> None:
        self._handlers: dict[str, ServiceHandler] = dict(handlers or {})

    def register(self, name: str, handler: ServiceHandler) -> None:
        self._handlers[name] = handler

    def handler(self, name: str) -> Callable[[ServiceHandler], ServiceHandler]:
        """Decorator form of ``register``."""

        def decorator(func: ServiceHandler) -> ServiceHandler:
            self.register(name, func)
            return func

        return decorator

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, source: DataSource) -> Any:
        """Invoke the handler named by ``source.handler``.

        Raises:
            DataSourceError: If no handler is registered under that name.
        """
        handler = self._handlers.get(source.handler or "")
        if handler is None:
            raise DataSourceError(
                f"No service handler registered for '{source.handler}'",
                source_id=source.id,
            )
        if inspect.iscoroutinefunction(handler):
            return await handler(source.config)
        result = await asyncio.to_thread(handler, source.config)
        if inspect.isawaitable(result):
            return await result
        return result


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetching one data source."""

    source_id: str
    kind: DataSourceKind
    status: DataSourceStatus
    value: Any = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is DataSourceStatus.OK


class DataSourceFetcher:
    """Fetch data sources concurrently.

    Each source runs under its own timeout (``timeout_seconds`` on the
    source, else the configured default). A failing or slow source yields a
    failed FetchResult and never affects its siblings.
    """

    def __init__(
        self,
        http: HttpClientProtocol | None = None,
        services: ServiceDispatcherProtocol | None = None,
        *,
        config: EvaluationConfig | None = None,
    ) -> None:
        self.http = http
        self.services = services
        self.config = config or EvaluationConfig()

    async def fetch_all(self, sources: Iterable[DataSource]) -> dict[str, FetchResult]:
        """Fetch every source and return results keyed by source id."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(source: DataSource) -> FetchResult:
            async with semaphore:
                return await self.fetch(source)

        results = await asyncio.gather(*(bounded(source) for source in sources))
        return {result.source_id: result for result in results}

    async def fetch(self, source: DataSource) -> FetchResult:
        timeout = source.timeout_seconds or self.config.default_timeout_seconds
        log = logger.bind(source_id=source.id, kind=source.kind.value)
        started = time.perf_counter()

        def elapsed() -> float:
            return round((time.perf_counter() - started) * 1000, 3)

        try:
            value = await asyncio.wait_for(self._load(source), timeout=timeout)
        except TimeoutError:
            log.warning("data_source_timeout", timeout_seconds=timeout)
            return FetchResult(
                source.id,
                source.kind,
                DataSourceStatus.TIMEOUT,
                error=f"timed out after {timeout}s",
                duration_ms=elapsed(),
            )
        except DataSourceError as exc:
            log.warning("data_source_failed", error=exc.user_message)
            return FetchResult(
                source.id, source.kind, DataSourceStatus.FAILED, error=exc.user_message, duration_ms=elapsed()
            )
        except Exception as exc:
            # Handler bugs stay isolated to their source
            log.warning("data_source_failed", error=str(exc), error_type=type(exc).__name__)
            return FetchResult(source.id, source.kind, DataSourceStatus.FAILED, error=str(exc), duration_ms=elapsed())

        log.debug("data_source_fetched", duration_ms=elapsed())
        return FetchResult(source.id, source.kind, DataSourceStatus.OK, value=value, duration_ms=elapsed())

    async def _load(self, source: DataSource) -> Any:
        if source.kind is DataSourceKind.STATIC:
            return source.value
        if source.kind is DataSourceKind.HTTP:
            if self.http is None:
                raise DataSourceError("No http client configured", source_id=source.id)
            return await self.http.fetch(source)
        if self.services is None:
            raise DataSourceError("No service dispatcher configured", source_id=source.id)
        return await self.services.dispatch(source)
