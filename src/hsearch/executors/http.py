"""httpx-backed executor for the hosted search API.

Holds one ``httpx.AsyncClient`` with connection pooling bounded by
``max_connections`` and injects the authentication headers. Host failover,
retry rounds with exponential backoff and one circuit breaker per host pool
sit behind the :class:`~hsearch.executors.HttpExecutor` protocol.
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import logging
import time
from contextlib import nullcontext
from typing import Any, NoReturn

import httpx

from hsearch.config import SearchConfig
from hsearch.models import CallType, SearchAPIError, SearchConnectionError, SearchResponseError

logger = logging.getLogger(__name__)

try:
    _PKG_VERSION = importlib.metadata.version("hsearch")
except importlib.metadata.PackageNotFoundError:
    _PKG_VERSION = "dev"

_USER_AGENT = f"hsearch-python/{_PKG_VERSION}"

_otel_tracer: Any = None
try:
    from opentelemetry import trace

    _otel_tracer = trace.get_tracer("hsearch")
except ImportError:
    pass


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Compute exponential backoff delay for the given attempt (0-indexed)."""
    return min(base * (2**attempt), maximum)


class _CircuitBreaker:
    """Circuit breaker for one host pool: CLOSED -> OPEN -> HALF_OPEN -> CLOSED.

    The read and write pools trip independently, so an outage of the search
    hosts does not block indexing or task polling. Only host-level failures
    (network errors, 429, 5xx) are recorded. A failed trial request while
    half-open reopens the circuit at once.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, pool: CallType, failure_threshold: int, reset_timeout: float) -> None:
        self._pool = pool
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._state = self.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> str:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._threshold > 0

    def _transition(self, state: str, reason: str) -> None:
        if state == self._state:
            return
        level = logging.WARNING if state == self.OPEN else logging.INFO
        logger.log(
            level, "Circuit breaker for %s hosts %s -> %s (%s)", self._pool, self._state, state, reason
        )
        self._state = state

    def check(self) -> None:
        """Raise SearchConnectionError while the pool's circuit is open."""
        if not self.enabled or self._state != self.OPEN:
            return
        remaining = self._reset_timeout - (time.monotonic() - self._opened_at)
        if remaining <= 0:
            self._transition(self.HALF_OPEN, "reset timeout elapsed")
            return
        raise SearchConnectionError(
            f"Circuit breaker is open for {self._pool} hosts after "
            f"{self._failure_count} consecutive failures; retry in {remaining:.1f}s"
        )

    def record_success(self) -> None:
        if not self.enabled:
            return
        self._failure_count = 0
        self._transition(self.CLOSED, "request succeeded")

    def record_failure(self) -> None:
        if not self.enabled:
            return
        self._failure_count += 1
        if self._state == self.HALF_OPEN or self._failure_count >= self._threshold:
            self._opened_at = time.monotonic()
            self._transition(self.OPEN, f"{self._failure_count} consecutive failures")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _elapsed_ms(t0: float) -> float:
    return (time.monotonic() - t0) * 1000


def _otel_span(name: str, method: str, path: str, call_type: CallType) -> Any:
    """Return an OTel span context manager, or nullcontext if OTel is absent."""
    if _otel_tracer is not None:
        return _otel_tracer.start_as_current_span(
            name,
            attributes={
                "hsearch.method": method,
                "hsearch.path": path,
                "hsearch.call_type": str(call_type),
            },
        )
    return nullcontext()


def _error_detail(response: httpx.Response) -> str:
    """Prefer the service's ``message`` field over the raw body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return response.text[:500]


def _raise_exhausted(exc: Exception, method: str, path: str, t0: float) -> NoReturn:
    """Map the last host failure to an hsearch exception. Always raises."""
    elapsed = _elapsed_ms(t0)
    if isinstance(exc, httpx.HTTPStatusError):
        logger.warning(
            "HTTP %d on every host for %s %s (%.1fms)",
            exc.response.status_code,
            method,
            path,
            elapsed,
        )
        raise SearchAPIError(exc.response.status_code, _error_detail(exc.response)) from exc

    if isinstance(exc, httpx.TimeoutException):
        logger.warning("Timeout on every host for %s %s (%.1fms)", method, path, elapsed)
        raise SearchConnectionError(f"Timeout on every host for {method} {path}: {exc}") from exc

    if isinstance(exc, httpx.ConnectError):
        logger.warning("Connection failed on every host for %s %s (%.1fms)", method, path, elapsed)
        raise SearchConnectionError(f"Cannot connect to any host for {method} {path}: {exc}") from exc

    logger.warning("Request failed for %s %s (%.1fms): %s", method, path, elapsed, exc)
    raise SearchConnectionError(f"Request failed for {method} {path}: {exc}") from exc


class HttpxExecutor:
    """Default :class:`~hsearch.executors.HttpExecutor` talking to the real service.

    Hosts from the read or write pool are tried in order; network errors and
    retryable statuses (429, 5xx) move on to the next host, any other 4xx is
    raised at once. After the whole pool failed, up to ``retry_max_attempts``
    further rounds run with exponential backoff. Read and write pools each
    have their own circuit breaker, so an outage of one leaves the other usable.
    """

    def __init__(
        self,
        config: SearchConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._default_timeout = httpx.Timeout(
            connect=config.timeout_connect,
            read=config.timeout_read,
            write=config.timeout_read,
            pool=config.timeout_pool,
        )
        self._search_timeout = httpx.Timeout(
            connect=config.timeout_connect,
            read=config.timeout_search,
            write=config.timeout_search,
            pool=config.timeout_pool,
        )
        headers = {
            "Accept": "application/json",
            "User-Agent": _USER_AGENT,
            "X-HSearch-Application-Id": config.app_id,
            "X-HSearch-API-Key": config.api_key,
        }
        limits = httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_connections,
        )
        transport = _transport or httpx.AsyncHTTPTransport(
            retries=config.retries,
            verify=config.verify_ssl,  # type: ignore[arg-type]
            limits=limits,
        )
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=self._default_timeout,
            headers=headers,
        )
        self._breakers = {
            call_type: _CircuitBreaker(
                call_type, config.circuit_failure_threshold, config.circuit_reset_timeout
            )
            for call_type in CallType
        }
        self._closed = False

        logger.debug(
            "HttpxExecutor created read_hosts=%s write_hosts=%s max_connections=%d",
            config.read_hosts,
            config.write_hosts,
            config.max_connections,
        )

    def circuit_state(self, call_type: CallType = CallType.READ) -> str:
        """State of the circuit breaker guarding the *call_type* host pool."""
        return self._breakers[call_type].state

    def _url(self, host: str, path: str) -> str:
        return f"{self._config.scheme}://{host}/{path.lstrip('/')}"

    async def execute(
        self,
        path: str,
        method: str,
        body: dict[str, Any] | list[Any] | None = None,
        call_type: CallType = CallType.READ,
        *,
        is_search_query: bool = False,
    ) -> dict[str, Any]:
        if self._closed:
            raise RuntimeError("HttpxExecutor is closed")

        hosts = self._config.read_hosts if call_type is CallType.READ else self._config.write_hosts
        timeout = self._search_timeout if is_search_query else self._default_timeout
        max_rounds = 1 + self._config.retry_max_attempts
        breaker = self._breakers[call_type]

        with _otel_span("hsearch.execute", method, path, call_type):
            t0 = time.monotonic()
            last_exc: Exception | None = None

            for attempt in range(max_rounds):
                if attempt > 0:
                    delay = _backoff_delay(
                        attempt - 1,
                        self._config.retry_backoff_base,
                        self._config.retry_backoff_max,
                    )
                    logger.info(
                        "Retry round %d/%d after %.1fs for %s %s",
                        attempt,
                        self._config.retry_max_attempts,
                        delay,
                        method,
                        path,
                    )
                    await asyncio.sleep(delay)

                breaker.check()
                for host in hosts:
                    try:
                        resp = await self._client.request(
                            method,
                            self._url(host, path),
                            json=body,
                            timeout=timeout,
                        )
                        resp.raise_for_status()
                    except httpx.HTTPStatusError as exc:
                        status = exc.response.status_code
                        if not _is_retryable(status):
                            logger.warning(
                                "HTTP %d for %s %s (%.1fms)",
                                status,
                                method,
                                path,
                                _elapsed_ms(t0),
                            )
                            raise SearchAPIError(status, _error_detail(exc.response)) from exc
                        breaker.record_failure()
                        logger.warning(
                            "Host %s returned HTTP %d for %s %s, trying next host",
                            host,
                            status,
                            method,
                            path,
                        )
                        last_exc = exc
                        continue
                    except httpx.HTTPError as exc:
                        breaker.record_failure()
                        logger.warning("Host %s failed for %s %s: %s", host, method, path, exc)
                        last_exc = exc
                        continue

                    breaker.record_success()
                    return self._decode(resp, method, path, t0)

            assert last_exc is not None
            _raise_exhausted(last_exc, method, path, t0)

    def _decode(
        self, resp: httpx.Response, method: str, path: str, t0: float
    ) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise SearchResponseError(
                f"Failed to decode response for {method} {path}: {exc}",
                raw_body=resp.text,
            ) from exc
        if not isinstance(data, dict):
            raise SearchResponseError(
                f"Expected a JSON object for {method} {path}, got {type(data).__name__}",
                raw_body=resp.text,
            )

        elapsed = _elapsed_ms(t0)
        logger.info(
            "%s %s status=%d elapsed_ms=%.1f",
            method,
            path,
            resp.status_code,
            elapsed,
        )
        if _otel_tracer is not None:
            span = trace.get_current_span()
            span.set_attribute("hsearch.status_code", resp.status_code)
            span.set_attribute("hsearch.elapsed_ms", elapsed)
        return data

    async def aclose(self) -> None:
        if not self._closed:
            await self._client.aclose()
            self._closed = True
            logger.debug("HttpxExecutor closed")
