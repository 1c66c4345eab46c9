"""
Configuration for the hosted search client.

All configuration is validated at construction time, not per-call.
Environment variables are read once via ``SearchConfig.from_env()`` and
the resulting object is immutable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_DEFAULT_HOST_DOMAIN = "hsearch.net"
_DEFAULT_SCHEME = "https"
_DEFAULT_TIMEOUT_CONNECT = 2.0
_DEFAULT_TIMEOUT_READ = 30.0
_DEFAULT_TIMEOUT_SEARCH = 5.0
_DEFAULT_TIMEOUT_POOL = 10.0
_DEFAULT_MAX_CONNECTIONS = 10
_DEFAULT_CALLBACK_WORKERS = 4
_DEFAULT_TASK_POLL_INTERVAL = 0.1
_DEFAULT_SEARCH_CACHE_TTL = 120.0
_DEFAULT_CACHE_MAX_ENTRIES = 256
_FALLBACK_HOST_COUNT = 3


def _default_hosts(app_id: str, domain: str, *, read: bool) -> tuple[str, ...]:
    primary = f"{app_id}-dsn.{domain}" if read else f"{app_id}.{domain}"
    fallbacks = [f"{app_id}-{i}.{domain}" for i in range(1, _FALLBACK_HOST_COUNT + 1)]
    return (primary, *fallbacks)


@dataclass(frozen=True)
class SearchConfig:
    """Validated, immutable configuration for the search client.

    Args:
        app_id: Application identifier, sent with every request.
        api_key: API key, sent with every request.
        host_domain: Domain used to derive the default host pools.
        read_hosts: Hosts used for search and other read calls, tried in
            order. Derived from ``app_id`` when empty.
        write_hosts: Hosts used for indexing calls and task polling.
            Derived from ``app_id`` when empty.
        scheme: ``https`` (default) or ``http``.
        timeout_connect: TCP connect timeout in seconds.
        timeout_read: HTTP read timeout in seconds for non-search calls.
        timeout_search: HTTP read timeout in seconds for search calls.
        timeout_pool: Connection pool acquisition timeout in seconds.
        retries: Transport-level retries on connection failure.
        verify_ssl: TLS verification (True, False, or path to CA bundle).
        max_connections: Upper bound on concurrent network calls.
        callback_workers: Threads delivering completion callbacks.
        retry_max_attempts: Extra rounds over the whole host list after
            every host failed. 0 = disabled.
        retry_backoff_base: Initial backoff in seconds for exponential delay.
        retry_backoff_max: Maximum backoff in seconds.
        circuit_failure_threshold: Consecutive failures before the circuit
            breaker opens (0 = disabled).
        circuit_reset_timeout: Seconds before an open circuit transitions
            to half-open.
        task_poll_interval: Fixed delay in seconds between task status polls.
        search_cache_ttl: Default lifetime in seconds of search cache entries
            once a cache is enabled on an index.
        cache_max_entries: Max cached search responses per index before the
            oldest is evicted.
    """

    app_id: str = ""
    api_key: str = ""
    host_domain: str = _DEFAULT_HOST_DOMAIN
    read_hosts: tuple[str, ...] = ()
    write_hosts: tuple[str, ...] = ()
    scheme: str = _DEFAULT_SCHEME
    timeout_connect: float = _DEFAULT_TIMEOUT_CONNECT
    timeout_read: float = _DEFAULT_TIMEOUT_READ
    timeout_search: float = _DEFAULT_TIMEOUT_SEARCH
    timeout_pool: float = _DEFAULT_TIMEOUT_POOL
    retries: int = 0
    verify_ssl: bool | str = True
    max_connections: int = _DEFAULT_MAX_CONNECTIONS
    callback_workers: int = _DEFAULT_CALLBACK_WORKERS
    retry_max_attempts: int = 0
    retry_backoff_base: float = 0.5
    retry_backoff_max: float = 8.0
    circuit_failure_threshold: int = 0
    circuit_reset_timeout: float = 30.0
    task_poll_interval: float = _DEFAULT_TASK_POLL_INTERVAL
    search_cache_ttl: float = _DEFAULT_SEARCH_CACHE_TTL
    cache_max_entries: int = _DEFAULT_CACHE_MAX_ENTRIES

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.app_id:
            errors.append("app_id must be a non-empty string")
        if not self.api_key:
            errors.append("api_key must be a non-empty string")
        if not self.host_domain:
            errors.append("host_domain must be a non-empty string")
        if self.scheme not in ("http", "https"):
            errors.append(f"scheme must be 'http' or 'https', got {self.scheme!r}")
        if self.timeout_connect <= 0:
            errors.append(f"timeout_connect must be > 0, got {self.timeout_connect}")
        if self.timeout_read <= 0:
            errors.append(f"timeout_read must be > 0, got {self.timeout_read}")
        if self.timeout_search <= 0:
            errors.append(f"timeout_search must be > 0, got {self.timeout_search}")
        if self.timeout_pool <= 0:
            errors.append(f"timeout_pool must be > 0, got {self.timeout_pool}")
        if self.retries < 0:
            errors.append(f"retries must be >= 0, got {self.retries}")
        if self.max_connections < 1:
            errors.append(f"max_connections must be >= 1, got {self.max_connections}")
        if self.callback_workers < 1:
            errors.append(f"callback_workers must be >= 1, got {self.callback_workers}")
        if self.retry_max_attempts < 0:
            errors.append(f"retry_max_attempts must be >= 0, got {self.retry_max_attempts}")
        if self.retry_backoff_base <= 0:
            errors.append(f"retry_backoff_base must be > 0, got {self.retry_backoff_base}")
        if self.retry_backoff_max <= 0:
            errors.append(f"retry_backoff_max must be > 0, got {self.retry_backoff_max}")
        if self.circuit_failure_threshold < 0:
            errors.append(
                f"circuit_failure_threshold must be >= 0, got {self.circuit_failure_threshold}"
            )
        if self.circuit_reset_timeout <= 0:
            errors.append(f"circuit_reset_timeout must be > 0, got {self.circuit_reset_timeout}")
        if self.task_poll_interval <= 0:
            errors.append(f"task_poll_interval must be > 0, got {self.task_poll_interval}")
        if self.search_cache_ttl <= 0:
            errors.append(f"search_cache_ttl must be > 0, got {self.search_cache_ttl}")
        if self.cache_max_entries < 1:
            errors.append(f"cache_max_entries must be >= 1, got {self.cache_max_entries}")

        if errors:
            raise ValueError("Invalid search configuration: " + "; ".join(errors))

        if not self.read_hosts:
            object.__setattr__(
                self, "read_hosts", _default_hosts(self.app_id, self.host_domain, read=True)
            )
        if not self.write_hosts:
            object.__setattr__(
                self, "write_hosts", _default_hosts(self.app_id, self.host_domain, read=False)
            )
        object.__setattr__(self, "read_hosts", tuple(self.read_hosts))
        object.__setattr__(self, "write_hosts", tuple(self.write_hosts))

    @classmethod
    def from_env(cls, **overrides: object) -> SearchConfig:
        """Build config from environment variables with optional overrides.

        Environment variables:
            HSEARCH_APP_ID                    -- Application id (required)
            HSEARCH_API_KEY                   -- API key (required)
            HSEARCH_HOST_DOMAIN               -- Domain for derived hosts (default hsearch.net)
            HSEARCH_READ_HOSTS                -- Comma-separated read hosts
            HSEARCH_WRITE_HOSTS               -- Comma-separated write hosts
            HSEARCH_SCHEME                    -- http or https (default https)
            HSEARCH_TIMEOUT_CONNECT           -- Connect timeout seconds (default 2.0)
            HSEARCH_TIMEOUT_READ              -- Read timeout seconds (default 30.0)
            HSEARCH_TIMEOUT_SEARCH            -- Search read timeout seconds (default 5.0)
            HSEARCH_VERIFY_SSL                -- "true", "false", or path to CA bundle
            HSEARCH_MAX_CONNECTIONS           -- Concurrent network calls (default 10)
            HSEARCH_CALLBACK_WORKERS          -- Callback threads (default 4)
            HSEARCH_RETRY_MAX_ATTEMPTS        -- Extra host-list rounds (default 0 = off)
            HSEARCH_CIRCUIT_FAILURE_THRESHOLD -- Failures to open circuit (default 0 = off)
            HSEARCH_CIRCUIT_RESET_TIMEOUT     -- Seconds before half-open (default 30)
            HSEARCH_TASK_POLL_INTERVAL        -- Task poll delay seconds (default 0.1)
            HSEARCH_SEARCH_CACHE_TTL          -- Search cache TTL seconds (default 120)
            HSEARCH_CACHE_MAX_ENTRIES         -- Search cache size (default 256)

        Explicit keyword arguments override environment variables.
        """

        def _env(key: str, default: str) -> str:
            return os.environ.get(key, default)

        def _env_float(key: str, default: float) -> float:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ValueError(f"Environment variable {key}={raw!r} is not a valid number")

        def _env_int(key: str, default: int) -> int:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"Environment variable {key}={raw!r} is not a valid integer")

        def _env_hosts(key: str) -> tuple[str, ...]:
            raw = os.environ.get(key, "")
            return tuple(h.strip() for h in raw.split(",") if h.strip())

        def _env_verify(key: str, default: bool | str) -> bool | str:
            raw = os.environ.get(key)
            if raw is None:
                return default
            low = raw.strip().lower()
            if low in ("true", "1", "yes"):
                return True
            if low in ("false", "0", "no"):
                return False
            return raw  # treat as CA bundle path

        kwargs: dict[str, object] = {
            "app_id": _env("HSEARCH_APP_ID", ""),
            "api_key": _env("HSEARCH_API_KEY", ""),
            "host_domain": _env("HSEARCH_HOST_DOMAIN", _DEFAULT_HOST_DOMAIN),
            "read_hosts": _env_hosts("HSEARCH_READ_HOSTS"),
            "write_hosts": _env_hosts("HSEARCH_WRITE_HOSTS"),
            "scheme": _env("HSEARCH_SCHEME", _DEFAULT_SCHEME),
            "timeout_connect": _env_float("HSEARCH_TIMEOUT_CONNECT", _DEFAULT_TIMEOUT_CONNECT),
            "timeout_read": _env_float("HSEARCH_TIMEOUT_READ", _DEFAULT_TIMEOUT_READ),
            "timeout_search": _env_float("HSEARCH_TIMEOUT_SEARCH", _DEFAULT_TIMEOUT_SEARCH),
            "timeout_pool": _env_float("HSEARCH_TIMEOUT_POOL", _DEFAULT_TIMEOUT_POOL),
            "retries": _env_int("HSEARCH_RETRIES", 0),
            "verify_ssl": _env_verify("HSEARCH_VERIFY_SSL", True),
            "max_connections": _env_int("HSEARCH_MAX_CONNECTIONS", _DEFAULT_MAX_CONNECTIONS),
            "callback_workers": _env_int("HSEARCH_CALLBACK_WORKERS", _DEFAULT_CALLBACK_WORKERS),
            "retry_max_attempts": _env_int("HSEARCH_RETRY_MAX_ATTEMPTS", 0),
            "retry_backoff_base": _env_float("HSEARCH_RETRY_BACKOFF_BASE", 0.5),
            "retry_backoff_max": _env_float("HSEARCH_RETRY_BACKOFF_MAX", 8.0),
            "circuit_failure_threshold": _env_int("HSEARCH_CIRCUIT_FAILURE_THRESHOLD", 0),
            "circuit_reset_timeout": _env_float("HSEARCH_CIRCUIT_RESET_TIMEOUT", 30.0),
            "task_poll_interval": _env_float(
                "HSEARCH_TASK_POLL_INTERVAL", _DEFAULT_TASK_POLL_INTERVAL
            ),
            "search_cache_ttl": _env_float("HSEARCH_SEARCH_CACHE_TTL", _DEFAULT_SEARCH_CACHE_TTL),
            "cache_max_entries": _env_int("HSEARCH_CACHE_MAX_ENTRIES", _DEFAULT_CACHE_MAX_ENTRIES),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        config = cls(**kwargs)  # type: ignore[arg-type]
        logger.info(
            "Search config: app_id=%s read_hosts=%d write_hosts=%d timeout_read=%.1f"
            " timeout_search=%.1f max_connections=%d",
            config.app_id,
            len(config.read_hosts),
            len(config.write_hosts),
            config.timeout_read,
            config.timeout_search,
            config.max_connections,
        )
        return config
