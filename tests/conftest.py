"""
Pytest configuration and shared fixtures.

Workflow tests drive a real :class:`SearchClient` over a
:class:`MockExecutor`; HTTP-level tests use ``httpx.MockTransport``.
Poll intervals are kept short so no test sleeps for long.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from hsearch.client import SearchClient
from hsearch.config import SearchConfig
from hsearch.executors.mock import MockExecutor
from hsearch.index import Index


class Recorder:
    """Completion callback that remembers every invocation."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, BaseException | None]] = []
        self.threads: list[str] = []
        self.event = threading.Event()

    def __call__(self, content: Any, error: BaseException | None) -> None:
        self.calls.append((content, error))
        self.threads.append(threading.current_thread().name)
        self.event.set()

    def wait(self, timeout: float = 2.0) -> bool:
        return self.event.wait(timeout)

    @property
    def content(self) -> Any:
        return self.calls[0][0]

    @property
    def error(self) -> BaseException | None:
        return self.calls[0][1]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture(autouse=True)
def _restore_hsearch_logger() -> Iterator[None]:
    logger = logging.getLogger("hsearch")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def config() -> SearchConfig:
    return SearchConfig(app_id="APP", api_key="KEY", task_poll_interval=0.01)


@pytest.fixture
def executor() -> MockExecutor:
    return MockExecutor()


@pytest.fixture
def client(config: SearchConfig, executor: MockExecutor) -> Iterator[SearchClient]:
    with SearchClient(config, executor=executor) as c:
        yield c


@pytest.fixture
def index(client: SearchClient) -> Index:
    return client.init_index("products")


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
