# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path
from typing import Any, Callable

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from leafbot.core.engine.domain import GenericRequest, NextResult, TextInput, text_response  # noqa: E402
from leafbot.core.engine.leaf import BaseLeaf, create_leaf  # noqa: E402
from leafbot.core.engine.stream import FunctionObserver  # noqa: E402
from leafbot.infra.metrics import get_metrics_collector  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    """Counters are process-global; start every test from zero."""
    get_metrics_collector().reset()
    yield


@pytest.fixture
def target_id():
    """Default conversation target for tests"""
    return "T"


@pytest.fixture
def target_platform():
    return "facebook"


@pytest.fixture
def make_request(target_id, target_platform) -> Callable[..., GenericRequest]:
    """Factory for manual requests; pass ``input=`` or ``text=``."""

    def factory(text: str = "hello", **kwargs: Any) -> GenericRequest:
        kwargs.setdefault("target_id", target_id)
        kwargs.setdefault("target_platform", target_platform)
        kwargs.setdefault("input", TextInput(text=text))
        kwargs.setdefault("trigger_type", "manual")
        return GenericRequest(**kwargs)

    return factory


class RecordingObserver(FunctionObserver):
    """Observer keeping every value it receives."""

    def __init__(self, result: NextResult = NextResult.BREAK):
        self.values: list[Any] = []
        self.completed = 0

        async def on_next(value):
            self.values.append(value)
            return result

        def on_complete():
            self.completed += 1

        super().__init__(on_next, on_complete)


@pytest.fixture
def recording_observer() -> RecordingObserver:
    return RecordingObserver()


async def make_reply_leaf(
    reply: str = "ok",
    should_handle: Callable[[GenericRequest], bool] = lambda request: True,
    calls: list | None = None,
):
    """Leaf answering ``reply`` to requests accepted by ``should_handle``."""

    async def factory(observer):
        async def on_request(request: GenericRequest) -> NextResult:
            if calls is not None:
                calls.append(request)
            if not should_handle(request):
                return NextResult.FALLTHROUGH
            await observer.next(text_response(request.target_id, request.target_platform, reply))
            return NextResult.BREAK

        return BaseLeaf(next=on_request)

    return await create_leaf(factory)


async def make_failing_leaf(error: Exception):
    async def factory(observer):
        async def on_request(request: GenericRequest) -> NextResult:
            raise error

        return BaseLeaf(next=on_request)

    return await create_leaf(factory)
