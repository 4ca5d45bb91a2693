# leafbot/transport/processor.py
"""
Message processors and the messenger.

A message processor handles one platform's traffic in three steps that
middlewares can decorate independently:

    raw payload --generalize_request--> [GenericRequest, ...]
    GenericRequest --receive_request--> leaf selector
    GenericResponse --send_response--> platform client

The messenger glues a processor to the leaf selector: raw payloads go in
through ``process_raw_request``, selector emissions go out through the
processor's ``send_response``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from leafbot.core.engine.domain import GenericRequest, GenericResponse, NextResult
from leafbot.core.engine.errors import UnsupportedPlatformError
from leafbot.core.engine.ports import (
    Leaf,
    MessageProcessor,
    PlatformClient,
    ProcessorMiddleware,
    RequestGeneralizer,
    ResponseMapper,
    Subscription,
)
from leafbot.core.engine.stream import FunctionObserver
from leafbot.core.engine.transform import transform
from leafbot.core.engine.utils import map_series, resolve
from leafbot.infra.logging_config import get_logger
from leafbot.infra.metrics import EngineMetrics
from leafbot.transport.adapters import get_request_platform

logger = get_logger(__name__)


@dataclass
class ProcessorConfig:
    target_platform: str
    leaf_selector: Leaf
    client: PlatformClient
    map_request: RequestGeneralizer
    map_response: ResponseMapper


class BaseMessageProcessor:
    """Undecorated processor for a single platform."""

    def __init__(self, config: ProcessorConfig):
        self.config = config

    async def generalize_request(self, raw_request: Any) -> list[GenericRequest]:
        return list(await resolve(self.config.map_request(raw_request)))

    async def receive_request(self, generic_request: GenericRequest) -> None:
        with EngineMetrics.track_dispatch_time(generic_request.target_platform):
            await self.config.leaf_selector.next(generic_request)

    async def send_response(self, generic_response: GenericResponse) -> Optional[list[Any]]:
        # Cross-platform selectors emit every platform's responses here.
        if generic_response.target_platform != self.config.target_platform:
            return None

        payloads = await resolve(self.config.map_response(generic_response))
        return await map_series(payloads, self.config.client.send_response)


class DelegatingProcessor:
    """
    Forwards every processor operation to ``inner``. Middlewares subclass
    this and override only the steps they decorate.
    """

    def __init__(self, inner: MessageProcessor):
        self.inner = inner

    async def generalize_request(self, raw_request: Any) -> Sequence[GenericRequest]:
        return await self.inner.generalize_request(raw_request)

    async def receive_request(self, generic_request: GenericRequest) -> None:
        return await self.inner.receive_request(generic_request)

    async def send_response(self, generic_response: GenericResponse) -> Any:
        return await self.inner.send_response(generic_response)


class _MiddlewareInput:
    def __init__(self) -> None:
        self.final_processor: Optional[MessageProcessor] = None

    def get_final_processor(self) -> MessageProcessor:
        if self.final_processor is None:
            raise RuntimeError("Final processor is only available once every middleware is applied")
        return self.final_processor


async def create_message_processor(
    config: ProcessorConfig,
    *middlewares: ProcessorMiddleware,
) -> MessageProcessor:
    """
    Build a processor and decorate it with ``middlewares``.

    The first middleware registered is the outermost decorator, so it sees
    requests first and responses last.
    """
    middleware_input = _MiddlewareInput()
    transformers = [middleware(middleware_input) for middleware in middlewares]
    transformers.reverse()

    processor = await transform(BaseMessageProcessor(config), *transformers)
    middleware_input.final_processor = processor
    return processor


class CrossPlatformMessageProcessor:
    """Routes each step to the processor registered for the platform."""

    def __init__(
        self,
        processors: Mapping[str, MessageProcessor],
        get_platform: Callable[[Any], str] = get_request_platform,
    ):
        self.processors = dict(processors)
        self._get_platform = get_platform

    def _processor_for(self, platform: str) -> MessageProcessor:
        processor = self.processors.get(platform)
        if processor is None:
            raise UnsupportedPlatformError(f"No processor registered for platform: {platform}")
        return processor

    async def generalize_request(self, raw_request: Any) -> Sequence[GenericRequest]:
        platform = self._get_platform(raw_request)
        return await self._processor_for(platform).generalize_request(raw_request)

    async def receive_request(self, generic_request: GenericRequest) -> None:
        return await self._processor_for(generic_request.target_platform).receive_request(generic_request)

    async def send_response(self, generic_response: GenericResponse) -> Any:
        return await self._processor_for(generic_response.target_platform).send_response(generic_response)


class Messenger:
    """
    Entry point for raw platform traffic.

    Use the same leaf selector that the processor dispatches to, otherwise
    responses are never delivered.
    """

    def __init__(self, leaf_selector: Leaf, processor: MessageProcessor):
        self.leaf_selector = leaf_selector
        self.processor = processor
        self._subscription: Optional[Subscription] = None

    async def start(self) -> None:
        if self._subscription is not None:
            return

        async def deliver(response: GenericResponse) -> NextResult:
            await self.processor.send_response(response)
            return NextResult.BREAK

        self._subscription = await self.leaf_selector.subscribe(FunctionObserver(deliver))

    async def process_raw_request(self, raw_request: Any) -> None:
        """Generalize ``raw_request`` and dispatch each request in order."""
        generic_requests = await self.processor.generalize_request(raw_request)
        await map_series(generic_requests, self.processor.receive_request)

    async def close(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        await self.leaf_selector.complete()


async def create_messenger(leaf_selector: Leaf, processor: MessageProcessor) -> Messenger:
    messenger = Messenger(leaf_selector, processor)
    await messenger.start()
    return messenger
