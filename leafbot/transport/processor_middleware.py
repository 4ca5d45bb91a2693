# leafbot/transport/processor_middleware.py
"""
Processor middlewares.

Each public function returns a ``ProcessorMiddleware``:
``(MiddlewareInput) -> (processor) -> processor``. Pass them to
``create_message_processor``; the first one registered is the outermost.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

from leafbot.core.engine.domain import (
    Context,
    ContextChangeInput,
    GenericRequest,
    GenericResponse,
)
from leafbot.core.engine.ports import (
    AsyncOrSync,
    ContextStore,
    MessageProcessor,
    MiddlewareInput,
    PlatformClient,
    ProcessorMiddleware,
)
from leafbot.core.engine.utils import join_objects, resolve
from leafbot.infra.logging_config import get_logger, LogContext
from leafbot.transport.processor import DelegatingProcessor

logger = get_logger(__name__)


# ============================================================================
# CONTEXT
# ============================================================================

class _InjectContextProcessor(DelegatingProcessor):
    def __init__(self, inner: MessageProcessor, context_store: ContextStore):
        super().__init__(inner)
        self.context_store = context_store

    async def receive_request(self, generic_request: GenericRequest) -> None:
        # Context-change requests already carry the fresh context.
        if generic_request.input.type == "context_change":
            return await self.inner.receive_request(generic_request)

        stored = await self.context_store.get_context(
            generic_request.target_id, generic_request.target_platform,
        )
        # The request's own context wins over the stored one.
        current_context = join_objects(stored, generic_request.current_context)
        return await self.inner.receive_request(replace(generic_request, current_context=current_context))


def inject_context_on_receive(context_store: ContextStore) -> ProcessorMiddleware:
    """Load the stored context into every incoming request."""

    def middleware(_: MiddlewareInput) -> Callable[[MessageProcessor], MessageProcessor]:
        return lambda processor: _InjectContextProcessor(processor, context_store)

    return middleware


ContextMapper = Callable[[Context], AsyncOrSync[Context]]


class _SaveContextProcessor(DelegatingProcessor):
    def __init__(
        self,
        inner: MessageProcessor,
        middleware_input: MiddlewareInput,
        context_store: ContextStore,
        pre_save_context_mapper: Optional[ContextMapper],
    ):
        super().__init__(inner)
        self.middleware_input = middleware_input
        self.context_store = context_store
        self.pre_save_context_mapper = pre_save_context_mapper

    async def send_response(self, generic_response: GenericResponse) -> Any:
        result = await self.inner.send_response(generic_response)

        # The context change is dispatched only after the send completes, so
        # leaves reacting to it cannot overtake the response they follow.
        if generic_response.additional_context is None:
            return result

        additional_context = generic_response.additional_context
        if self.pre_save_context_mapper is not None:
            additional_context = await resolve(self.pre_save_context_mapper(additional_context))

        original_request = generic_response.original_request
        update = await self.context_store.append_context(
            generic_response.target_id,
            generic_response.target_platform,
            additional_context,
            old_context=original_request.current_context if original_request is not None else None,
        )

        LogContext.for_target(logger, generic_response).debug(
            f"Context updated: keys={sorted(additional_context)}"
        )

        await self.middleware_input.get_final_processor().receive_request(GenericRequest(
            target_id=generic_response.target_id,
            target_platform=generic_response.target_platform,
            input=ContextChangeInput(
                changed_context=additional_context,
                new_context=update.new_context,
                old_context=update.old_context,
            ),
            trigger_type="manual",
            current_context=update.new_context,
            original_request=original_request,
        ))

        return result


def save_context_on_send(
    context_store: ContextStore,
    pre_save_context_mapper: Optional[ContextMapper] = None,
) -> ProcessorMiddleware:
    """
    Persist ``additional_context`` after each response is sent, then
    re-dispatch a ``context_change`` request through the fully decorated
    processor.
    """

    def middleware(middleware_input: MiddlewareInput) -> Callable[[MessageProcessor], MessageProcessor]:
        return lambda processor: _SaveContextProcessor(
            processor, middleware_input, context_store, pre_save_context_mapper,
        )

    return middleware


# ============================================================================
# USERS
# ============================================================================

class _SaveUserProcessor(DelegatingProcessor):
    def __init__(
        self,
        inner: MessageProcessor,
        context_store: ContextStore,
        get_user: Callable[[str], Awaitable[Any]],
        is_enabled: Callable[[Context], AsyncOrSync[bool]],
        save_user: Callable[[Any], Awaitable[Optional[Context]]],
    ):
        super().__init__(inner)
        self.context_store = context_store
        self.get_user = get_user
        self.is_enabled = is_enabled
        self.save_user = save_user

    async def receive_request(self, generic_request: GenericRequest) -> None:
        if generic_request.input.type == "context_change":
            return await self.inner.receive_request(generic_request)

        if await resolve(self.is_enabled(generic_request.current_context)):
            raw_user = await self.get_user(generic_request.target_id)
            additional_context = await self.save_user(raw_user) or {}

            update = await self.context_store.append_context(
                generic_request.target_id,
                generic_request.target_platform,
                additional_context,
            )
            generic_request = replace(generic_request, current_context=update.new_context)

        return await self.inner.receive_request(generic_request)


def save_user_for_target_id(
    context_store: ContextStore,
    get_user: Callable[[str], Awaitable[Any]],
    is_enabled: Callable[[Context], AsyncOrSync[bool]],
    save_user: Callable[[Any], Awaitable[Optional[Context]]],
) -> ProcessorMiddleware:
    """
    Fetch and save the user behind a target when ``is_enabled`` says so
    (typically: first contact, or the context was flushed). The context
    returned by ``save_user`` is appended to the stored context.
    """

    def middleware(_: MiddlewareInput) -> Callable[[MessageProcessor], MessageProcessor]:
        return lambda processor: _SaveUserProcessor(
            processor, context_store, get_user, is_enabled, save_user,
        )

    return middleware


# ============================================================================
# TYPING INDICATOR
# ============================================================================

def _raise(error: Exception) -> None:
    raise error


class _TypingIndicatorProcessor(DelegatingProcessor):
    def __init__(
        self,
        inner: MessageProcessor,
        client: PlatformClient,
        on_set_typing_error: Callable[[Exception], Any],
    ):
        super().__init__(inner)
        self.client = client
        self.on_set_typing_error = on_set_typing_error

    async def _set_typing(self, target_id: str, enabled: bool) -> None:
        try:
            await self.client.set_typing_indicator(target_id, enabled)
        except Exception as exc:
            await resolve(self.on_set_typing_error(exc))

    async def send_response(self, generic_response: GenericResponse) -> Any:
        await self._set_typing(generic_response.target_id, True)
        result = await self.inner.send_response(generic_response)
        await self._set_typing(generic_response.target_id, False)
        return result


def set_typing_indicator(
    client: PlatformClient,
    on_set_typing_error: Optional[Callable[[Exception], Any]] = None,
) -> ProcessorMiddleware:
    """
    Turn the typing indicator on before each send and off afterwards.

    Typing errors are re-raised unless ``on_set_typing_error`` handles them.
    """
    handler = on_set_typing_error or _raise

    def middleware(_: MiddlewareInput) -> Callable[[MessageProcessor], MessageProcessor]:
        return lambda processor: _TypingIndicatorProcessor(processor, client, handler)

    return middleware


# ============================================================================
# LOGGING
# ============================================================================

class _LoggingProcessor(DelegatingProcessor):
    async def generalize_request(self, raw_request: Any):
        generic_requests = await self.inner.generalize_request(raw_request)
        logger.debug(f"Generalized raw request into {len(generic_requests)} request(s)")
        return generic_requests

    async def receive_request(self, generic_request: GenericRequest) -> None:
        LogContext.for_target(logger, generic_request).debug(
            f"Received request: input={generic_request.input.type}, "
            f"trigger={generic_request.trigger_type}"
        )
        return await self.inner.receive_request(generic_request)

    async def send_response(self, generic_response: GenericResponse) -> Any:
        LogContext.for_target(logger, generic_response).debug(
            f"Sending response: outputs={len(generic_response.output)}"
        )
        return await self.inner.send_response(generic_response)


def log_processing() -> ProcessorMiddleware:
    """Debug-log every processing step with the target's identity."""

    def middleware(_: MiddlewareInput) -> Callable[[MessageProcessor], MessageProcessor]:
        return _LoggingProcessor

    return middleware
