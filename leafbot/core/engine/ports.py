from __future__ import annotations
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, TypeVar, Union

from leafbot.core.engine.domain import (
    Context,
    ContextUpdate,
    GenericRequest,
    GenericResponse,
    NextResult,
    WitResponse,
)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)

AsyncOrSync = Union[T, Awaitable[T]]


# ============================================================================
# STREAM PROTOCOLS
# ============================================================================

class Subscription(Protocol):
    async def unsubscribe(self) -> None:
        """Stop deliveries. Calling this more than once is a no-op."""
        ...


class Observer(Protocol[T_contra]):
    async def next(self, value: T_contra) -> NextResult: ...

    # Optional: async def complete(self) -> None


class Observable(Protocol[T]):
    async def subscribe(self, observer: Observer[T]) -> Subscription: ...


# ============================================================================
# LEAF PROTOCOLS
# ============================================================================

class Leaf(Protocol):
    """
    A unit of conversational logic: consumes requests, emits responses.

    ``next`` returns BREAK when the leaf handled the request.
    """

    async def next(self, request: GenericRequest) -> NextResult: ...

    async def subscribe(self, observer: Observer[GenericResponse]) -> Subscription: ...

    async def complete(self) -> None: ...


LeafTransformer = Callable[[Leaf], AsyncOrSync[Leaf]]


# ============================================================================
# COLLABORATOR PROTOCOLS
# ============================================================================

class ContextStore(Protocol):
    async def get_context(self, target_id: str, target_platform: str) -> Context: ...

    async def append_context(
        self,
        target_id: str,
        target_platform: str,
        additional_context: Context,
        old_context: Optional[Context] = None,
    ) -> ContextUpdate:
        """
        Merge ``additional_context`` into the stored context (additive, never
        a wholesale replace). ``old_context`` skips the initial read when the
        caller already has it.
        """
        ...

    async def reset_context(self, target_id: str, target_platform: str) -> None: ...


class NLUClient(Protocol):
    async def validate(self, text: str) -> WitResponse: ...


class PlatformClient(Protocol):
    async def send_response(self, payload: Any) -> Any: ...

    async def set_typing_indicator(self, target_id: str, enabled: bool) -> Any: ...


class MessageProcessor(Protocol):
    """
    Processes one platform's traffic: raw payload -> generic requests,
    generic request -> leaf selector, generic response -> platform.

    The three steps are separate methods so middlewares can decorate each
    one independently.
    """

    async def generalize_request(self, raw_request: Any) -> Sequence[GenericRequest]: ...

    async def receive_request(self, generic_request: GenericRequest) -> None: ...

    async def send_response(self, generic_response: GenericResponse) -> Any: ...


RequestGeneralizer = Callable[[Any], AsyncOrSync[Sequence[GenericRequest]]]
ResponseMapper = Callable[[GenericResponse], AsyncOrSync[Sequence[Any]]]


class MiddlewareInput(Protocol):
    def get_final_processor(self) -> MessageProcessor: ...


ProcessorMiddleware = Callable[
    [MiddlewareInput],
    Callable[[MessageProcessor], AsyncOrSync[MessageProcessor]],
]
