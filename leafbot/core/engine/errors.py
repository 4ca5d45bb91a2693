"""
Typed errors raised by the dispatch engine.

These are programming errors (bad handler trees, misuse of a selector,
routing to a platform nobody registered). The webhook layer maps
``EngineError`` subtypes to HTTP status codes through ``status_code``.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for all dispatch engine errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class InvalidBranchError(EngineError):
    """A handler tree value is neither a leaf nor a nested branch."""


class EmptyLeafTreeError(EngineError):
    """A selector was asked to dispatch but its tree holds no leaves."""


class MultipleSubscriptionError(EngineError):
    """A leaf selector was subscribed to more than once."""


class UnsupportedPlatformError(EngineError):
    """No processor is registered for the request's platform (400)."""

    status_code = 400


class InvalidRequestError(EngineError):
    """A raw platform payload could not be generalized (400)."""

    status_code = 400
