# leafbot/core/engine/__init__.py
"""
Core engine -- platform-agnostic dispatch logic.

This package contains the request/response domain model, the protocols
(ports) for collaborators, the stream primitives, leaves, the leaf selector
and the transform chain.

Canonical imports:
    from leafbot.core.engine import create_leaf, create_leaf_selector, NextResult
    from leafbot.core.engine.domain import GenericRequest, TextInput
    from leafbot.core.engine.ports import ContextStore
"""
from leafbot.core.engine.domain import (  # noqa: F401
    NextResult,
    GenericRequest,
    GenericResponse,
    ResponseOutput,
    TextContent,
    TextInput,
    text_response,
)
from leafbot.core.engine.errors import (  # noqa: F401
    EngineError,
    EmptyLeafTreeError,
    InvalidBranchError,
    MultipleSubscriptionError,
    UnsupportedPlatformError,
)
from leafbot.core.engine.stream import (  # noqa: F401
    ContentSubject,
    create_subject,
    create_subscription,
    create_composite_subscription,
    create_observer,
    merge_observables,
    bridge_emission,
)
from leafbot.core.engine.leaf import (  # noqa: F401
    BaseLeaf,
    DelegatingLeaf,
    create_leaf,
    create_default_error_leaf,
)
from leafbot.core.engine.selector import (  # noqa: F401
    LeafEnumeration,
    LeafSelector,
    create_leaf_selector,
    enumerate_leaves,
)
from leafbot.core.engine.transform import TransformChain, create_transform_chain, transform  # noqa: F401
