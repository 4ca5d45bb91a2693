"""
Leaf transformers (decorators).

Each public function returns a ``LeafTransformer`` to be used with
``TransformChain.pipe``.
"""
from leafbot.core.transformers.catch_all import catch_all  # noqa: F401
from leafbot.core.transformers.catch_error import catch_error  # noqa: F401
from leafbot.core.transformers.retry_wit import (  # noqa: F401
    get_highest_confidence,
    retry_with_wit,
)
from leafbot.core.transformers.higher_order import (  # noqa: F401
    compact_map_input,
    filter_input,
    first_valid_result,
    map_input,
    map_output,
    require_context_keys,
)
