from __future__ import annotations

from dataclasses import replace
from typing import Mapping, Optional, Sequence

from leafbot.config import settings
from leafbot.core.engine.domain import (
    GenericRequest,
    NextResult,
    WitHighestConfidence,
    WitInput,
    WitIntent,
    WitTraitValue,
)
from leafbot.core.engine.leaf import DelegatingLeaf
from leafbot.core.engine.ports import Leaf, LeafTransformer, NLUClient
from leafbot.infra.logging_config import get_logger, LogContext
from leafbot.infra.metrics import EngineMetrics

logger = get_logger(__name__)


def get_highest_confidence(
    intents: Sequence[WitIntent],
    traits: Mapping[str, Sequence[WitTraitValue]],
) -> Optional[WitHighestConfidence]:
    """
    Pick the intent or trait value with the strictly highest confidence.
    Intents are scanned first, then traits in key order; ties keep the
    earliest candidate and a confidence of 0 never wins.
    """
    highest: Optional[WitHighestConfidence] = None
    highest_value = 0.0

    for intent in intents:
        if intent.confidence > highest_value:
            highest_value = intent.confidence
            highest = WitHighestConfidence(
                wit_type="intent",
                confidence=intent.confidence,
                id=intent.id,
                name=intent.name,
            )

    for trait, trait_values in traits.items():
        for trait_value in trait_values:
            if trait_value.confidence > highest_value:
                highest_value = trait_value.confidence
                highest = WitHighestConfidence(
                    wit_type="trait",
                    confidence=trait_value.confidence,
                    id=trait_value.id,
                    value=trait_value.value,
                    trait=trait,
                )

    return highest


class RetryWithWitLeaf(DelegatingLeaf):
    def __init__(self, inner: Leaf, client: NLUClient, max_text_length: int):
        super().__init__(inner)
        self._client = client
        self._max_text_length = max_text_length

    async def next(self, request: GenericRequest) -> NextResult:
        result = await self.inner.next(request)

        if result == NextResult.BREAK:
            return result

        if request.input.type != "text" or len(request.input.text) > self._max_text_length:
            return result

        response = await self._client.validate(request.input.text)
        highest_confidence = get_highest_confidence(response.intents, response.traits)

        LogContext.for_target(logger, request).debug(
            f"Retrying with Wit: intents={len(response.intents)}, "
            f"traits={len(response.traits)}, "
            f"highest={highest_confidence.wit_type if highest_confidence else None}"
        )
        EngineMetrics.wit_retry(request.target_platform)

        return await self.inner.next(replace(
            request,
            input=WitInput(
                entities=response.entities,
                intents=response.intents,
                traits=response.traits,
                highest_confidence=highest_confidence,
            ),
            raw_request=None,
            trigger_type="manual",
        ))


def retry_with_wit(client: NLUClient, max_text_length: Optional[int] = None) -> LeafTransformer:
    """
    Retry unmatched text with Wit: run the text through the NLU service and
    re-dispatch it as a ``wit`` input. Matched requests never reach Wit.
    """
    limit = settings.wit_max_text_length if max_text_length is None else max_text_length
    return lambda leaf: RetryWithWitLeaf(leaf, client, limit)
