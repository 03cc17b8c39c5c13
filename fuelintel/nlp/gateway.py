"""NLP gateway: classify free text with context, degrading to local rules."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from fuelintel.core.errors import CircuitOpenError, ClassifierError
from fuelintel.model.session import ConversationContext
from fuelintel.nlp.classifier import ClassificationResult, IntentClassifier
from fuelintel.nlp.local import LocalIntentParser
from fuelintel.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


@dataclass
class NlpResult:
    """Interpretation of one free-text message.

    Attributes:
        intent: Resolved intent ("unknown" when nothing matched).
        entities: Resolved entities, including ones inherited from context.
        confidence: Confidence in [0, 1].
        used_fallback: True if the local parser produced the result.
        low_confidence: True if confidence is below the configured threshold.
        suggested_command: Command line to suggest (e.g., "/precios premium").
        is_follow_up: True if prior context was used to resolve the query.
        response_time_ms: Round trip of a successful classifier call, else None.
    """

    intent: str
    entities: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    used_fallback: bool = False
    low_confidence: bool = False
    suggested_command: str | None = None
    is_follow_up: bool = False
    response_time_ms: float | None = None


class NlpGateway:
    """Calls the external classifier through a breaker and a deadline.

    Never raises for classifier problems: an open breaker, a timeout or a
    classifier error all yield the local parser's answer with
    ``used_fallback=True``. Timeouts count as breaker failures.

    Args:
        classifier: External classifier, or None to always classify locally.
        breaker: Breaker guarding the classifier.
        parser: Local rule-based parser.
        timeout_seconds: Deadline for one classifier call.
        confidence_threshold: Results below this are flagged low confidence.
        context_window: Number of recent history queries sent as context.
    """

    def __init__(
        self,
        classifier: IntentClassifier | None,
        breaker: CircuitBreaker,
        parser: LocalIntentParser | None = None,
        timeout_seconds: float = 2.0,
        confidence_threshold: float = 0.7,
        context_window: int = 3,
    ):
        self.classifier = classifier
        self.breaker = breaker
        self.parser = parser or LocalIntentParser()
        self.timeout_seconds = timeout_seconds
        self.confidence_threshold = confidence_threshold
        self.context_window = context_window

    def build_context(
        self, prior_context: ConversationContext | None, recent_queries: list[str] | None = None
    ) -> dict[str, Any]:
        """Short window of prior state sent along with the query."""
        context: dict[str, Any] = {}
        if prior_context is not None:
            if prior_context.intent:
                context["last_intent"] = prior_context.intent
            if prior_context.entities:
                context["entities"] = dict(prior_context.entities)
        if recent_queries and self.context_window > 0:
            context["recent_queries"] = recent_queries[-self.context_window :]
        return context

    async def _classify_remote(self, text: str, context: dict[str, Any]) -> ClassificationResult:
        async def call() -> ClassificationResult:
            async with asyncio.timeout(self.timeout_seconds):
                return await self.classifier.classify(text, context)

        return await self.breaker.execute(call)

    async def process(
        self,
        text: str,
        prior_context: ConversationContext | None = None,
        recent_queries: list[str] | None = None,
    ) -> NlpResult:
        """Interpret free text.

        Args:
            text: Raw user text.
            prior_context: Unexpired conversational context, if any.
            recent_queries: Recent history queries, oldest first.

        Returns:
            NlpResult; classifier problems are absorbed, never raised.
        """
        used_fallback = True
        response_time_ms = None
        result: ClassificationResult | None = None

        if self.classifier is not None:
            started = time.monotonic()
            try:
                result = await self._classify_remote(text, self.build_context(prior_context, recent_queries))
                used_fallback = False
                # Failures count against the breaker, only answers are latency samples
                response_time_ms = round((time.monotonic() - started) * 1000, 1)
            except CircuitOpenError as e:
                logger.warning(f"Classifier skipped, {e}")
            except TimeoutError:
                logger.warning(f"Classifier timed out after {self.timeout_seconds}s, using local parser")
            except ClassifierError as e:
                logger.warning(f"Classifier failed, using local parser: {e}")
            except Exception as e:
                logger.error(f"Unexpected classifier error, using local parser: {e}", exc_info=True)

        if result is None:
            result = self.parser.parse(text)

        intent = result.intent
        entities = dict(result.entities)
        confidence = result.confidence
        suggested = result.suggested_command
        is_follow_up = False

        looks_like_follow_up = self.parser.is_follow_up(text)
        if prior_context is not None and prior_context.intent and (intent == "unknown" or looks_like_follow_up):
            is_follow_up = True
            if intent == "unknown":
                intent = prior_context.intent
            entities = {**prior_context.entities, **entities}
            if used_fallback and (looks_like_follow_up or result.entities):
                # Score the resolved query, not the fragment; bare noise stays low
                confidence = self.parser.score(intent, entities)
            suggested = self.parser.suggest_command(intent, entities)
            logger.debug(f"Resolved follow-up to {intent} with {entities}")

        if suggested is None and intent != "unknown":
            suggested = self.parser.suggest_command(intent, entities)

        return NlpResult(
            intent=intent,
            entities=entities,
            confidence=confidence,
            used_fallback=used_fallback,
            low_confidence=confidence < self.confidence_threshold,
            suggested_command=suggested,
            is_follow_up=is_follow_up,
            response_time_ms=response_time_ms,
        )
