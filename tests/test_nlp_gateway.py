"""Tests for the HTTP classifier and the NLP gateway."""

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from fuelintel.core.errors import ClassifierError
from fuelintel.model.session import ConversationContext
from fuelintel.nlp.classifier import ClassificationResult, HttpIntentClassifier, IntentClassifier, parse_classification
from fuelintel.nlp.gateway import NlpGateway
from fuelintel.resilience.circuit_breaker import CircuitBreaker, CircuitState


class StubClassifier(IntentClassifier):
    """Classifier returning a canned result, optionally slowly or failing."""

    def __init__(self, result: ClassificationResult | None = None, delay: float = 0.0, error: Exception | None = None):
        self.result = result or ClassificationResult(intent="price_query", entities={"fuel_type": "diesel"}, confidence=0.95)
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def classify(self, text: str, context: dict[str, Any]) -> ClassificationResult:
        self.calls.append((text, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def completion(content: Any) -> dict[str, Any]:
    return {"choices": [{"message": {"content": json.dumps(content)}}]}


def make_context(intent: str, entities: dict[str, Any]) -> ConversationContext:
    return ConversationContext(updated_at=datetime.now(UTC), intent=intent, entities=entities)


class TestParseClassification:
    """Parsing model output."""

    def test_valid(self):
        result = parse_classification(
            json.dumps(
                {
                    "intent": "price_query",
                    "entities": {"fuel_type": "Premium", "location": None, "other": "x"},
                    "confidence": 1.4,
                    "suggested_command": "/precios premium",
                }
            )
        )

        assert result.intent == "price_query"
        assert result.entities == {"fuel_type": "premium"}
        assert result.confidence == 1.0
        assert result.suggested_command == "/precios premium"

    def test_unknown_intent_name(self):
        result = parse_classification(json.dumps({"intent": "weather", "confidence": 0.9}))
        assert result.intent == "unknown"

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", json.dumps({"confidence": 0.5})])
    def test_invalid(self, content: str):
        with pytest.raises(ClassifierError):
            parse_classification(content)


class TestHttpIntentClassifier:
    """Chat completions client over a mock transport."""

    @pytest.mark.asyncio
    async def test_posts_chat_completion(self):
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion({"intent": "help", "confidence": 0.9}))

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://api.test/v1",
            headers={"Authorization": "Bearer k"},
        )
        classifier = HttpIntentClassifier("https://api.test/v1", client=client)

        result = await classifier.classify("ayuda", {"last_intent": "price_query"})
        await classifier.close()

        assert result.intent == "help"
        assert seen["path"] == "/v1/chat/completions"
        assert seen["auth"] == "Bearer k"
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert seen["body"]["messages"][1] == {"role": "user", "content": "ayuda"}
        assert "price_query" in seen["body"]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
            base_url="https://api.test",
        )
        classifier = HttpIntentClassifier("https://api.test", client=client)

        with pytest.raises(ClassifierError, match="503"):
            await classifier.classify("hola", {})

    @pytest.mark.asyncio
    async def test_missing_content(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []})),
            base_url="https://api.test",
        )
        classifier = HttpIntentClassifier("https://api.test", client=client)

        with pytest.raises(ClassifierError):
            await classifier.classify("hola", {})


class TestNlpGateway:
    """Breaker, deadline, fallback and follow-up resolution."""

    @pytest.mark.asyncio
    async def test_uses_classifier(self):
        classifier = StubClassifier()
        gateway = NlpGateway(classifier, CircuitBreaker("classifier"))

        result = await gateway.process("cuánto el diésel", recent_queries=["a", "b", "c", "d"])

        assert result.intent == "price_query"
        assert result.entities == {"fuel_type": "diesel"}
        assert not result.used_fallback
        assert not result.low_confidence
        assert result.response_time_ms is not None
        assert classifier.calls[0][1]["recent_queries"] == ["b", "c", "d"]

    @pytest.mark.asyncio
    async def test_without_classifier_uses_local_parser(self):
        gateway = NlpGateway(None, CircuitBreaker("classifier"))
        result = await gateway.process("¿A cómo está la roja?")

        assert result.used_fallback
        assert result.intent == "price_query"
        assert result.response_time_ms is None

    @pytest.mark.asyncio
    async def test_classifier_error_falls_back(self):
        classifier = StubClassifier(error=ClassifierError("bad payload"))
        breaker = CircuitBreaker("classifier")
        gateway = NlpGateway(classifier, breaker)

        result = await gateway.process("precio de la premium")

        assert result.used_fallback
        assert result.entities == {"fuel_type": "premium"}
        assert breaker.failures == 1
        assert result.response_time_ms is None

    @pytest.mark.asyncio
    async def test_timeouts_open_the_breaker(self):
        classifier = StubClassifier(delay=1.0)
        breaker = CircuitBreaker("classifier", failure_threshold=5, cooldown_seconds=60)
        gateway = NlpGateway(classifier, breaker, timeout_seconds=0.01)

        for _ in range(5):
            result = await gateway.process("premium price?")
            assert result.used_fallback
            assert result.intent == "price_query"
            assert result.response_time_ms is None

        assert breaker.state == CircuitState.OPEN
        assert len(classifier.calls) == 5

        result = await gateway.process("premium price?")
        assert result.used_fallback
        assert result.response_time_ms is None
        assert len(classifier.calls) == 5

    @pytest.mark.asyncio
    async def test_low_confidence_flag(self):
        classifier = StubClassifier(ClassificationResult(intent="configure", confidence=0.4))
        gateway = NlpGateway(classifier, CircuitBreaker("classifier"), confidence_threshold=0.7)

        result = await gateway.process("config")

        assert result.low_confidence
        assert result.suggested_command == "/configurar"

    @pytest.mark.asyncio
    async def test_follow_up_inherits_intent(self):
        gateway = NlpGateway(None, CircuitBreaker("classifier"))
        prior = make_context("price_query", {"fuel_type": "premium", "location": "centro"})

        result = await gateway.process("and regular?", prior_context=prior)

        assert result.is_follow_up
        assert result.intent == "price_query"
        assert result.entities == {"fuel_type": "regular", "location": "centro"}
        assert not result.low_confidence
        assert result.suggested_command == "/precios regular"

    @pytest.mark.asyncio
    async def test_unrelated_text_without_context_is_unknown(self):
        gateway = NlpGateway(None, CircuitBreaker("classifier"))
        result = await gateway.process("and regular?")

        assert not result.is_follow_up
        assert result.intent == "unknown"

    def test_build_context(self):
        gateway = NlpGateway(None, CircuitBreaker("classifier"), context_window=2)
        context = gateway.build_context(make_context("price_query", {"fuel_type": "diesel"}), ["a", "b", "c"])

        assert context == {
            "last_intent": "price_query",
            "entities": {"fuel_type": "diesel"},
            "recent_queries": ["b", "c"],
        }
