"""External intent classifier contract and its HTTP implementation."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from fuelintel.core.errors import ClassifierError

logger = logging.getLogger(__name__)

KNOWN_INTENTS = ("price_query", "station_search", "help", "recommendation", "configure", "unknown")

SYSTEM_PROMPT = (
    "Eres un asistente experto en análisis de precios de gasolina en México. "
    "Tu tarea es interpretar consultas en español mexicano sobre precios de combustible. "
    "Debes extraer la intención del usuario y las entidades relevantes. "
    "Responde SIEMPRE en formato JSON con la siguiente estructura: "
    '{"intent": "string", "entities": {"fuel_type": "string or null", "location": "string or null"}, '
    '"confidence": 0.0-1.0, "suggested_command": "string or null"}. '
    "Los tipos de combustible válidos son: regular, premium, diesel. "
    "Mapea los coloquialismos: magna/verde -> regular, roja/super -> premium, gasofa -> diesel. "
    f"Las intenciones válidas son: {', '.join(KNOWN_INTENTS)}."
)


@dataclass
class ClassificationResult:
    """Structured interpretation of one user query."""

    intent: str
    entities: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    suggested_command: str | None = None


class IntentClassifier(ABC):
    """Turns free text plus conversational context into an intent."""

    @abstractmethod
    async def classify(self, text: str, context: dict[str, Any]) -> ClassificationResult:
        """Classify a query.

        Raises:
            ClassifierError: If no usable classification could be obtained.
        """
        ...

    async def close(self) -> None:
        pass


def _clean_entities(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    entities = {}
    for key, value in raw.items():
        if value in (None, "", {}, []) or key == "other":
            continue
        entities[key] = value.lower() if key == "fuel_type" and isinstance(value, str) else value
    return entities


def parse_classification(content: str) -> ClassificationResult:
    """Parse the JSON object a classifier model returned.

    Raises:
        ClassifierError: If the content is not a JSON object with an intent.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ClassifierError(f"Classifier returned invalid JSON: {e}") from e
    if not isinstance(data, dict) or not data.get("intent"):
        raise ClassifierError("Classifier response has no intent")

    intent = str(data["intent"])
    if intent not in KNOWN_INTENTS:
        logger.debug(f"Classifier returned unrecognized intent '{intent}', treating as unknown")
        intent = "unknown"

    try:
        confidence = float(data.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0

    return ClassificationResult(
        intent=intent,
        entities=_clean_entities(data.get("entities")),
        confidence=min(max(confidence, 0.0), 1.0),
        suggested_command=data.get("suggested_command") or None,
    )


class HttpIntentClassifier(IntentClassifier):
    """Classifier backed by an OpenAI-compatible chat completions API.

    No retries are attempted; the circuit breaker in front of this client
    decides when to stop calling.

    Args:
        api_url: API base URL (e.g., "https://api.deepseek.com/v1").
        api_key: Bearer token.
        model: Model identifier.
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        timeout_seconds: Transport timeout; the caller enforces its own deadline too.
        client: Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        model: str = "deepseek-chat",
        temperature: float = 0.1,
        max_tokens: int = 300,
        timeout_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
        )

    def build_payload(self, text: str, context: dict[str, Any]) -> dict[str, Any]:
        system_prompt = SYSTEM_PROMPT
        if context:
            system_prompt += " Contexto de la conversación: " + json.dumps(context, ensure_ascii=False)
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

    async def classify(self, text: str, context: dict[str, Any]) -> ClassificationResult:
        try:
            response = await self._client.post("/chat/completions", json=self.build_payload(text, context))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ClassifierError(f"Classifier HTTP error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ClassifierError(f"Classifier request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Classifier returned a non-JSON body: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ClassifierError("Classifier response has no message content") from e

        return parse_classification(content)

    async def close(self) -> None:
        await self._client.aclose()
