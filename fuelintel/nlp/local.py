"""Deterministic rule-based intent parser.

Used whenever the external classifier is unavailable, and to score follow-up
queries. It understands Mexican Spanish fuel slang and a few English phrasings.
"""

import difflib
import re
from typing import Any

from fuelintel.nlp.classifier import ClassificationResult

FUEL_TYPES = ("regular", "premium", "diesel")

COLLOQUIALISMS = {
    "verde": "regular",
    "magna": "regular",
    "nafta": "regular",
    "roja": "premium",
    "super": "premium",
    "gasofa": "diesel",
}

TYPO_CORRECTIONS = {
    "gsolina": "gasolina",
    "gasoilna": "gasolina",
    "diesl": "diesel",
    "disel": "diesel",
    "diésel": "diesel",
    "premiun": "premium",
    "premum": "premium",
    "magña": "magna",
    "presio": "precio",
    "precío": "precio",
    "quanto": "cuánto",
    "cuato": "cuánto",
    "cuanto": "cuánto",
    "estasion": "estación",
    "gasolineria": "gasolinera",
}

# Checked in order; the first phrase found wins
INTENT_PHRASES = (
    ("cuánto anda", "price_query"),
    ("a cómo está", "price_query"),
    ("qué tal está", "price_query"),
    ("cuánto cuesta", "price_query"),
    ("cuánto vale", "price_query"),
    ("cuánto cobran", "price_query"),
    ("precio de", "price_query"),
    ("how much", "price_query"),
    ("dónde está", "station_search"),
    ("dónde queda", "station_search"),
    ("dónde hay", "station_search"),
    ("cerca de", "station_search"),
    ("gasolinera más", "station_search"),
    ("mis estaciones", "station_search"),
    ("qué me conviene", "recommendation"),
)

INTENT_KEYWORDS = (
    ("configure", ("configurar", "configuración", "preferencias", "settings", "configure")),
    ("recommendation", ("recomienda", "recomendación", "recomendacion", "recommend", "sugerencia")),
    ("price_query", ("precio", "cuánto", "cuesta", "vale", "price", "cost")),
    ("station_search", ("dónde", "estación", "gasolinera", "cerca", "station", "where")),
    ("help", ("ayuda", "help", "cómo")),
)

# Intents the parser is sure about when it sees them
CLEAR_INTENTS = ("price_query", "station_search", "help")

LOCATIONS = (
    ("mi ubicación", "current_location"),
    ("centro", "centro"),
    ("norte", "norte"),
    ("sur", "sur"),
    ("este", "este"),
    ("oeste", "oeste"),
    ("cerca", "nearby"),
    ("near me", "nearby"),
    ("aquí", "here"),
)

STATION_BRANDS = ("pemex", "shell", "mobil", "chevron", "bp", "arco", "oxxo", "g500")

FOLLOW_UP_INDICATORS = (
    "y la",
    "y el",
    "y de",
    "y para",
    "y en",
    "y",
    "también",
    "tambien",
    "además",
    "ademas",
    "otra",
    "otro",
    "qué hay de",
    "que hay de",
    "and",
    "what about",
    "how about",
    "also",
)

TIME_PATTERNS = (
    (re.compile(r"(\d+)\s*(?:días?|dias?|days?)\b"), 1),
    (re.compile(r"(\d+)\s*(?:semanas?|weeks?)\b"), 7),
    (re.compile(r"(\d+)\s*(?:mes|meses|months?)\b"), 30),
)

_PUNCTUATION = re.compile(r"[¿¡?!.,;]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lower-case, drop question/exclamation marks and collapse whitespace."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def _contains_word(text: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", text) is not None


class LocalIntentParser:
    """Keyword and phrase based classifier with weighted confidence.

    Example:
        >>> parser = LocalIntentParser()
        >>> result = parser.parse("¿A cómo está la roja?")
        >>> result.intent, result.entities
        ('price_query', {'fuel_type': 'premium'})
    """

    def correct_typos(self, text: str) -> str:
        words = []
        for word in text.split(" "):
            corrected = TYPO_CORRECTIONS.get(word)
            if corrected is None and len(word) >= 5 and word not in FUEL_TYPES:
                # Near-misses of fuel names only; everything else is left alone
                matches = difflib.get_close_matches(word, FUEL_TYPES, n=1, cutoff=0.8)
                corrected = matches[0] if matches else None
            words.append(corrected or word)
        return " ".join(words)

    def map_colloquialisms(self, text: str) -> str:
        for colloquial, standard in COLLOQUIALISMS.items():
            text = re.sub(rf"(?<!\w){colloquial}(?!\w)", standard, text)
        return text

    def prepare(self, text: str) -> str:
        """Normalize, correct typos and map slang, in that order."""
        return self.map_colloquialisms(self.correct_typos(normalize(text)))

    def extract_intent(self, text: str) -> str:
        for phrase, intent in INTENT_PHRASES:
            if phrase in text:
                return intent
        for intent, keywords in INTENT_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                return intent
        return "unknown"

    def extract_fuel_type(self, text: str) -> str | None:
        for fuel in ("premium", "regular", "diesel"):
            if _contains_word(text, fuel):
                return fuel
        return None

    def extract_location(self, text: str) -> str | None:
        for keyword, location in LOCATIONS:
            if _contains_word(text, keyword):
                return location
        return None

    def extract_time_period(self, text: str) -> int | None:
        """Period in days ("2 semanas" -> 14)."""
        for pattern, multiplier in TIME_PATTERNS:
            match = pattern.search(text)
            if match:
                return int(match.group(1)) * multiplier
        return None

    def extract_station_name(self, text: str) -> str | None:
        for brand in STATION_BRANDS:
            match = re.search(rf"(?<!\w){brand}(?:\s+(\w+))?", text)
            if match:
                return f"{brand} {match.group(1)}" if match.group(1) else brand
        return None

    def extract_entities(self, text: str) -> dict[str, Any]:
        entities = {
            "fuel_type": self.extract_fuel_type(text),
            "location": self.extract_location(text),
            "time_period": self.extract_time_period(text),
            "station_name": self.extract_station_name(text),
        }
        return {key: value for key, value in entities.items() if value is not None}

    def score(self, intent: str, entities: dict[str, Any]) -> float:
        """Weighted confidence: intent up to 0.5, entities up to 0.3, relevance up to 0.3."""
        confidence = 0.0
        if intent != "unknown":
            confidence += 0.4
            if intent in CLEAR_INTENTS:
                confidence += 0.1

        if entities:
            confidence += min(len(entities) * 0.15, 0.3)

        relevance = 0.0
        if intent == "price_query":
            if "fuel_type" in entities:
                relevance += 0.2
            if "time_period" in entities:
                relevance += 0.1
        elif intent == "station_search":
            if "location" in entities or "station_name" in entities:
                relevance += 0.25
        elif intent in ("help", "configure", "recommendation"):
            relevance += 0.2
        confidence += min(relevance, 0.3)

        return round(min(max(confidence, 0.0), 1.0), 2)

    def suggest_command(self, intent: str, entities: dict[str, Any]) -> str | None:
        if intent == "price_query":
            fuel_type = entities.get("fuel_type")
            return f"/precios {fuel_type}" if fuel_type else "/precios"
        if intent == "station_search":
            return "/estaciones"
        if intent == "recommendation":
            return "/recomendacion"
        if intent == "configure":
            return "/configurar"
        if intent == "help":
            return "/ayuda"
        return None

    def is_follow_up(self, text: str) -> bool:
        """Whether the text starts like a continuation ("y la premium?", "and regular?")."""
        normalized = normalize(text)
        return any(
            normalized == indicator or normalized.startswith(indicator + " ")
            for indicator in FOLLOW_UP_INDICATORS
        )

    def parse(self, text: str) -> ClassificationResult:
        prepared = self.prepare(text)
        intent = self.extract_intent(prepared)
        entities = self.extract_entities(prepared)
        return ClassificationResult(
            intent=intent,
            entities=entities,
            confidence=self.score(intent, entities),
            suggested_command=self.suggest_command(intent, entities),
        )
