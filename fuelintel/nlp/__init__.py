"""Natural language understanding for free-text queries."""

from fuelintel.nlp.classifier import ClassificationResult, HttpIntentClassifier, IntentClassifier
from fuelintel.nlp.gateway import NlpGateway, NlpResult
from fuelintel.nlp.local import LocalIntentParser

__all__ = [
    "ClassificationResult",
    "HttpIntentClassifier",
    "IntentClassifier",
    "LocalIntentParser",
    "NlpGateway",
    "NlpResult",
]
