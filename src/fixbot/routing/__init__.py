"""Intent routing for bot mentions."""

from fixbot.routing.classifier import Intent, IntentClassifier, IntentKind, get_classifier, parse_status

__all__ = ["Intent", "IntentClassifier", "IntentKind", "get_classifier", "parse_status"]
