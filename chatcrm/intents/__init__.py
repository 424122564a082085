"""Deterministic intent classification for inbound text."""

from .classifier import Intent, IntentClassifier, IntentResult, normalize_text

__all__ = ["Intent", "IntentClassifier", "IntentResult", "normalize_text"]
