"""Deterministic pattern-based intent classification.

Rules are evaluated in order and the first match wins. Several patterns
overlap (``"ma commande"`` is both an order word and a tracking phrase), so
the ordering of :data:`INTENT_RULES` is the disambiguation mechanism and
must not be sorted or reshuffled.
"""
from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Intent(str, Enum):
    GREETING = "greeting"
    HELP = "help"
    LIST_PRODUCTS = "list-products"
    CREATE_ORDER = "create-order"
    TRACK_ORDER = "track-order"
    GENERATE_QUOTE = "generate-quote"
    GENERATE_INVOICE = "generate-invoice"
    ACKNOWLEDGE = "acknowledge"
    GOODBYE = "goodbye"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class IntentResult:
    intent: Intent
    confidence: float
    payload: dict[str, Any] = field(default_factory=dict)


DEFAULT_PRODUCT_KEYWORDS = (
    "paracetamol",
    "doliprane",
    "ibuprofene",
    "advil",
    "vitamine",
    "masque",
    "gel",
    "sirop",
    "antibiotique",
    "antidouleur",
    "medicament",
)

UNKNOWN_CONFIDENCE = 0.1

_UNIT_QUANTITY_RE = re.compile(r"\b(\d+)\s*(?:boites?|packs?|unites?|pieces?|x)\b")
_TIMES_QUANTITY_RE = re.compile(r"\bx\s*(\d+)\b")
_INTEGER_RE = re.compile(r"\b(\d+)\b")


def normalize_text(text: str) -> str:
    """Lower-case ``text`` and fold accents and typographic apostrophes."""

    lowered = (text or "").lower().replace("’", "'").replace("‘", "'")
    decomposed = unicodedata.normalize("NFKD", lowered)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(folded.split())


def extract_quantity(normalized: str) -> int | None:
    """Return the ordered quantity mentioned in ``normalized`` text.

    A number attached to a unit (``3 boites``, ``2x``) wins; otherwise the
    last standalone integer is used.
    """

    for pattern in (_UNIT_QUANTITY_RE, _TIMES_QUANTITY_RE):
        match = pattern.search(normalized)
        if match:
            value = int(match.group(1))
            return value if value > 0 else None
    numbers = _INTEGER_RE.findall(normalized)
    if numbers:
        value = int(numbers[-1])
        return value if value > 0 else None
    return None


def first_integer(normalized: str) -> int | None:
    match = _INTEGER_RE.search(normalized)
    return int(match.group(1)) if match else None


@dataclass(frozen=True)
class IntentRule:
    intent: Intent
    pattern: re.Pattern[str]
    confidence: float
    extractor: Callable[[str], dict[str, Any]] | None = None


def _track_payload(normalized: str) -> dict[str, Any]:
    return {"order_id": first_integer(normalized)}


def _rules(order_extractor: Callable[[str], dict[str, Any]]) -> tuple[IntentRule, ...]:
    return (
        IntentRule(
            Intent.GREETING,
            re.compile(r"\b(bonjour|salut|coucou|hello|hi|yo|bonsoir|hey)\b"),
            0.95,
        ),
        IntentRule(
            Intent.HELP,
            re.compile(r"\b(aide|help|sos)\b|que peux[- ]tu|tu fais quoi|fonctionnalites"),
            0.9,
        ),
        IntentRule(
            Intent.LIST_PRODUCTS,
            re.compile(r"\b(catalogue|produits?|articles?)\b|voir.*produit|liste.*produit"),
            0.85,
        ),
        IntentRule(
            Intent.CREATE_ORDER,
            re.compile(r"\b(commander|acheter|prendre|achetons)\b|je veux|je voudrais"),
            0.8,
            order_extractor,
        ),
        IntentRule(
            Intent.TRACK_ORDER,
            re.compile(r"\b(statut|suivre|suivi)\b|ou en est|ma commande|commande.*\d+"),
            0.75,
            _track_payload,
        ),
        IntentRule(
            Intent.GENERATE_QUOTE,
            re.compile(r"\b(devis|prix|tarifs?)\b|combien.*coute"),
            0.7,
        ),
        IntentRule(
            Intent.GENERATE_INVOICE,
            re.compile(r"\b(facture|recu|paiement|payer)\b"),
            0.7,
        ),
        IntentRule(
            Intent.ACKNOWLEDGE,
            re.compile(r"\b(merci|ok|okay|parfait|super)\b|d'accord"),
            0.9,
        ),
        IntentRule(
            Intent.GOODBYE,
            re.compile(r"\b(au revoir|bye|a plus|ciao)\b"),
            0.95,
        ),
    )


class IntentClassifier:
    """Pure, ordered-rule classifier.

    Args:
        product_keywords: Closed vocabulary scanned by the ``create-order``
            extractor. Keywords are compared after accent folding.
    """

    def __init__(self, product_keywords: Iterable[str] = DEFAULT_PRODUCT_KEYWORDS) -> None:
        keywords = [normalize_text(k) for k in product_keywords if k and k.strip()]
        self.product_keywords = tuple(keywords)
        self._keyword_re = (
            re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")s?\b")
            if keywords
            else None
        )
        self.rules = _rules(self._order_payload)

    def _order_payload(self, normalized: str) -> dict[str, Any]:
        product = None
        if self._keyword_re is not None:
            match = self._keyword_re.search(normalized)
            if match:
                product = match.group(1)
        quantity = extract_quantity(normalized)
        return {
            "product": product,
            "quantity": quantity or 1,
            "quantity_explicit": quantity is not None,
        }

    def classify(self, text: str) -> IntentResult:
        normalized = normalize_text(text)
        if normalized:
            for rule in self.rules:
                if rule.pattern.search(normalized):
                    payload = rule.extractor(normalized) if rule.extractor else {}
                    return IntentResult(rule.intent, rule.confidence, payload)
        return IntentResult(Intent.UNKNOWN, UNKNOWN_CONFIDENCE, {})


__all__ = [
    "DEFAULT_PRODUCT_KEYWORDS",
    "Intent",
    "IntentClassifier",
    "IntentResult",
    "extract_quantity",
    "first_integer",
    "normalize_text",
]
