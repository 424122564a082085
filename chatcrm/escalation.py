"""Human hand-off signals raised alongside automated replies."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .conversations.models import ConversationContext
from .intents.classifier import Intent, IntentResult, normalize_text
from .models import HandoffNotification

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.3

_URGENT_RE = re.compile(
    r"\b(urgent|urgence|plainte|reclamation|humain|conseiller|remboursement|rembourser)\b"
)


@dataclass
class EscalationDecision:
    should_escalate: bool
    reason: str | None = None


def evaluate(intent: IntentResult, text: str) -> EscalationDecision:
    """Decide whether an operator should look at the conversation.

    Unknown intents are answered by the guiding fallback and are not
    escalated on confidence alone; urgent vocabulary always is.
    """

    if _URGENT_RE.search(normalize_text(text)):
        return EscalationDecision(True, "urgent_keyword")
    if intent.intent is not Intent.UNKNOWN and intent.confidence < LOW_CONFIDENCE_THRESHOLD:
        return EscalationDecision(True, "low_confidence")
    return EscalationDecision(False)


class HandoffNotifier:
    def __init__(self, session: Session) -> None:
        self.session = session

    def notify(self, context: ConversationContext, decision: EscalationDecision, text: str) -> None:
        if not decision.should_escalate:
            return
        self.session.add(
            HandoffNotification(
                tenant_id=context.tenant_id,
                contact_id=context.contact_id,
                channel=context.channel.value,
                reason=decision.reason or "unspecified",
                message=text,
            )
        )
        logger.info(
            "Hand-off requested for contact %s (%s)", context.contact_id, decision.reason
        )


__all__ = ["EscalationDecision", "HandoffNotifier", "evaluate"]
