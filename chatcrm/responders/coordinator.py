"""Choose between the delegated generator and the rule engine."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from functools import partial

from ..conversations.models import ConversationContext
from ..dialogue.engine import DialogueEngine
from ..errors import DelegatedGeneratorError, ErrorKind
from ..intents.classifier import IntentResult
from ..pipeline.result import Err, Ok, Result
from ..tenants.resolver import AccountRoute
from .delegated import DelegatedGenerator, DelegatedReply
from .history import HistorySink

logger = logging.getLogger(__name__)

MODE_DELEGATED = "delegated"
MODE_RULE = "rule"


@dataclass(frozen=True)
class Reply:
    text: str
    used_delegated: bool
    confidence: float | None = None
    error: ErrorKind | None = None


class ResponseCoordinator:
    """Produce the reply for one turn.

    When the channel account enables delegated mode (``delegated_mode`` and
    ``auto_reply`` both set) the delegated generator runs first under a hard
    timeout. Any failure there falls back to the dialogue engine in the same
    call; callers never see the delegated failure.
    """

    def __init__(
        self,
        engine: DialogueEngine,
        *,
        history: HistorySink | None = None,
        generator: DelegatedGenerator | None = None,
        executor: Executor | None = None,
        timeout: float = 8.0,
    ) -> None:
        self.engine = engine
        self.history = history
        self.generator = generator
        self.executor = executor
        self.timeout = timeout

    def respond(
        self,
        route: AccountRoute,
        context: ConversationContext,
        intent: IntentResult,
        text: str,
    ) -> Reply:
        if route.uses_delegated_generator and self.generator is not None:
            outcome = self._delegate(route, context, intent, text)
            if isinstance(outcome, Ok):
                delegated = outcome.value
                self._record(
                    context,
                    text,
                    delegated.reply_text,
                    MODE_DELEGATED,
                    intent,
                    delegated.confidence,
                )
                return Reply(delegated.reply_text, True, delegated.confidence)
            logger.warning(
                "Delegated reply unavailable for contact %s (%s); using rule engine",
                context.contact_id,
                outcome.message,
            )

        turn = self.engine.handle(context, intent, text)
        self._record(context, text, turn.reply, MODE_RULE, intent, intent.confidence)
        return Reply(turn.reply, False, intent.confidence, turn.error)

    def _delegate(
        self,
        route: AccountRoute,
        context: ConversationContext,
        intent: IntentResult,
        text: str,
    ) -> Result[DelegatedReply]:
        metadata = {
            "channel": context.channel.value,
            "tenant_name": route.tenant_name,
            "step": context.step,
            "intent": intent.intent.value,
            "intent_confidence": intent.confidence,
        }
        call = partial(
            self.generator.generate, context.tenant_id, context.contact_id, text, metadata
        )
        try:
            if self.executor is not None:
                reply = self.executor.submit(call).result(timeout=self.timeout)
            else:
                reply = call()
        except FutureTimeout:
            return Err(ErrorKind.DELEGATED_GENERATOR_FAILURE, "timeout")
        except DelegatedGeneratorError as exc:
            return Err(ErrorKind.DELEGATED_GENERATOR_FAILURE, str(exc))
        except Exception as exc:  # generator backends are third-party code
            logger.exception("Delegated generator raised unexpectedly")
            return Err(ErrorKind.DELEGATED_GENERATOR_FAILURE, repr(exc))

        if not isinstance(reply, DelegatedReply):
            return Err(ErrorKind.DELEGATED_GENERATOR_FAILURE, "malformed result")
        if not reply.success:
            return Err(ErrorKind.DELEGATED_GENERATOR_FAILURE, "generator reported failure")
        if not reply.reply_text or not reply.reply_text.strip():
            return Err(ErrorKind.DELEGATED_GENERATOR_FAILURE, "empty reply")
        return Ok(reply)

    def _record(
        self,
        context: ConversationContext,
        inbound: str,
        reply: str,
        mode: str,
        intent: IntentResult,
        confidence: float | None,
    ) -> None:
        if self.history is None:
            return
        self.history.record(
            tenant_id=context.tenant_id,
            contact_id=context.contact_id,
            channel=context.channel.value,
            inbound_text=inbound,
            reply_text=reply,
            mode=mode,
            intent=intent.intent.value,
            confidence=confidence,
        )


__all__ = ["MODE_DELEGATED", "MODE_RULE", "Reply", "ResponseCoordinator"]
