"""Delegated response generators.

A delegated generator produces the reply text instead of the local rule
engine. Two backends are available: a generic HTTP service and OpenAI chat
completions. Both raise :class:`DelegatedGeneratorError` on failure; the
coordinator turns that into a fallback to the rule engine.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from openai import OpenAI, OpenAIError

from ..errors import DelegatedGeneratorError
from ..settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "Tu es l'assistant commercial de {tenant}. Réponds en français, brièvement, "
    "au message du client. N'invente ni prix ni stock."
)


@dataclass(frozen=True)
class DelegatedReply:
    success: bool
    reply_text: str
    confidence: float | None = None


class DelegatedGenerator(Protocol):
    def generate(
        self, tenant_id: uuid.UUID, contact_id: int, text: str, metadata: dict[str, Any]
    ) -> DelegatedReply:
        ...


class HttpDelegatedGenerator:
    """POST the message to an external reply service."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 8.0,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = dict(headers or {})

    def generate(
        self, tenant_id: uuid.UUID, contact_id: int, text: str, metadata: dict[str, Any]
    ) -> DelegatedReply:
        body = {
            "tenant_id": str(tenant_id),
            "contact_id": contact_id,
            "text": text,
            "metadata": metadata,
        }
        try:
            response = self.session.post(
                self.url, json=body, headers=self.headers, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise DelegatedGeneratorError(f"delegated service call failed: {exc}") from exc
        if not isinstance(data, dict):
            raise DelegatedGeneratorError("delegated service returned a non-object body")
        confidence = data.get("confidence")
        return DelegatedReply(
            success=bool(data.get("success")),
            reply_text=str(data.get("reply") or data.get("replyText") or ""),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        )


class OpenAIDelegatedGenerator:
    """Generate replies with the OpenAI chat completions API."""

    def __init__(
        self,
        *,
        model: str,
        timeout: float = 8.0,
        client: OpenAI | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.model = model
        self.client = client or OpenAI(timeout=timeout, max_retries=0)
        self.system_prompt = system_prompt

    def generate(
        self, tenant_id: uuid.UUID, contact_id: int, text: str, metadata: dict[str, Any]
    ) -> DelegatedReply:
        prompt = self.system_prompt.format(tenant=metadata.get("tenant_name") or "la boutique")
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": text},
                ],
                temperature=0.3,
            )
        except OpenAIError as exc:
            raise DelegatedGeneratorError(f"OpenAI call failed: {exc}") from exc
        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""
        return DelegatedReply(success=bool(content.strip()), reply_text=content)


def build_delegated_generator(settings: Settings) -> DelegatedGenerator | None:
    """Instantiate the generator selected by ``DELEGATED_PROVIDER``."""

    if settings.delegated_provider == "http":
        if not settings.delegated_url:
            logger.warning("DELEGATED_PROVIDER=http but DELEGATED_URL is empty")
            return None
        return HttpDelegatedGenerator(
            settings.delegated_url, timeout=settings.delegated_timeout_seconds
        )
    if settings.delegated_provider == "openai":
        return OpenAIDelegatedGenerator(
            model=settings.openai_model, timeout=settings.delegated_timeout_seconds
        )
    return None


__all__ = [
    "DelegatedGenerator",
    "DelegatedReply",
    "HttpDelegatedGenerator",
    "OpenAIDelegatedGenerator",
    "build_delegated_generator",
]
