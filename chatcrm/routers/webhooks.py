"""Webhook ingestion routes for external messaging channels.

Every provider delivery is acknowledged with a 2xx response once its
messages have been handed to the conversation dispatcher. Only a failed
signature check is refused, since such a request did not come from the
provider.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from functools import partial
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from ..channels import get_adapter
from ..conversations.models import ChannelKind, InboundMessage
from ..pipeline.result import Err

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

EMPTY_TWIML = "<Response></Response>"


def _accepted(count: int) -> JSONResponse:
    return JSONResponse({"status": "accepted", "messages": count})


def _dispatch_all(state: Any, messages: Iterable[InboundMessage]) -> int:
    """Resolve each message's tenant and queue it behind its conversation."""

    pipeline = state.pipeline
    dispatcher = state.dispatcher
    accepted = 0
    for message in messages:
        try:
            resolved = pipeline.resolve(message)
        except SQLAlchemyError:
            logger.exception("Routing index unavailable; dropping %s message", message.channel.value)
            continue
        if isinstance(resolved, Err):
            logger.warning("Dropping inbound message: %s", resolved.message)
            continue
        resolution = resolved.value
        key = pipeline.ordering_key(message, resolution.route)
        dispatcher.submit(key, partial(pipeline.process, message, resolution))
        accepted += 1
    return accepted


def _parse(
    channel_name: str,
    payload: Mapping[str, Any],
    headers: Mapping[str, str],
    config: Mapping[str, Any],
) -> list[InboundMessage]:
    adapter = get_adapter(channel_name)()
    try:
        return list(adapter.parse_incoming(payload, headers, config))
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Malformed %s payload acknowledged without processing: %s", channel_name, exc)
        return []


def _verify(channel_name: str, body: bytes, headers: Mapping[str, str], config: Mapping[str, Any]) -> None:
    adapter = get_adapter(channel_name)()
    if not adapter.verify_signature(body, headers, config):
        logger.warning("Rejected %s webhook with an invalid signature", channel_name)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")


def _load_json(channel_name: str, body: bytes) -> dict[str, Any] | None:
    try:
        payload = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Invalid JSON on %s webhook acknowledged: %s", channel_name, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Unexpected %s payload type %s acknowledged", channel_name, type(payload).__name__)
        return None
    return payload


def _twilio_config(request: Request, params: Mapping[str, Any]) -> dict[str, Any]:
    state = request.app.state
    if not state.settings.twilio_validate_signatures:
        return {}
    sender = str(params.get("From") or "")
    kind = ChannelKind.WHATSAPP_GATEWAY if sender.lower().startswith("whatsapp:") else ChannelKind.SMS
    try:
        resolution = state.resolver.resolve(
            kind, str(params.get("To") or ""), str(params.get("AccountSid") or "")
        )
    except SQLAlchemyError:
        logger.exception("Routing index unavailable; Twilio signature not checked")
        return {}
    if resolution is None:
        return {}
    route = resolution.route
    credentials = state.credentials.get_credentials(route.credentials_ref, route.config)
    if not credentials.auth_token:
        logger.warning("No auth token for account %s; Twilio signature not checked", route.account_id)
        return {}
    return {"auth_token": credentials.auth_token, "url": str(request.url), "params": dict(params)}


@router.post("/api/webhooks/twilio")
async def twilio_webhook(request: Request) -> Response:
    """Twilio SMS and WhatsApp gateway messages (form encoded)."""

    body = await request.body()
    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}
    config = await run_in_threadpool(_twilio_config, request, params)
    _verify("twilio", body, request.headers, config)
    messages = _parse("twilio", params, request.headers, config)
    await run_in_threadpool(_dispatch_all, request.app.state, messages)
    return Response(content=EMPTY_TWIML, media_type="application/xml")


async def _meta_webhook(channel_name: str, request: Request) -> JSONResponse:
    body = await request.body()
    config = {"app_secret": request.app.state.settings.meta_app_secret}
    _verify(channel_name, body, request.headers, config)
    payload = _load_json(channel_name, body)
    if payload is None:
        return _accepted(0)
    messages = _parse(channel_name, payload, request.headers, config)
    accepted = await run_in_threadpool(_dispatch_all, request.app.state, messages)
    return _accepted(accepted)


def _verify_subscription(request: Request) -> PlainTextResponse:
    params = request.query_params
    expected = request.app.state.settings.meta_verify_token
    if (
        expected
        and params.get("hub.mode") == "subscribe"
        and params.get("hub.verify_token") == expected
    ):
        return PlainTextResponse(params.get("hub.challenge", ""))
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/api/webhooks/whatsapp")
async def whatsapp_webhook(request: Request) -> JSONResponse:
    """WhatsApp Cloud API message notifications."""

    return await _meta_webhook("whatsapp", request)


@router.get("/api/webhooks/whatsapp")
async def whatsapp_verify(request: Request) -> PlainTextResponse:
    return _verify_subscription(request)


@router.post("/api/webhooks/messenger")
async def messenger_webhook(request: Request) -> JSONResponse:
    """Messenger page message notifications."""

    return await _meta_webhook("messenger", request)


@router.get("/api/webhooks/messenger")
async def messenger_verify(request: Request) -> PlainTextResponse:
    return _verify_subscription(request)
