"""Fire-and-forget quote and invoice requests.

The PDF itself is produced by a separate document service. The pipeline only
records a ``document_requests`` row and, when ``DOCUMENT_SERVICE_URL`` is
configured, notifies the service from a background executor once the turn
commits, without waiting for the result.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import requests
from sqlalchemy import event
from sqlalchemy.orm import Session

from .models import DocumentRequest

logger = logging.getLogger(__name__)


class DocumentNotifier:
    """Posts document jobs to the external service on a worker thread."""

    def __init__(
        self,
        service_url: str | None,
        *,
        timeout: float = 5.0,
        http: requests.Session | None = None,
        max_workers: int = 2,
    ) -> None:
        self.service_url = service_url
        self.timeout = timeout
        self.http = http or requests.Session()
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="document-notifier"
        )

    def notify(self, payload: dict[str, Any]) -> Future | None:
        if not self.service_url:
            return None
        return self.executor.submit(self._post, payload)

    def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = self.http.post(self.service_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(
                "Document service rejected %s request %s: %s",
                payload.get("kind"),
                payload.get("request_id"),
                exc,
            )

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False)


class DocumentRequester:
    """Records a document request within the current unit of work.

    The document service is only notified once the surrounding transaction
    commits; a rolled-back turn drops its pending notifications.
    """

    def __init__(self, session: Session, notifier: DocumentNotifier | None = None) -> None:
        self.session = session
        self.notifier = notifier
        self._pending: list[dict[str, Any]] = []
        if notifier is not None:
            event.listen(session, "after_commit", self._send_pending)
            event.listen(session, "after_rollback", self._drop_pending)

    def request(
        self,
        tenant_id: uuid.UUID,
        contact_id: int,
        kind: str,
        order_id: int | None = None,
    ) -> DocumentRequest:
        record = DocumentRequest(
            tenant_id=tenant_id, contact_id=contact_id, order_id=order_id, kind=kind
        )
        self.session.add(record)
        self.session.flush()
        if self.notifier is not None:
            self._pending.append(
                {
                    "request_id": record.id,
                    "tenant_id": str(tenant_id),
                    "contact_id": contact_id,
                    "order_id": order_id,
                    "kind": kind,
                }
            )
        return record

    def _send_pending(self, session: Session) -> None:
        pending, self._pending = self._pending, []
        for payload in pending:
            self.notifier.notify(payload)

    def _drop_pending(self, session: Session) -> None:
        if self._pending:
            logger.info(
                "Discarding %d document request(s) from a rolled-back turn",
                len(self._pending),
            )
        self._pending = []


__all__ = ["DocumentNotifier", "DocumentRequester"]
