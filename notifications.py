from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import OutboxEvent


logger = logging.getLogger(__name__)

TRANSACTION_CREATED = "transaction:created"
TRANSACTION_DELETED = "transaction:deleted"
DASHBOARD_UPDATE = "dashboard:update"
RECURRING_CHANGED = "recurring:changed"
CREDIT_CARD_TRANSACTION = "credit-card:transaction"
GOAL_CONTRIBUTION = "goal:contribution"


def dashboard_channel(user_id: str) -> str:
    return f"dashboard-{user_id}"


def household_channel(household_id: int) -> str:
    return f"private-household-{household_id}"


def publish_event(
    session: Session,
    user_id: str,
    event: str,
    payload: dict[str, object],
    *,
    household_id: Optional[int] = None,
) -> OutboxEvent:
    """Queue an event in the caller's unit of work.

    Nothing is sent here; delivery happens later through
    :class:`NotificationDispatcher`, so a posting never waits on the
    notification service.
    """
    channel = (
        household_channel(household_id)
        if household_id is not None
        else dashboard_channel(user_id)
    )
    body = dict(payload)
    body.setdefault("timestamp", datetime.utcnow().isoformat())
    outbox = OutboxEvent(
        user_id=user_id,
        channel=channel,
        event=event,
        payload_json=json.dumps(body, default=str),
    )
    session.add(outbox)
    return outbox


class NotificationDispatcher:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.settings = get_settings()

    def pending(self, limit: int = 100) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.delivered_at.is_(None))
            .order_by(OutboxEvent.id)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def dispatch_pending(self, limit: int = 100) -> int:
        url = self.settings.notify_url
        if not url:
            logger.info("notify_dispatch: skipped reason=no_notify_url")
            return 0

        delivered = 0
        for outbox in self.pending(limit):
            body = {
                "channel": outbox.channel,
                "event": outbox.event,
                "data": json.loads(outbox.payload_json),
            }
            outbox.attempts += 1
            try:
                _post_json(url, body, timeout=self.settings.notify_timeout_secs)
            except RuntimeError as exc:
                outbox.last_error = str(exc)
                logger.warning(
                    f"notify_dispatch: event_id={outbox.id} attempts={outbox.attempts} "
                    f"error={exc}"
                )
                continue
            outbox.delivered_at = datetime.utcnow()
            outbox.last_error = None
            delivered += 1

        self.session.commit()
        logger.info(f"notify_dispatch: delivered={delivered}")
        return delivered


def _post_json(url: str, payload: dict[str, object], *, timeout: float) -> None:
    data = json.dumps(payload, default=str).encode("utf-8")
    req = Request(
        url,
        data=data,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )
    try:
        with urlopen(req, timeout=timeout) as resp:
            status = resp.status
    except (URLError, TimeoutError) as exc:
        raise RuntimeError(f"Failed to deliver event to {url}") from exc
    if status >= 300:
        raise RuntimeError(f"Notification endpoint answered {status}")
