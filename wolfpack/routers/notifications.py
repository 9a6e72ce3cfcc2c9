"""Push delivery endpoint called after a notification row is written."""
from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_session
from ..schemas import PushDeliveryResponse
from ..services.push_service import (
    LoggingPushProvider,
    NotificationNotFoundError,
    PushProvider,
    PushServiceError,
    deliver_push,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


def get_push_provider() -> PushProvider:
    return LoggingPushProvider()


def require_push_secret(x_push_secret: str | None = Header(default=None, alias="X-Push-Secret")) -> None:
    expected = get_settings().push_shared_secret
    if not expected:
        return
    if x_push_secret is None or not hmac.compare_digest(x_push_secret, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid push secret")


@router.post(
    "/{notification_id}/push",
    response_model=PushDeliveryResponse,
    dependencies=[Depends(require_push_secret)],
)
async def push_notification(
    notification_id: str,
    db: Session = Depends(get_session),
    provider: PushProvider = Depends(get_push_provider),
) -> PushDeliveryResponse:
    try:
        return deliver_push(db, notification_id, provider=provider)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found") from exc
    except PushServiceError as exc:
        logger.exception("Push delivery for %s failed", notification_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to deliver push notification",
        ) from exc


__all__ = ["router", "get_push_provider", "require_push_secret"]
