"""Client side of push delivery: ask the service to push a stored notification."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, cast

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import create_session
from ..schemas.notifications import PushDeliveryResponse
from ..services.push_service import PushProvider, PushServiceError, deliver_push

logger = logging.getLogger(__name__)

PUSH_SECRET_HEADER = "X-Push-Secret"


class PushDeliveryError(RuntimeError):
    """Raised when the push delivery endpoint cannot be reached or rejects a request."""


class PushGateway(ABC):
    @abstractmethod
    async def deliver(self, notification_id: str) -> PushDeliveryResponse:
        ...

    async def aclose(self) -> None:
        return None


class NullPushGateway(PushGateway):
    """Used when no push endpoint is configured; delivery is skipped."""

    async def deliver(self, notification_id: str) -> PushDeliveryResponse:
        logger.debug("Push delivery not configured; skipping %s", notification_id)
        return PushDeliveryResponse(
            success=True,
            notification_id=notification_id,
            push_sent=False,
            skipped_reason="push_not_configured",
        )


class HttpPushGateway(PushGateway):
    """POST ``{endpoint}/notifications/{id}/push`` on the delivery service."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float | None = None,
        shared_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout if timeout is not None else settings.push_timeout
        self._shared_secret = shared_secret if shared_secret is not None else settings.push_shared_secret
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = client is None

    def _headers(self) -> dict[str, str] | None:
        if self._shared_secret:
            return {PUSH_SECRET_HEADER: self._shared_secret}
        return None

    async def deliver(self, notification_id: str) -> PushDeliveryResponse:
        url = f"{self._endpoint}/notifications/{notification_id}/push"
        try:
            response = await self._client.post(url, headers=self._headers())
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.error("Push delivery timeout | url=%s timeout=%s", url, self._timeout)
            raise PushDeliveryError("Push delivery timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.error("Push delivery HTTP status error | url=%s status=%s", url, exc.response.status_code)
            raise PushDeliveryError(f"Push delivery failed with status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("Push delivery transport error | url=%s error=%s", url, type(exc).__name__)
            raise PushDeliveryError("Push delivery request failed") from exc

        try:
            data = cast(dict[str, Any], response.json())
        except ValueError as exc:
            raise PushDeliveryError("Push delivery response was not valid JSON") from exc
        try:
            return PushDeliveryResponse.model_validate(data)
        except ValidationError as exc:
            raise PushDeliveryError("Push delivery response had an unexpected shape") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LocalPushGateway(PushGateway):
    """Run the delivery service in-process, for single-process deployments and tests."""

    def __init__(
        self,
        provider: PushProvider | None = None,
        session_factory: Callable[[], Session] = create_session,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory

    def _deliver(self, notification_id: str) -> PushDeliveryResponse:
        session = self._session_factory()
        try:
            return deliver_push(session, notification_id, provider=self._provider)
        finally:
            session.close()

    async def deliver(self, notification_id: str) -> PushDeliveryResponse:
        try:
            return await asyncio.to_thread(self._deliver, notification_id)
        except (SQLAlchemyError, PushServiceError) as exc:
            logger.exception("Local push delivery failed for %s", notification_id)
            raise PushDeliveryError("Push delivery failed") from exc


def build_push_gateway() -> PushGateway:
    """Pick the gateway from configuration: HTTP when an endpoint is set, otherwise none."""

    settings = get_settings()
    if settings.push_endpoint_url:
        return HttpPushGateway(settings.push_endpoint_url)
    return NullPushGateway()


__all__ = [
    "PushGateway",
    "HttpPushGateway",
    "LocalPushGateway",
    "NullPushGateway",
    "PushDeliveryError",
    "PUSH_SECRET_HEADER",
    "build_push_gateway",
]
