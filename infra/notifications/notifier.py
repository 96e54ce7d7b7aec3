import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from app.settings import settings
from domain.schemas import CompletionNotice

logger = logging.getLogger(__name__)


def completion_title(notice: CompletionNotice) -> str:
    status = "Completed" if notice.failure_count == 0 else "Completed with errors"
    return f"{status}: {notice.operation_type}"


def completion_message(notice: CompletionNotice) -> str:
    return (
        f"Processed {notice.total_processed} items "
        f"({notice.success_count} succeeded, {notice.failure_count} failed) "
        f"in {notice.duration_seconds}s"
    )


class Notifier(ABC):
    """Delivers job outcome signals to the job owner.

    Only completion is required; cancellation and failure notices are
    optional and ignored unless an adapter overrides them.
    """

    @abstractmethod
    async def notify_completion(self, owner_id: str, notice: CompletionNotice) -> None:
        pass

    async def notify_cancelled(self, owner_id: str, notice: CompletionNotice) -> None:
        return None

    async def notify_failure(self, owner_id: str, operation_type: str, error_message: str) -> None:
        return None


class LoggingNotifier(Notifier):
    async def notify_completion(self, owner_id: str, notice: CompletionNotice) -> None:
        logger.info("Notify owner=%s: %s | %s",
                    owner_id, completion_title(notice), completion_message(notice))

    async def notify_failure(self, owner_id: str, operation_type: str, error_message: str) -> None:
        logger.info("Notify owner=%s: Failed: %s | %s", owner_id, operation_type, error_message)


class WebhookNotifier(Notifier):
    """POSTs notices as JSON to a webhook (e.g. the realtime notification service)."""

    def __init__(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        notify_on_cancel: Optional[bool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout if timeout is not None else settings.NOTIFY_TIMEOUT_S
        self.notify_on_cancel = settings.NOTIFY_ON_CANCEL if notify_on_cancel is None else notify_on_cancel
        self._http_client = http_client

    async def _post(self, body: Dict) -> None:
        if self._http_client is not None:
            response = await self._http_client.post(self.url, json=body, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=body)
        response.raise_for_status()

    async def notify_completion(self, owner_id: str, notice: CompletionNotice) -> None:
        await self._post({
            "type": "bulk_operation_complete",
            "owner_id": owner_id,
            "title": completion_title(notice),
            "message": completion_message(notice),
            "data": notice.model_dump(),
        })

    async def notify_cancelled(self, owner_id: str, notice: CompletionNotice) -> None:
        if not self.notify_on_cancel:
            return
        await self._post({
            "type": "bulk_operation_cancelled",
            "owner_id": owner_id,
            "title": f"Cancelled: {notice.operation_type}",
            "message": completion_message(notice),
            "data": notice.model_dump(),
        })

    async def notify_failure(self, owner_id: str, operation_type: str, error_message: str) -> None:
        await self._post({
            "type": "bulk_operation_failed",
            "owner_id": owner_id,
            "title": f"Failed: {operation_type}",
            "message": error_message,
            "data": {"operation_type": operation_type, "error_message": error_message},
        })


def default_notifier() -> Notifier:
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookNotifier(settings.NOTIFY_WEBHOOK_URL)
    return LoggingNotifier()
