"""
Notification client.

Talks to the small mail-sending service with JSON POSTs. Calls are
fire-and-report: they return True on a 2xx response and False on any
transport error or error status. Nothing is retried here; callers decide
whether a failure needs a rollback.
"""

import logging

import httpx

logger = logging.getLogger(__name__)

SHARE_INVITATION_PATH = "/api/notifications/send-share-invitation"
FORM_UPDATE_PATH = "/api/notifications/notify-form-update"


class NotificationClient:
    """Sends share invitations and shared-form update notices."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> bool:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    path,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
            return True
        except httpx.TimeoutException:
            logger.warning(f"Notification service timed out on {path}")
            return False
        except httpx.HTTPStatusError as e:
            logger.warning(f"Notification service returned {e.response.status_code} on {path}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Notification request to {path} failed: {e}")
            return False

    async def send_share_invitation(
        self,
        recipient_email: str,
        owner_email: str,
        form_id: str,
    ) -> bool:
        """Email a collaborator that a draft was shared with them."""
        return await self._post(SHARE_INVITATION_PATH, {
            "recipientEmail": recipient_email,
            "ownerEmail": owner_email,
            "formId": form_id,
        })

    async def send_form_update_notice(
        self,
        updated_by: str,
        shared_with: list[str],
        form_id: str,
    ) -> bool:
        """Tell everyone on a shared draft that it changed."""
        if not shared_with:
            return True
        return await self._post(FORM_UPDATE_PATH, {
            "formId": form_id,
            "updatedBy": updated_by,
            "sharedWith": list(shared_with),
        })


def get_notification_client() -> NotificationClient:
    """Client for the configured notification service."""
    from onboarding.config import settings

    return NotificationClient(
        settings.notification_service_url,
        timeout=settings.notification_timeout_seconds,
    )
