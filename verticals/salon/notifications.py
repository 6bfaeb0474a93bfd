"""Transactional e-mail through Resend.

Notifications are fire-and-forget: a failed send is logged and reported as
``False`` but never raised, so it cannot roll back the booking or order
that triggered it. Inside a request the send is queued on FastAPI's
``BackgroundTasks`` and therefore runs after the response (and the
session commit).
"""

import asyncio
import logging
from typing import Any

import resend
from fastapi import BackgroundTasks

from core.engine.template_engine import TemplateEngine
from core.settings import EMAIL_FROM_ADDRESS, RESEND_API_KEY

logger = logging.getLogger(__name__)


class EmailNotifier:
    def __init__(
        self,
        api_key: str,
        from_address: str,
        background_tasks: BackgroundTasks | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.background_tasks = background_tasks

    async def send(self, template: str, to: str | None, context: dict[str, Any]) -> bool:
        """Render ``template`` and deliver it to ``to``.

        Returns True when the message was handed over (or queued).
        """
        if not to:
            logger.info("No recipient, e-mail skipped", extra={"template": template})
            return False
        email = TemplateEngine.render(template, context)
        payload = {
            "from": self.from_address,
            "to": [to],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
        }
        if self.background_tasks is not None:
            self.background_tasks.add_task(self._safe_deliver, template, payload)
            return True
        return await self._safe_deliver(template, payload)

    async def _safe_deliver(self, template: str, payload: dict[str, Any]) -> bool:
        try:
            await self._deliver(payload)
        except Exception as exc:
            logger.error(
                "E-mail send failed",
                extra={"template": template, "to": payload["to"][0], "error": str(exc)},
            )
            return False
        logger.info("E-mail sent", extra={"template": template})
        return True

    async def _deliver(self, payload: dict[str, Any]) -> None:
        if not self.api_key:
            raise RuntimeError("RESEND_API_KEY not configured")
        resend.api_key = self.api_key
        await asyncio.to_thread(resend.Emails.send, payload)

    # -- Convenience wrappers --

    async def booking_confirmation(self, appointment: dict[str, Any]) -> bool:
        return await self.send("booking_confirmation", appointment.get("customer_email"), appointment)

    async def booking_cancellation(self, appointment: dict[str, Any]) -> bool:
        return await self.send("booking_cancellation", appointment.get("customer_email"), appointment)

    async def order_confirmation(self, order: dict[str, Any]) -> bool:
        return await self.send("order_confirmation", order.get("customer_email"), order)


def get_notifier(background_tasks: BackgroundTasks) -> EmailNotifier:
    """FastAPI dependency: sends after the response has been produced."""
    return EmailNotifier(RESEND_API_KEY, EMAIL_FROM_ADDRESS, background_tasks)
