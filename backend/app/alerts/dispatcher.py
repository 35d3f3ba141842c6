"""
dispatcher.py — Fan-out of one alert to a user's emergency contacts.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    for contact in contacts (priority order):
        1. SMS   → contact.phone_number      (always)
        2. Email → contact.email             (only if present)
        3. pause INTER_CONTACT_DELAY_SECONDS (not after the last contact)

    Each channel send becomes exactly one DeliveryAttempt:

        sender configured, send ok      → success   (provider id kept)
        sender configured, send raises  → failed    (error text kept)
        sender not configured           → simulated (logged only)

    A failure on one channel or contact never stops the loop. Delivery is
    strictly sequential; the pause keeps provider rate limits happy, and
    nothing bounds total time beyond each transport's own timeout.

═══════════════════════════════════════════════════════════════════════════
BACKGROUND EXECUTION
═══════════════════════════════════════════════════════════════════════════

``spawn`` starts ``dispatch`` as an asyncio task and returns immediately, so
the HTTP response does not wait for delivery. Task references are kept
until the task finishes (the event loop only holds weak references).
``drain`` waits for every in-flight task; the app calls it on shutdown.

Delivery results are not written back to the alert record. They are kept
in the in-memory DeliveryLog, which is lost on restart and keeps only the
most recent ``DELIVERY_LOG_MAX_ALERTS`` alerts.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from backend.app.alerts.channels.email_alert import EmailSender
from backend.app.alerts.channels.sms_gateway import SmsSender
from backend.app.alerts.messages import EmailContent, format_email, format_sms, format_test_sms
from backend.app.alerts.models import (
    DeliveryAttempt,
    DeliveryChannel,
    DeliveryOutcome,
    EmergencyAlert,
)
from backend.app.contacts.models import EmergencyContact
from backend.app.core.errors import TransportError
from backend.app.core.logging_config import mask_phone
from backend.app.users.models import UserIdentity

logger = logging.getLogger(__name__)

INTER_CONTACT_DELAY_SECONDS = 1.0
DEFAULT_MAX_LOGGED_ALERTS = 1000

SleepFn = Callable[[float], Awaitable[Any]]


# ═══════════════════════════════════════════════════════════════════════════
# Delivery Log (in-memory)
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryLog:
    """
    Per-alert record of delivery attempts, appended as they happen.

    Holds at most ``max_alerts`` alerts; recording for a new alert beyond
    that evicts the alert whose attempts were first recorded longest ago.
    """

    def __init__(self, max_alerts: int = DEFAULT_MAX_LOGGED_ALERTS) -> None:
        if max_alerts < 1:
            raise ValueError("max_alerts must be at least 1")
        self.max_alerts = max_alerts
        self._attempts: "OrderedDict[str, List[DeliveryAttempt]]" = OrderedDict()

    def record(self, attempt: DeliveryAttempt) -> None:
        attempts = self._attempts.get(attempt.alert_id)
        if attempts is None:
            attempts = self._attempts[attempt.alert_id] = []
            while len(self._attempts) > self.max_alerts:
                evicted, _ = self._attempts.popitem(last=False)
                logger.debug("Delivery log full; dropped attempts for alert %s", evicted)
        attempts.append(attempt)

    def __len__(self) -> int:
        return len(self._attempts)

    def for_alert(self, alert_id: str) -> List[DeliveryAttempt]:
        return list(self._attempts.get(alert_id, []))

    def summary(self, alert_id: str) -> Dict[str, Any]:
        """Counts per channel and outcome for one alert (live during dispatch)."""
        attempts = self._attempts.get(alert_id, [])
        by_channel: Dict[str, Dict[str, int]] = {}
        for a in attempts:
            counts = by_channel.setdefault(a.channel.value, {o.value: 0 for o in DeliveryOutcome})
            counts[a.outcome.value] += 1
        return {
            "alertId": alert_id,
            "attempts": len(attempts),
            "contactsReached": len({
                a.contact_id for a in attempts if a.outcome is not DeliveryOutcome.FAILED
            }),
            "byChannel": by_channel,
        }

    def stats(self) -> Dict[str, Any]:
        """Outcome counts across all non-test attempts."""
        outcomes: Counter = Counter()
        alerts = 0
        for attempts in self._attempts.values():
            real = [a for a in attempts if not a.is_test]
            if real:
                alerts += 1
            outcomes.update(a.outcome.value for a in real)
        return {
            "alerts": alerts,
            "attempts": sum(outcomes.values()),
            **{o.value: outcomes.get(o.value, 0) for o in DeliveryOutcome},
        }

    def clear(self) -> None:
        self._attempts.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:
    """
    Sends an alert to contacts over SMS and email.

    Parameters
    ----------
    sms_sender, email_sender
        Channel senders; ``None`` means the channel is unconfigured and
        deliveries on it are simulated.
    delivery_log : DeliveryLog | None
        Where attempts are recorded (a private log if omitted).
    sleep : callable
        Awaitable used for the inter-contact pause; tests pass a recorder.
    """

    def __init__(
        self,
        sms_sender: Optional[SmsSender] = None,
        email_sender: Optional[EmailSender] = None,
        delivery_log: Optional[DeliveryLog] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.sms_sender = sms_sender
        self.email_sender = email_sender
        self.delivery_log = delivery_log if delivery_log is not None else DeliveryLog()
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def channel_status(self) -> Dict[str, str]:
        return {
            DeliveryChannel.SMS.value: "configured" if self.sms_sender else "simulated",
            DeliveryChannel.EMAIL.value: "configured" if self.email_sender else "simulated",
        }

    # ── single-channel sends ──

    def _finish(
        self,
        alert: EmergencyAlert,
        contact: EmergencyContact,
        channel: DeliveryChannel,
        outcome: DeliveryOutcome,
        *,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            alert_id=alert.id,
            contact_id=contact.id,
            contact_name=contact.name,
            channel=channel,
            outcome=outcome,
            provider_message_id=message_id,
            error=error,
            is_test=alert.is_test,
        )
        self.delivery_log.record(attempt)
        log = logger.warning if outcome is DeliveryOutcome.FAILED else logger.info
        log(
            "[%s] alert %s → %s: %s",
            channel.value.upper(), alert.id, contact.name, outcome.value,
            extra={
                "alert_id": alert.id,
                "contact_id": contact.id,
                "channel": channel.value,
                "outcome": outcome.value,
            },
        )
        return attempt

    async def _send_sms(
        self, alert: EmergencyAlert, contact: EmergencyContact, body: str,
    ) -> DeliveryAttempt:
        channel = DeliveryChannel.SMS
        if self.sms_sender is None:
            logger.debug(
                "SMS service not available - simulating send to %s",
                mask_phone(contact.phone_number),
            )
            return self._finish(alert, contact, channel, DeliveryOutcome.SIMULATED)
        try:
            message_id = await self.sms_sender.send(body, contact.phone_number)
        except TransportError as exc:
            return self._finish(alert, contact, channel, DeliveryOutcome.FAILED, error=exc.message)
        except Exception as exc:
            logger.exception("Unexpected SMS sender error for alert %s", alert.id)
            return self._finish(alert, contact, channel, DeliveryOutcome.FAILED, error=str(exc))
        return self._finish(alert, contact, channel, DeliveryOutcome.SUCCESS, message_id=message_id)

    async def _send_email(
        self, alert: EmergencyAlert, contact: EmergencyContact, content: EmailContent,
    ) -> DeliveryAttempt:
        channel = DeliveryChannel.EMAIL
        if self.email_sender is None:
            logger.debug("Email service not available - simulating send to %s", contact.email)
            return self._finish(alert, contact, channel, DeliveryOutcome.SIMULATED)
        try:
            message_id = await self.email_sender.send(
                contact.email, content.subject, content.text, content.html,
            )
        except TransportError as exc:
            return self._finish(alert, contact, channel, DeliveryOutcome.FAILED, error=exc.message)
        except Exception as exc:
            logger.exception("Unexpected email sender error for alert %s", alert.id)
            return self._finish(alert, contact, channel, DeliveryOutcome.FAILED, error=str(exc))
        return self._finish(
            alert, contact, channel, DeliveryOutcome.SUCCESS, message_id=message_id or None,
        )

    # ── public API ──

    async def dispatch(
        self,
        alert: EmergencyAlert,
        contacts: Sequence[EmergencyContact],
        user: UserIdentity,
    ) -> List[DeliveryAttempt]:
        """Notify every contact in order; returns one attempt per channel send."""
        sms_body = format_sms(alert, user)
        email = format_email(alert, user)
        attempts: List[DeliveryAttempt] = []

        for index, contact in enumerate(contacts):
            if index:
                await self._sleep(INTER_CONTACT_DELAY_SECONDS)
            attempts.append(await self._send_sms(alert, contact, sms_body))
            if contact.email:
                attempts.append(await self._send_email(alert, contact, email))

        failed = sum(1 for a in attempts if a.outcome is DeliveryOutcome.FAILED)
        logger.info(
            "Alert %s dispatched to %d contacts: %d attempts, %d failed",
            alert.id, len(contacts), len(attempts), failed,
            extra={"alert_id": alert.id},
        )
        return attempts

    def spawn(
        self,
        alert: EmergencyAlert,
        contacts: Sequence[EmergencyContact],
        user: UserIdentity,
    ) -> asyncio.Task:
        """Run ``dispatch`` in the background and return its task handle."""
        task = asyncio.create_task(
            self.dispatch(alert, list(contacts), user), name=f"dispatch-{alert.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(alert.id, t))
        return task

    def _on_done(self, alert_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Dispatch for alert %s was cancelled", alert_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Failed to send notifications for alert %s: %s", alert_id, exc,
                exc_info=exc, extra={"alert_id": alert_id},
            )
        else:
            logger.info("Notifications sent for alert %s", alert_id, extra={"alert_id": alert_id})

    async def send_test(
        self,
        alert: EmergencyAlert,
        contact: EmergencyContact,
        user: UserIdentity,
    ) -> List[DeliveryAttempt]:
        """Send the marked test SMS to one contact."""
        attempt = await self._send_sms(alert, contact, format_test_sms(user))
        return [attempt]

    async def drain(self) -> None:
        """Wait for all in-flight dispatch tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        for sender in (self.sms_sender, self.email_sender):
            close = getattr(sender, "close", None)
            if close is not None:
                await close()
