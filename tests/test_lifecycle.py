"""
Tests for the alert lifecycle controller.

Covers:
  - Trigger: no-contacts guard, pending → sent, contact snapshot, police flag
  - Background dispatch result and realtime room subscription
  - Owner-only status updates with notes
  - Recipient acknowledgement and the hub relay
  - Single-contact test alerts kept out of history and stats
  - History / detail enrichment after a contact is deleted

Run with: pytest tests/test_lifecycle.py -v
"""

import pytest

from backend.app.alerts.lifecycle import AlertLifecycleController
from backend.app.alerts.models import AlertRequest, AlertStatus, AlertType, DeliveryOutcome
from backend.app.alerts.store import AlertStore
from backend.app.contacts.directory import ContactDirectory
from backend.app.core.errors import NoContactsError, NotFoundError, OwnershipError
from backend.app.realtime.hub import BroadcastHub, alert_room
from tests.helpers import FakeConnection, make_contact, make_user


async def _never_authenticates(token):
    raise AssertionError("not used")


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub(_never_authenticates)


@pytest.fixture
def lifecycle(dispatcher, hub) -> AlertLifecycleController:
    return AlertLifecycleController(dispatcher, hub)


def _request(**overrides) -> AlertRequest:
    defaults = dict(alert_type=AlertType.MEDICAL, message="Help", latitude=1.0, longitude=2.0)
    defaults.update(overrides)
    return AlertRequest(**defaults)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Trigger
# ═══════════════════════════════════════════════════════════════════════════

class TestTrigger:
    async def test_no_contacts_stores_nothing(self, session, lifecycle):
        user = await make_user(session)
        with pytest.raises(NoContactsError):
            await lifecycle.trigger(session, user, _request())
        assert await AlertStore(session).list_by_user(user.id, include_tests=True) == []

    async def test_inactive_contacts_do_not_count(self, session, lifecycle):
        user = await make_user(session)
        contact = await make_contact(session, user)
        await ContactDirectory(session).update(contact, is_active=False)
        with pytest.raises(NoContactsError):
            await lifecycle.trigger(session, user, _request())

    async def test_trigger_marks_sent_and_dispatches(self, session, lifecycle, dispatcher, sms_sender):
        user = await make_user(session)
        second = await make_contact(session, user, name="Second", phone="+15550000002", priority=2)
        first = await make_contact(
            session, user, name="First", phone="+15550000001", priority=1,
            email="first@example.com",
        )

        alert, task = await lifecycle.trigger(session, user, _request())
        assert alert.status is AlertStatus.SENT
        assert alert.contacts_notified == [first.id, second.id]
        assert alert.police_contacted is False
        assert "timestamp" in alert.metadata

        attempts = await task
        assert len(attempts) == 3
        assert [m["to"] for m in sms_sender.sent] == ["+15550000001", "+15550000002"]
        assert dispatcher.delivery_log.summary(alert.id)["attempts"] == 3

    async def test_sent_even_when_every_delivery_fails(self, session, dispatcher, hub, sms_sender):
        sms_sender.fail_for = {"+15552220001"}
        lifecycle = AlertLifecycleController(dispatcher, hub)
        user = await make_user(session)
        await make_contact(session, user)

        alert, task = await lifecycle.trigger(session, user, _request())
        attempts = await task
        assert alert.status is AlertStatus.SENT
        assert [a.outcome for a in attempts] == [DeliveryOutcome.FAILED]
        stored = await AlertStore(session).find_by_id(alert.id)
        assert stored.status is AlertStatus.SENT

    async def test_police_flag_from_request_or_settings(self, session, lifecycle):
        user = await make_user(session, name="Cautious User", auto_contact_police=True)
        await make_contact(session, user)
        alert, task = await lifecycle.trigger(session, user, _request(contact_police=False))
        await task
        assert alert.police_contacted is True

        other = await make_user(session, name="Other User")
        await make_contact(session, other, phone="+15552220009")
        alert, task = await lifecycle.trigger(session, other, _request(contact_police=True))
        await task
        assert alert.police_contacted is True

    async def test_owner_joins_alert_room(self, session, lifecycle, hub):
        user = await make_user(session)
        await make_contact(session, user)
        alert, task = await lifecycle.trigger(session, user, _request())
        await task
        assert user.id in hub.room_members(alert_room(alert.id))


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Status & acknowledgement
# ═══════════════════════════════════════════════════════════════════════════

class TestStatus:
    async def _alert(self, session, lifecycle):
        user = await make_user(session)
        await make_contact(session, user)
        alert, task = await lifecycle.trigger(session, user, _request())
        await task
        return user, alert

    async def test_owner_update_with_notes(self, session, lifecycle):
        user, alert = await self._alert(session, lifecycle)
        updated = await lifecycle.update_status(session, user, alert.id, "resolved", "All good")
        assert updated.status is AlertStatus.RESOLVED
        assert updated.resolved_at is not None
        assert updated.metadata["notes"] == "All good"
        assert updated.metadata["statusUpdatedBy"] == user.id
        assert "timestamp" in updated.metadata

    async def test_non_owner_forbidden(self, session, lifecycle):
        _, alert = await self._alert(session, lifecycle)
        intruder = await make_user(session, name="Intruder")
        with pytest.raises(OwnershipError):
            await lifecycle.update_status(session, intruder, alert.id, "resolved")

    async def test_unknown_alert(self, session, lifecycle):
        user = await make_user(session)
        with pytest.raises(NotFoundError):
            await lifecycle.update_status(session, user, "missing", "resolved")

    async def test_status_pushed_to_room(self, session, lifecycle, hub):
        user, alert = await self._alert(session, lifecycle)
        conn = FakeConnection()
        await hub.register(user, conn)
        await hub.join(user.id, alert_room(alert.id))

        await lifecycle.update_status(session, user, alert.id, "delivered")
        assert conn.last("alert-status")["status"] == "delivered"

    async def test_acknowledge_via_relay(self, session_factory, lifecycle):
        async with session_factory() as s:
            owner = await make_user(s)
            await make_contact(s, owner)
            recipient = await make_user(s, name="Recipient")
            alert, task = await lifecycle.trigger(s, owner, _request())
            await task
            await s.commit()

        relay = lifecycle.make_ack_relay(session_factory)
        acked = await relay(alert.id, recipient)
        assert acked.status is AlertStatus.ACKNOWLEDGED

        async with session_factory() as s:
            stored = await AlertStore(s).find_by_id(alert.id)
        assert stored.acknowledged_at is not None
        assert stored.metadata["acknowledgedBy"] == recipient.id
        assert stored.metadata["acknowledgedByName"] == "Recipient"

    async def test_acknowledge_unknown_alert(self, session, lifecycle):
        user = await make_user(session)
        with pytest.raises(NotFoundError):
            await lifecycle.acknowledge(session, "missing", user)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Test alerts & reads
# ═══════════════════════════════════════════════════════════════════════════

class TestSendTest:
    async def test_first_contact_only(self, session, lifecycle, sms_sender, email_sender):
        user = await make_user(session)
        first = await make_contact(session, user, name="First", email="f@example.com")
        await make_contact(session, user, name="Second", phone="+15550000002", priority=2)

        alert, contact, attempts = await lifecycle.send_test(session, user)
        assert contact.id == first.id
        assert alert.is_test is True
        assert alert.metadata["isTest"] is True
        assert len(attempts) == 1
        assert len(sms_sender.sent) == 1
        assert email_sender.sent == []

    async def test_excluded_from_history_and_stats(self, session, lifecycle):
        user = await make_user(session)
        await make_contact(session, user)
        await lifecycle.send_test(session, user)

        assert await lifecycle.history(session, user) == []
        assert (await lifecycle.stats(session, user))["total"] == 0

    async def test_no_contacts(self, session, lifecycle):
        user = await make_user(session)
        with pytest.raises(NoContactsError) as exc_info:
            await lifecycle.send_test(session, user)
        assert "test the system" in exc_info.value.message


class TestReads:
    async def test_history_skips_deleted_contacts(self, session, lifecycle):
        user = await make_user(session)
        keep = await make_contact(session, user, name="Keep", phone="+15550000001")
        gone = await make_contact(session, user, name="Gone", phone="+15550000002", priority=2)
        alert, task = await lifecycle.trigger(session, user, _request())
        await task
        await ContactDirectory(session).remove(gone)

        history = await lifecycle.history(session, user)
        assert history[0]["id"] == alert.id
        assert history[0]["contactNames"] == ["Keep"]
        assert history[0]["contactsNotified"] == [keep.id, gone.id]

        detail = await lifecycle.detail(session, user, alert.id)
        assert [d["name"] for d in detail["contactDetails"]] == ["Keep"]
        assert detail["contactDetails"][0]["phoneNumber"] == "+15550000001"

    async def test_deliveries_owner_only(self, session, lifecycle):
        user = await make_user(session)
        await make_contact(session, user)
        alert, task = await lifecycle.trigger(session, user, _request())
        await task

        trail = await lifecycle.deliveries(session, user, alert.id)
        assert trail["summary"]["attempts"] == 1
        assert trail["attempts"][0]["channel"] == "sms"

        other = await make_user(session, name="Other User")
        with pytest.raises(OwnershipError):
            await lifecycle.deliveries(session, other, alert.id)
