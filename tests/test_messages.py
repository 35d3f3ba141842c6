"""
Tests for SMS / email rendering.

Covers:
  - SMS header, type label, sender lines and footer
  - Location block only when coordinates are present
  - Optional phone / message / address lines
  - Email subject, HTML escaping and call buttons
  - Marked test message

Run with: pytest tests/test_messages.py -v
"""

from datetime import datetime, timezone

from backend.app.alerts.messages import (
    SMS_FOOTER,
    alert_label,
    email_subject,
    format_email,
    format_sms,
    format_test_sms,
    format_timestamp,
    maps_link,
)
from backend.app.alerts.models import AlertType, EmergencyAlert
from backend.app.users.models import UserIdentity

FIXED_TIME = datetime(2024, 5, 1, 14, 3, 10, tzinfo=timezone.utc)


def _make_user(**overrides) -> UserIdentity:
    defaults = dict(id="u-1", name="Jane Doe", phone="+15550001111")
    defaults.update(overrides)
    return UserIdentity(**defaults)


def _make_alert(**overrides) -> EmergencyAlert:
    defaults = dict(
        user_id="u-1",
        alert_type=AlertType.MEDICAL,
        message="Fell down the stairs",
        latitude=40.7128,
        longitude=-74.006,
        address="5th Ave",
        created_at=FIXED_TIME,
    )
    defaults.update(overrides)
    return EmergencyAlert(**defaults)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: SMS
# ═══════════════════════════════════════════════════════════════════════════

class TestSms:
    def test_full_body(self):
        body = format_sms(_make_alert(), _make_user())
        lines = body.split("\n")
        assert lines[0] == "🚨 EMERGENCY ALERT 🚨"
        assert "MEDICAL EMERGENCY" in lines
        assert "From: Jane Doe" in lines
        assert "Phone: +15550001111" in lines
        assert "Message: Fell down the stairs" in lines
        assert "40.7128, -74.006" in lines
        assert "Maps: https://maps.google.com/?q=40.7128,-74.006" in lines
        assert "Address: 5th Ave" in lines
        assert "Time: 2024-05-01 14:03:10 UTC" in lines
        assert lines[-1] == SMS_FOOTER

    def test_no_location_block_without_coordinates(self):
        body = format_sms(_make_alert(latitude=None, longitude=None), _make_user())
        assert "Location:" not in body
        assert "Maps:" not in body
        assert "Address:" not in body

    def test_optional_lines_omitted(self):
        body = format_sms(_make_alert(message=None), _make_user(phone=None))
        assert "Phone:" not in body
        assert "Message:" not in body

    def test_every_type_has_label(self):
        for alert_type in AlertType:
            assert alert_label(alert_type) != "Emergency"
        assert alert_label(AlertType.VIOLENCE) == "Violence/Assault"
        assert alert_label("natural_disaster") == "Natural Disaster"


class TestHelpers:
    def test_maps_link(self):
        assert maps_link(1.5, -2.25) == "https://maps.google.com/?q=1.5,-2.25"

    def test_naive_timestamp_treated_as_utc(self):
        naive = FIXED_TIME.replace(tzinfo=None)
        assert format_timestamp(naive) == format_timestamp(FIXED_TIME)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Email
# ═══════════════════════════════════════════════════════════════════════════

class TestEmail:
    def test_subject(self):
        assert email_subject(_make_user()) == "🚨 EMERGENCY ALERT - Jane Doe needs help"

    def test_text_matches_sms(self):
        alert, user = _make_alert(), _make_user()
        assert format_email(alert, user).text == format_sms(alert, user)

    def test_user_input_is_escaped(self):
        alert = _make_alert(message="<script>alert(1)</script>", address="A & B")
        user = _make_user(name="<b>Eve</b>")
        content = format_email(alert, user).html
        assert "<script>" not in content
        assert "&lt;script&gt;" in content
        assert "A &amp; B" in content
        assert "&lt;b&gt;Eve&lt;/b&gt;" in content

    def test_call_buttons(self):
        content = format_email(_make_alert(), _make_user()).html
        assert 'href="tel:+15550001111"' in content
        assert "Call Jane Doe" in content
        assert 'href="tel:911"' in content

    def test_no_caller_button_without_phone(self):
        content = format_email(_make_alert(), _make_user(phone=None)).html
        assert "Call Jane Doe" not in content
        assert "Call Emergency Services" in content

    def test_location_box_only_with_coordinates(self):
        with_loc = format_email(_make_alert(), _make_user()).html
        without = format_email(_make_alert(latitude=None, longitude=None), _make_user()).html
        assert "View on Google Maps" in with_loc
        assert 'class="location-box"' not in without


class TestTestMessage:
    def test_marked_as_test(self):
        body = format_test_sms(_make_user(), sent_at=FIXED_TIME)
        assert body.startswith("🧪 TEST ALERT")
        assert "This is a test message from Jane Doe." in body
        assert "No action required." in body
        assert body.endswith("Sent at: 2024-05-01 14:03:10 UTC")
