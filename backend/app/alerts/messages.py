"""
messages.py — Rendering of alert notifications for SMS and email.

SMS and email carry the same facts; the email adds layout and actions.

═══════════════════════════════════════════════════════════════════════════
SMS TEMPLATE
═══════════════════════════════════════════════════════════════════════════

    🚨 EMERGENCY ALERT 🚨

    MEDICAL EMERGENCY

    From: Jane Doe
    Phone: +15550001111            (only if the user has a phone)
    Message: fell, need help       (only if given)

    Location:                      (only with coordinates)
    40.7128, -74.006
    Maps: https://maps.google.com/?q=40.7128,-74.006
    Address: 5th Ave               (only if given)

    Time: 2024-05-01 14:03:10 UTC

    This is an automated emergency alert from Sentinel Safety App. ...

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 EMERGENCY ALERT - {name} needs help
    Body:
        ┌─────────────────────────────────────────┐
        │  🚨 EMERGENCY ALERT                      │
        ├─────────────────────────────────────────┤
        │  [ MEDICAL EMERGENCY ]                    │
        │  From / Phone / Message / Time rows       │
        │  📍 Location panel (coordinates only)     │
        │  [Call {name}] [Call Emergency Services]  │
        └─────────────────────────────────────────┘

Everything the user typed is HTML-escaped before it reaches the markup.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from backend.app.alerts.models import AlertType, EmergencyAlert
from backend.app.core.config import settings
from backend.app.users.models import UserIdentity

ALERT_TYPE_LABELS: Dict[AlertType, str] = {
    AlertType.GENERAL:          "General Emergency",
    AlertType.MEDICAL:          "Medical Emergency",
    AlertType.VIOLENCE:         "Violence/Assault",
    AlertType.HARASSMENT:       "Harassment",
    AlertType.STALKING:         "Stalking",
    AlertType.ACCIDENT:         "Accident",
    AlertType.FIRE:             "Fire Emergency",
    AlertType.NATURAL_DISASTER: "Natural Disaster",
}

SMS_FOOTER = (
    "This is an automated emergency alert from Sentinel Safety App. "
    "Please respond immediately."
)


@dataclass(frozen=True)
class EmailContent:
    subject: str
    text: str
    html: str


def alert_label(alert_type: AlertType) -> str:
    return ALERT_TYPE_LABELS.get(AlertType(alert_type), "Emergency")


def maps_link(latitude: float, longitude: float) -> str:
    return f"{settings.MAPS_BASE_URL}{latitude},{longitude}"


def format_timestamp(value: Optional[datetime] = None) -> str:
    """Render a timestamp in the configured alert timezone."""
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(ZoneInfo(settings.ALERT_TIMEZONE))
    return local.strftime("%Y-%m-%d %H:%M:%S %Z")


def format_sms(alert: EmergencyAlert, user: UserIdentity) -> str:
    lines = [
        "🚨 EMERGENCY ALERT 🚨",
        "",
        alert_label(alert.alert_type).upper(),
        "",
        f"From: {user.name}",
    ]
    if user.phone:
        lines.append(f"Phone: {user.phone}")
    if alert.message:
        lines.append(f"Message: {alert.message}")

    if alert.has_location:
        lines += [
            "",
            "Location:",
            f"{alert.latitude}, {alert.longitude}",
            f"Maps: {maps_link(alert.latitude, alert.longitude)}",
        ]
        if alert.address:
            lines.append(f"Address: {alert.address}")

    lines += ["", f"Time: {format_timestamp(alert.created_at)}", "", SMS_FOOTER]
    return "\n".join(lines)


def format_test_sms(user: UserIdentity, sent_at: Optional[datetime] = None) -> str:
    return (
        "🧪 TEST ALERT from Sentinel Safety App\n\n"
        f"This is a test message from {user.name}.\n\n"
        "Your emergency contact system is working correctly. No action required.\n\n"
        f"Sent at: {format_timestamp(sent_at)}"
    )


def email_subject(user: UserIdentity) -> str:
    return f"🚨 EMERGENCY ALERT - {user.name} needs help"


_STYLE = """
    body { font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }
    .container { max-width: 600px; margin: 0 auto; background-color: white; border-radius: 8px; overflow: hidden; }
    .header { background-color: #E53E3E; color: white; padding: 20px; text-align: center; }
    .content { padding: 30px; }
    .alert-type { background-color: #FED7D7; color: #C53030; padding: 10px; border-radius: 5px; margin: 20px 0; font-weight: bold; text-align: center; }
    .info-row { margin: 15px 0; padding: 10px; background-color: #f8f9fa; border-left: 4px solid #E53E3E; }
    .location-box { background-color: #E6FFFA; border: 1px solid #38A169; border-radius: 5px; padding: 15px; margin: 20px 0; }
    .footer { background-color: #f8f9fa; padding: 20px; text-align: center; font-size: 12px; color: #666; }
    .button { display: inline-block; background-color: #E53E3E; color: white; padding: 12px 24px; text-decoration: none; border-radius: 5px; margin: 10px 5px; }
"""


def _row(label: str, value_html: str) -> str:
    return f'<div class="info-row"><strong>{label}:</strong> {value_html}</div>'


def _build_html_body(alert: EmergencyAlert, user: UserIdentity) -> str:
    esc = html.escape
    name = esc(user.name)

    rows = [_row("From", name)]
    if user.phone:
        phone = esc(user.phone)
        rows.append(_row("Phone", f'<a href="tel:{phone}">{phone}</a>'))
    if alert.message:
        rows.append(_row("Message", esc(alert.message)))
    rows.append(_row("Time", esc(format_timestamp(alert.created_at))))

    location = ""
    if alert.has_location:
        link = esc(maps_link(alert.latitude, alert.longitude))
        address = (
            f"<p><strong>Address:</strong> {esc(alert.address)}</p>" if alert.address else ""
        )
        location = (
            '<div class="location-box">'
            "<h3>📍 Location Information</h3>"
            f"<p><strong>Coordinates:</strong> {alert.latitude}, {alert.longitude}</p>"
            f"{address}"
            f'<p><a href="{link}" class="button">View on Google Maps</a></p>'
            "</div>"
        )

    actions = []
    if user.phone:
        actions.append(f'<a href="tel:{esc(user.phone)}" class="button">Call {name}</a>')
    emergency = esc(settings.EMERGENCY_SERVICES_NUMBER)
    actions.append(f'<a href="tel:{emergency}" class="button">Call Emergency Services</a>')

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Emergency Alert</title>
  <style>{_STYLE}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>🚨 EMERGENCY ALERT</h1>
      <p>Immediate attention required</p>
    </div>
    <div class="content">
      <div class="alert-type">{esc(alert_label(alert.alert_type).upper())}</div>
      {''.join(rows)}
      {location}
      <div style="text-align: center; margin: 30px 0;">{''.join(actions)}</div>
    </div>
    <div class="footer">
      <p>This is an automated emergency alert from Sentinel Safety App.</p>
      <p>Please respond immediately or contact emergency services if needed.</p>
    </div>
  </div>
</body>
</html>
"""


def format_email(alert: EmergencyAlert, user: UserIdentity) -> EmailContent:
    return EmailContent(
        subject=email_subject(user),
        text=format_sms(alert, user),
        html=_build_html_body(alert, user),
    )
