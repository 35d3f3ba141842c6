"""
alerts — Emergency alert records, delivery and lifecycle.

Sub-modules:
    channels/    — SMS (Twilio) and email (SendGrid) senders
    models       — enums and records shared across the package
    orm          — emergency_alerts table
    store        — persistence and status transitions
    messages     — SMS / email rendering
    dispatcher   — sequential per-contact fan-out + in-memory delivery log
    lifecycle    — trigger / status / acknowledgement orchestration
"""
