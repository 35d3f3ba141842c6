"""
contacts — Per-user emergency contact directory.

Sub-modules:
    models     — Relationship enum and the EmergencyContact record
    orm        — emergency_contacts table
    directory  — ordered listing, CRUD and statistics
"""
