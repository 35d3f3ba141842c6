"""
users — Identity boundary consumed by the alerting core.

Sub-modules:
    orm     — users / user_settings tables
    models  — UserIdentity, the read-only view the core works with
    store   — keyed lookups and creation
"""
