"""
channels — Per-channel delivery backends.

Each channel module exposes:
    a sender class with ``async send(...) -> provider message id``
    ``build_*_sender(settings)`` → sender, or None when unconfigured

Senders raise TransportError on failure. Ordering, pacing and
simulation live in the dispatcher.
"""
