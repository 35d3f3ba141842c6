"""
realtime — Presence tracking and room-based live broadcast over WebSockets.

Sub-modules:
    hub  — BroadcastHub: presence map, rooms, inbound event handling
"""
