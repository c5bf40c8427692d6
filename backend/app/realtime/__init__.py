"""
realtime — Live event fan-out to connected tourists and the dashboard.

Modules:
    broadcaster — Broadcaster interface + no-op implementation
    manager     — WebSocket connection registry implementing Broadcaster
"""
