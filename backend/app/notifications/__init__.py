"""
notifications — Multi-channel notification fan-out for tourists.

Sub-modules:
    channels/   — Per-channel delivery backends (Expo push, SMTP email, Twilio SMS)
    dispatcher  — Core orchestration: preference filter, chunking, OR-reduction
    history     — Bounded per-recipient delivery log + statistics
    proximity   — Nearby-recipient resolution over last-known locations
    recipients  — User directory + recipient assembly
    registry    — Push-token registry keyed by user id
    service     — Exposed operations used by the REST layer
    models      — Data structures shared across the system
"""
