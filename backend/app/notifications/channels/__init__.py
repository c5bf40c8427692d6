"""
channels — Per-channel delivery backends.

Each channel module exposes:
    • a provider interface (PushProvider / EmailTransport / SmsProvider)
    • a simulation implementation used in development and tests
    • a production implementation (Expo HTTP API / SMTP / Twilio REST)
    • the pure rendering helpers for that channel's message format

Providers raise ChannelDeliveryError; the dispatcher turns every raise
into a failed DispatchResult. Concurrency limits and timeouts live in
the dispatcher, not here.
"""
