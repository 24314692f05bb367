"""Event bus, streaming subscriptions, replay and SSE formatting."""
