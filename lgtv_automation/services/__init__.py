"""TV-facing services: wake packets, webOS client, stores and host events."""
