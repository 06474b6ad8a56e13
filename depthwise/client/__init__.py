"""Client side: HTTP client, in-memory graph controller and focus view."""
