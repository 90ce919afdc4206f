"""External service integrations (billing provider, community platform)."""
