"""Core configuration and logging for SetupDeck."""
