"""Version information for SetupDeck."""

__version__ = "0.1.0"
