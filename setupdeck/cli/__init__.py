"""Command line interface for SetupDeck."""
