"""SetupDeck utility library."""
