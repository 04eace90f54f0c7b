"""Generation relay: one HTTP surface over several AI media providers."""

__version__ = "0.1.0"
