"""Birth-Book: normalization and import of birth-event records."""

__version__ = "1.0.0"
