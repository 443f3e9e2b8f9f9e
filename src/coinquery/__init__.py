"""coinquery - natural-language questions over crypto market and Kadena data."""

__version__ = "0.3.0"
