"""Concert registration, ticketing and AI portrait apps for Django."""

__version__ = "0.1.0"
