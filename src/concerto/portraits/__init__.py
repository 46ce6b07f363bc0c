"""Paid AI portrait generation from an uploaded photo."""
