"""Stateless services behind the registration views and webhook."""
