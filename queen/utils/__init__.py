"""Shared helpers: structured logging, webhook signatures, closing keywords."""
