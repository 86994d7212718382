"""Shared helpers: structured logging and bit-string conversions."""
