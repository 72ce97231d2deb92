"""Shared helpers: environment parsing, file IO, field mapping, logging."""
