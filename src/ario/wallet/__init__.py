"""Credential normalization and message signing."""
