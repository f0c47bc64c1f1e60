"""Shared utilities for the integration engine."""
