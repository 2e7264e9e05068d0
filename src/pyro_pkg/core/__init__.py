"""Shared infrastructure: errors, settings, cancellation and file writes."""
