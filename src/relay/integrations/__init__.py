"""Integrations with external collaborators."""
