"""Kernel services: flush-only persistence helpers used by the workflow service."""
