"""Queueline: two-stage ticket queue service."""
