"""Shared helpers used across the quillagent package."""
