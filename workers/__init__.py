"""Temporal workers."""
