"""Shared helpers for termbridge."""
