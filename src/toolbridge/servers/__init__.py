"""Runnable stdio tool servers."""
