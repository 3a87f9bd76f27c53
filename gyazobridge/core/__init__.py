"""Core synchronization logic."""
