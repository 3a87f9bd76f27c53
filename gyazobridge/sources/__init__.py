"""Adapters for the remote image service and the local note vault."""
