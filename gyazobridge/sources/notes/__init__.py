"""Markdown note codec and vault store."""

from .markdown import NoteStore

__all__ = ["NoteStore"]
