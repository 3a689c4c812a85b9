"""Persistent state for update targets.

This package provides:
- GenerationStore: append-only generation log plus the atomic active pointer
- SessionArchive: audit history of finished update sessions
"""
