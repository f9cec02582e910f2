"""CLI package for colloquy."""

from .app import app, run_conversation, apply_overrides, RunResult

__all__ = [
    'app',
    'run_conversation',
    'apply_overrides',
    'RunResult'
]
