"""
Trigger engine services package.

- core.py: TriggerEngine, event ingestion and trigger matching
- triggers.py: Trigger validation and CRUD
- action_dispatcher.py: ActionDispatcher and per-action handlers
"""

from .core import TriggerEngine
from .action_dispatcher import ActionDispatcher

__all__ = ['TriggerEngine', 'ActionDispatcher']
