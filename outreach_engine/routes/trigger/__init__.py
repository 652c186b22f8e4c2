"""
Trigger routes package.

This package contains organized trigger management endpoints:
- crud.py: Create, list, get and update triggers
- history.py: Execution history for a trigger
"""

from flask import Blueprint

# Create the main trigger blueprint
trigger_bp = Blueprint('trigger', __name__)

# Import all route modules to register them
from . import crud
from . import history

# Export the blueprint
__all__ = ['trigger_bp']
