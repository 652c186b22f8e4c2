"""
Sequence routes package.

This package contains organized sequence functionality:
- enrollments.py: Enrolling leads and pausing, resuming or removing enrollments
- processing.py: Sweep entry point for an external cron
"""

from flask import Blueprint

# Create the main sequence blueprint
sequence_bp = Blueprint('sequence', __name__)

# Import all route modules to register them
from . import enrollments
from . import processing

# Export the blueprint
__all__ = ['sequence_bp']
