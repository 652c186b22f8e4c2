"""
Sequence engine services package.

This package contains organized sequence engine functionality:
- core.py: SequenceEngine class wiring the modules below together
- enrollment.py: Enrollment state machine and step scheduling
- timezone.py: Lead timezone detection and local-time helpers
- delay_calculator.py: Due time computation inside business windows
- message_formatter.py: Personalization and A/B variant content
- step_executor.py: Email, task, wait, conditional, webhook and LinkedIn steps
"""

from .core import SequenceEngine

__all__ = ['SequenceEngine']
