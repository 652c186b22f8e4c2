"""
Scheduler services package.

This package contains the sweep scheduler:
- core.py: SweepScheduler class, thread lifecycle and main loop
- step_runner.py: Claiming and executing due scheduled work
"""

from .core import SweepScheduler, get_sweep_scheduler

# Export the main scheduler class and function
__all__ = ['SweepScheduler', 'get_sweep_scheduler']
