# taskweave/core/triggers/__init__.py
"""
Automatic workflow starts.

Main components:
- TriggerManager: arms scheduled and conditional policies as loop timers
- parse_schedule: builds a policy from a name plus string or mapping data
- calculate_next_run / next_fire_time: DST-aware fire time calculation

Example usage:
    from taskweave.core.triggers import parse_schedule

    policy = parse_schedule('scheduled', '{"pattern": {"type": "interval", "minutes": 5}}')
    await app.set_schedule_async('nightly-report', policy)
"""

from taskweave.core.triggers.calculator import calculate_next_run, next_fire_time
from taskweave.core.triggers.manager import TriggerManager, parse_schedule

__all__ = [
    'TriggerManager',
    'parse_schedule',
    'calculate_next_run',
    'next_fire_time',
]
