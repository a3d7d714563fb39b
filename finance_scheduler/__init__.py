"""
Finance Reminder Scheduler - Source Package

Computes due dates for recurring financial obligations and keeps a
notification hub in sync with the reminders those dates require.

DESIGN PRINCIPLES:
1. Recurrence rules are immutable values; evaluation is a pure function
2. The hub is reconciled by diff, never blindly rewritten
3. One failed reminder never blocks the others
4. Every sync is auditable
5. Storage and hub are swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Reminder Scheduler Team"
