"""
Temporal Module

Logical clock injection for deterministic timestamps.
"""

from .clock import LogicalClock, ClockExhausted

__all__ = ["LogicalClock", "ClockExhausted"]
