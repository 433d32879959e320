"""
Storage Module.

Responsibilities:
- Append-only log of harmful judgments
"""

from .event_log import EventLog
