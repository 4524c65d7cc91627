"""Roster Store - persisted roster, settings, countdown record and notes."""

from .roster_store import RosterStore, DEFAULT_PHASES

__all__ = ['RosterStore', 'DEFAULT_PHASES']
