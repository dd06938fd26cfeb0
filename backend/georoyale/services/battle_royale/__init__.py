"""Battle royale domain services: session registry, rounds, timers.

Transport code (HTTP routes, socket handlers) talks to the manager only;
the manager pushes events out through the notifier.
"""
from .manager import BattleRoyaleManager, generate_session_code
from .notifier import SessionNotifier, session_room
from .scheduler import RoundScheduler

__all__ = [
    'BattleRoyaleManager',
    'RoundScheduler',
    'SessionNotifier',
    'generate_session_code',
    'session_room',
]
