"""In-memory battle royale session state.

Nothing here is persisted: the manager owns these objects and every
mutation goes through it.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

WAITING = 'waiting'
ACTIVE = 'active'
FINISHED = 'finished'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Guess:
    def __init__(self, user_id, latitude, longitude, distance_km, score):
        self.user_id = user_id
        self.latitude = latitude
        self.longitude = longitude
        self.distance_km = distance_km
        self.score = score
        self.submitted_at = utcnow()

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'distance_km': round(self.distance_km, 3),
            'score': self.score,
            'submitted_at': _iso(self.submitted_at),
        }


class Player:
    def __init__(self, user_id, username, join_index, sid=None):
        self.user_id = user_id
        self.username = username
        self.join_index = join_index
        self.sid = sid
        self.score = 0
        self.is_alive = True
        self.connected = sid is not None
        self.joined_at = utcnow()
        self.guesses: Dict[int, Guess] = {}  # round number -> guess

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'score': self.score,
            'is_alive': self.is_alive,
            'connected': self.connected,
        }


class Round:
    def __init__(self, number, location, duration, players_alive):
        self.number = number
        self.location = location
        self.duration = duration
        self.players_alive = players_alive
        self.started_at = utcnow()
        self.ended_at: Optional[datetime] = None
        self.guesses: Dict[Any, Guess] = {}  # user id -> guess
        self.eliminated: List[Any] = []

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def public_location(self):
        # Coordinates stay server side until the round is over
        return {k: v for k, v in self.location.items() if k not in ('latitude', 'longitude')}

    def to_dict(self):
        data = {
            'round': self.number,
            'location': self.public_location(),
            'duration': self.duration,
            'players_alive': self.players_alive,
            'started_at': _iso(self.started_at),
            'ended_at': _iso(self.ended_at),
            'guess_count': len(self.guesses),
        }
        if not self.is_open:
            data['location'] = dict(self.location)
            data['eliminated'] = list(self.eliminated)
        return data


class Session:
    def __init__(self, code, creator_id, settings, locations, max_rounds):
        self.code = code
        self.creator_id = creator_id
        self.settings = settings
        self.locations = locations
        self.max_rounds = max_rounds
        self.status = WAITING
        self.players: List[Player] = []
        self.current_round = 0
        self.rounds: List[Round] = []
        self.created_at = utcnow()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.winner: Optional[Player] = None
        self._next_join_index = 0

    def find_player(self, user_id) -> Optional[Player]:
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def add_player(self, user_id, username, sid=None) -> Player:
        player = Player(user_id, username, self._next_join_index, sid=sid)
        self._next_join_index += 1
        self.players.append(player)
        return player

    def remove_player(self, user_id) -> Optional[Player]:
        player = self.find_player(user_id)
        if player:
            self.players.remove(player)
        return player

    def alive_players(self) -> List[Player]:
        return [p for p in self.players if p.is_alive]

    def round(self) -> Optional[Round]:
        """The round matching current_round, if it has been started."""
        if self.current_round and len(self.rounds) >= self.current_round:
            return self.rounds[self.current_round - 1]
        return None

    def leaderboard(self) -> List[Dict[str, Any]]:
        # sorted() is stable and players are kept in join order
        ranked = sorted(self.players, key=lambda p: -p.score)
        return [dict(p.to_dict(), rank=i + 1) for i, p in enumerate(ranked)]

    def summary(self):
        return {
            'code': self.code,
            'status': self.status,
            'settings': dict(self.settings),
            'max_rounds': self.max_rounds,
            'created_at': _iso(self.created_at),
        }

    def to_dict(self):
        current = self.round()
        return {
            'code': self.code,
            'creator_id': self.creator_id,
            'status': self.status,
            'current_round': self.current_round,
            'max_rounds': self.max_rounds,
            'settings': dict(self.settings),
            'players': [p.to_dict() for p in self.players],
            'round': current.to_dict() if current else None,
            'created_at': _iso(self.created_at),
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
            'winner': self.winner.to_dict() if self.winner else None,
        }
