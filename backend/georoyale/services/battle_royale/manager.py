"""Battle royale session registry and elimination round flow.

All sessions live in this process only. Every public method takes the
manager lock, so a read-mutate-broadcast sequence is never interleaved with
another handler or with a round timer.
"""
import logging
import math
import random
import string
import threading
from typing import Any, Callable, Dict, List, Optional

from georoyale.errors import InvalidInput, NotAuthorized, SessionConflict, SessionNotFound
from .notifier import SessionNotifier
from .scheduler import RoundScheduler
from .scoring import haversine_km, score_for_distance
from .session import ACTIVE, FINISHED, WAITING, Guess, Player, Round, Session, utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
DIFFICULTIES = ('easy', 'medium', 'hard', 'mixed')

LocationProvider = Callable[..., List[Dict[str, Any]]]


def generate_session_code(length: int = 6) -> str:
    """Random short code; uniqueness is the caller's job."""
    return ''.join(random.choices(CODE_ALPHABET, k=length))


class BattleRoyaleManager:

    def __init__(
        self,
        notifier: SessionNotifier,
        scheduler: RoundScheduler,
        location_provider: LocationProvider,
        max_players: int = 50,
        min_players: int = 2,
        max_rounds: int = 10,
        round_duration: int = 30,
        elimination_rate: float = 0.2,
        round_break: int = 3,
        waiting_room_timeout: int = 120,
        session_retention: int = 600,
        code_length: int = 6,
    ):
        self.notifier = notifier
        self.scheduler = scheduler
        self.location_provider = location_provider
        self.max_players = max_players
        self.min_players = min_players
        self.max_rounds = max_rounds
        self.round_duration = round_duration
        self.elimination_rate = elimination_rate
        self.round_break = round_break
        self.waiting_room_timeout = waiting_room_timeout
        self.session_retention = session_retention
        self.code_length = code_length
        self.sessions: Dict[str, Session] = {}
        self.player_sessions: Dict[Any, str] = {}  # user id -> session code
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config, notifier, scheduler, location_provider):
        return cls(
            notifier=notifier,
            scheduler=scheduler,
            location_provider=location_provider,
            max_players=int(config.get('BR_MAX_PLAYERS', 50)),
            min_players=int(config.get('BR_MIN_PLAYERS', 2)),
            max_rounds=int(config.get('BR_MAX_ROUNDS', 10)),
            round_duration=int(config.get('BR_ROUND_DURATION_SEC', 30)),
            elimination_rate=float(config.get('BR_ELIMINATION_RATE', 0.2)),
            round_break=int(config.get('BR_ROUND_BREAK_SEC', 3)),
            waiting_room_timeout=int(config.get('BR_WAITING_ROOM_TIMEOUT_SEC', 120)),
            session_retention=int(config.get('BR_SESSION_RETENTION_SEC', 600)),
            code_length=int(config.get('BR_CODE_LENGTH', 6)),
        )

    # ---- Registry ----

    def _new_code(self) -> str:
        code = generate_session_code(self.code_length)
        while code in self.sessions:
            logger.warning(f"[code-collision] code={code} regenerating")
            code = generate_session_code(self.code_length)
        return code

    def _setting(self, settings: dict, key: str, default):
        value = settings.get(key)
        return default if value is None else value

    def _normalize_settings(self, settings: Optional[dict]) -> dict:
        if settings is None:
            settings = {}
        if not isinstance(settings, dict):
            raise InvalidInput('settings must be an object')

        difficulty = self._setting(settings, 'difficulty', 'mixed')
        if not isinstance(difficulty, str) or difficulty not in DIFFICULTIES:
            raise InvalidInput(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
        category = self._setting(settings, 'category', 'mixed')
        if not isinstance(category, str) or not category.strip():
            raise InvalidInput('category must be a non-empty string')

        try:
            max_rounds = int(self._setting(settings, 'max_rounds', self.max_rounds))
            round_duration = int(self._setting(settings, 'round_duration', self.round_duration))
            elimination_rate = float(self._setting(settings, 'elimination_rate', self.elimination_rate))
        except (TypeError, ValueError, OverflowError):
            raise InvalidInput('max_rounds, round_duration and elimination_rate must be numbers')

        if not 1 <= max_rounds <= self.max_rounds:
            raise InvalidInput(f'max_rounds must be between 1 and {self.max_rounds}')
        if not 5 <= round_duration <= 300:
            raise InvalidInput('round_duration must be between 5 and 300 seconds')
        if not 0 < elimination_rate < 1:
            raise InvalidInput('elimination_rate must be between 0 and 1')

        return {
            'difficulty': difficulty,
            'category': category,
            'max_rounds': max_rounds,
            'round_duration': round_duration,
            'elimination_rate': elimination_rate,
        }

    def create_session(self, owner_id, owner_name: str, settings: Optional[dict] = None) -> Session:
        normalized = self._normalize_settings(settings)
        requested_rounds = normalized.pop('max_rounds')
        locations = self.location_provider(
            requested_rounds,
            difficulty=normalized['difficulty'],
            category=normalized['category'],
        )
        if len(locations) < requested_rounds:
            raise SessionConflict('Not enough locations available for session')

        with self._lock:
            previous = self.player_sessions.get(owner_id)
            if previous:
                self.leave_session(previous, owner_id)
            code = self._new_code()
            session = Session(
                code=code,
                creator_id=owner_id,
                settings=normalized,
                locations=list(locations[:requested_rounds]),
                max_rounds=requested_rounds,
            )
            self.sessions[code] = session
            self._bind_player(session, owner_id, owner_name, sid=None)
            logger.info(f"[session-create] session={code} creator={owner_id} rounds={requested_rounds}")

        self.scheduler.schedule((code, 'waiting', 0), self.waiting_room_timeout, self._expire_waiting, code)
        return session

    def get_session(self, code: str) -> Session:
        session = self.sessions.get((code or '').upper())
        if not session:
            raise SessionNotFound(code)
        return session

    def get_leaderboard(self, code: str) -> List[Dict[str, Any]]:
        with self._lock:
            return self.get_session(code).leaderboard()

    def session_for_user(self, user_id) -> Optional[Session]:
        code = self.player_sessions.get(user_id)
        return self.sessions.get(code) if code else None

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            sessions = list(self.sessions.values())
            return {
                'total_sessions': len(sessions),
                'waiting_sessions': sum(1 for s in sessions if s.status == WAITING),
                'active_sessions': sum(1 for s in sessions if s.status == ACTIVE),
                'finished_sessions': sum(1 for s in sessions if s.status == FINISHED),
                'total_players': sum(len(s.players) for s in sessions),
                'connected_players': sum(1 for s in sessions for p in s.players if p.connected),
                'bound_users': len(self.player_sessions),
            }

    # ---- Membership ----

    def _bind_player(self, session: Session, user_id, username, sid) -> Player:
        player = session.add_player(user_id, username, sid=sid)
        self.player_sessions[user_id] = session.code
        return player

    def join_session(self, code: str, user_id, username: str, sid=None) -> Session:
        with self._lock:
            session = self.get_session(code)
            if session.status != WAITING:
                raise SessionConflict('Session is not accepting new players')

            existing = session.find_player(user_id)
            if existing:
                existing.sid = sid
                existing.connected = sid is not None
                logger.info(f"[session-rejoin] session={session.code} user={user_id}")
                return session

            if len(session.players) >= self.max_players:
                raise SessionConflict('Session is full')

            previous = self.player_sessions.get(user_id)
            if previous and previous != session.code:
                self.leave_session(previous, user_id)

            player = self._bind_player(session, user_id, username, sid)
            logger.info(f"[session-join] session={session.code} user={user_id} players={len(session.players)}")
            self.notifier.to_session(session.code, 'player-joined', {
                'player': player.to_dict(),
                'total_players': len(session.players),
            }, skip_sid=sid)
            return session

    def leave_session(self, code: str, user_id) -> bool:
        with self._lock:
            session = self.sessions.get((code or '').upper())
            if not session:
                return False
            player = session.find_player(user_id)
            if not player:
                return False

            if session.status == WAITING:
                session.remove_player(user_id)
                self.player_sessions.pop(user_id, None)
                logger.info(f"[session-leave] session={session.code} user={user_id} players={len(session.players)}")
                self.notifier.to_session(session.code, 'player-left', {
                    'user_id': user_id,
                    'username': player.username,
                    'total_players': len(session.players),
                })
                if user_id == session.creator_id or not session.players:
                    self.cancel_session(session.code, 'creator_left' if user_id == session.creator_id else 'empty')
                return True

            player.connected = False
            player.sid = None
            logger.info(f"[session-disconnect] session={session.code} user={user_id} status={session.status}")
            self.notifier.to_session(session.code, 'player-left', {
                'user_id': user_id,
                'username': player.username,
                'total_players': len(session.players),
            })
            if session.status == ACTIVE:
                self._end_round_if_complete(session)
            return True

    def handle_disconnect(self, user_id, sid=None) -> bool:
        """Drop whatever session the user is bound to, if the socket matches."""
        with self._lock:
            session = self.session_for_user(user_id)
            if not session:
                return False
            player = session.find_player(user_id)
            if player and sid is not None and player.sid != sid:
                # Seat is bound to another socket, or to none yet
                return False
            return self.leave_session(session.code, user_id)

    # ---- Lifecycle ----

    def start_session(self, code: str, requester_id) -> Session:
        with self._lock:
            session = self.get_session(code)
            if session.creator_id != requester_id:
                raise NotAuthorized('Only session creator can start the game')
            if session.status != WAITING:
                raise SessionConflict('Session already started or finished')
            if len(session.players) < self.min_players:
                raise SessionConflict(f'Need at least {self.min_players} players to start')

            session.status = ACTIVE
            session.started_at = utcnow()
            session.current_round = 1
            logger.info(f"[session-start] session={session.code} players={len(session.players)}")
            self.notifier.to_session(session.code, 'session-started', {
                'session': session.to_dict(),
                'message': 'Battle Royale has begun!',
            })
            self.start_round(session.code)
            return session

    def cancel_session(self, code: str, reason: str = 'unknown') -> bool:
        with self._lock:
            session = self.sessions.pop((code or '').upper(), None)
            if not session:
                return False
            for p in session.players:
                if self.player_sessions.get(p.user_id) == session.code:
                    self.player_sessions.pop(p.user_id, None)
            logger.info(f"[session-cancel] session={session.code} reason={reason}")
            self.notifier.to_session(session.code, 'session-ended', {
                'code': session.code,
                'cancelled': True,
                'reason': reason,
                'winner': None,
                'leaderboard': session.leaderboard(),
            })
            self.notifier.close_session(session.code)
            return True

    def purge_session(self, code: str) -> bool:
        with self._lock:
            session = self.sessions.get(code)
            if not session or session.status != FINISHED:
                return False
            del self.sessions[code]
            logger.info(f"[session-purge] session={code}")
            return True

    def _expire_waiting(self, code: str) -> None:
        with self._lock:
            session = self.sessions.get(code)
            if session and session.status == WAITING:
                self.cancel_session(code, 'timeout')

    # ---- Rounds ----

    def start_round(self, code: str) -> Optional[Round]:
        with self._lock:
            session = self.sessions.get(code)
            if not session or session.status != ACTIVE:
                return None
            if len(session.rounds) >= session.current_round:
                # Round already started
                return session.round()

            location = session.locations[session.current_round - 1]
            duration = session.settings['round_duration']
            rnd = Round(session.current_round, location, duration, len(session.alive_players()))
            session.rounds.append(rnd)
            logger.info(f"[round-start] session={code} round={rnd.number} alive={rnd.players_alive}")
            self.notifier.to_session(code, 'round-started', {
                'round': rnd.number,
                'max_rounds': session.max_rounds,
                'location': rnd.public_location(),
                'duration': duration,
                'players_alive': rnd.players_alive,
                'started_at': rnd.started_at.isoformat(),
            })
            self.scheduler.schedule((code, 'round', rnd.number), duration, self.end_round, code, rnd.number)
            return rnd

    def submit_guess(self, code: str, user_id, latitude, longitude) -> Dict[str, Any]:
        try:
            lat = float(latitude)
            lon = float(longitude)
        except (TypeError, ValueError):
            raise InvalidInput('latitude and longitude must be numbers')
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            raise InvalidInput('Coordinates out of range')

        with self._lock:
            session = self.get_session(code)
            if session.status != ACTIVE:
                raise SessionConflict('Session is not active')
            player = session.find_player(user_id)
            if not player:
                raise SessionConflict('Player is not in this session')
            if not player.is_alive:
                raise SessionConflict('Player has been eliminated')
            rnd = session.round()
            if not rnd or not rnd.is_open:
                raise SessionConflict('No active round')
            if user_id in rnd.guesses:
                raise SessionConflict('Already submitted guess for this round')

            target = rnd.location
            distance = haversine_km(lat, lon, target['latitude'], target['longitude'])
            guess = Guess(user_id, lat, lon, distance, score_for_distance(distance))
            rnd.guesses[user_id] = guess
            player.guesses[rnd.number] = guess
            player.score += guess.score
            logger.info(f"[guess] session={session.code} round={rnd.number} user={user_id} distance={distance:.1f}km score={guess.score}")

            result = dict(guess.to_dict(), round=rnd.number, total_score=player.score)
            self.notifier.to_socket(player.sid, 'guess-confirmed', result)
            self.notifier.to_session(session.code, 'guess-submitted', {
                'user_id': user_id,
                'username': player.username,
                'round': rnd.number,
                'guess_count': len(rnd.guesses),
            }, skip_sid=player.sid)

            self._end_round_if_complete(session)
            return result

    def _end_round_if_complete(self, session: Session) -> None:
        rnd = session.round()
        if not rnd or not rnd.is_open:
            return
        pending = [p for p in session.alive_players() if p.connected and p.user_id not in rnd.guesses]
        if not pending:
            self.end_round(session.code, rnd.number)

    def _select_eliminations(self, session: Session, rnd: Round) -> List[Player]:
        alive = session.alive_players()
        missing = [p for p in alive if p.user_id not in rnd.guesses]
        guessed = [p for p in alive if p.user_id in rnd.guesses]
        eliminated = list(missing)
        if len(guessed) > 2:
            count = max(1, math.floor(len(guessed) * session.settings['elimination_rate']))
            # Lowest round score first; later joiners lose ties
            ranked = sorted(guessed, key=lambda p: (rnd.guesses[p.user_id].score, -p.join_index))
            eliminated.extend(ranked[:count])
        return eliminated

    def end_round(self, code: str, expected_round: Optional[int] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            session = self.sessions.get(code)
            if not session or session.status != ACTIVE:
                return None
            rnd = session.round()
            if not rnd or not rnd.is_open:
                return None
            if expected_round is not None and rnd.number != expected_round:
                logger.info(f"[round-end-skip] session={code} expected={expected_round} actual={rnd.number}")
                return None

            rnd.ended_at = utcnow()
            eliminated = self._select_eliminations(session, rnd)
            for p in eliminated:
                p.is_alive = False
                rnd.eliminated.append(p.user_id)

            leaderboard = session.leaderboard()
            ranks = {entry['user_id']: entry['rank'] for entry in leaderboard}
            remaining = len(session.alive_players())
            logger.info(f"[round-end] session={code} round={rnd.number} eliminated={len(eliminated)} remaining={remaining}")

            for p in eliminated:
                self.notifier.to_session(code, 'player-eliminated', {
                    'user_id': p.user_id,
                    'username': p.username,
                    'round': rnd.number,
                    'final_score': p.score,
                    'final_rank': ranks.get(p.user_id),
                    'missed_guess': p.user_id not in rnd.guesses,
                })

            result = {
                'round': rnd.number,
                'location': dict(rnd.location),
                'guesses': [g.to_dict() for g in rnd.guesses.values()],
                'eliminated': [{'user_id': p.user_id, 'username': p.username, 'final_score': p.score} for p in eliminated],
                'remaining': remaining,
                'leaderboard': leaderboard,
            }
            self.notifier.to_session(code, 'round-ended', result)

            if remaining <= 1 or session.current_round >= session.max_rounds:
                self.end_session(code)
            else:
                session.current_round += 1
                self.scheduler.run_after((code, 'break', session.current_round), self.round_break, self.start_round, code)
            return result

    def _pick_winner(self, session: Session) -> Optional[Player]:
        alive = session.alive_players()
        if not alive:
            return None
        # max() keeps the first of equal scores, i.e. the earliest joiner
        return max(alive, key=lambda p: p.score)

    def end_session(self, code: str) -> Optional[Session]:
        with self._lock:
            session = self.sessions.get(code)
            if not session or session.status != ACTIVE:
                return None
            session.status = FINISHED
            session.finished_at = utcnow()
            session.winner = self._pick_winner(session)
            for p in session.players:
                if self.player_sessions.get(p.user_id) == session.code:
                    self.player_sessions.pop(p.user_id, None)

            winner = session.winner
            logger.info(f"[session-end] session={code} rounds={session.current_round} winner={winner.user_id if winner else None}")
            self.notifier.to_session(code, 'session-ended', {
                'code': code,
                'cancelled': False,
                'winner': winner.to_dict() if winner else None,
                'leaderboard': session.leaderboard(),
                'total_rounds': len(session.rounds),
                'message': f"{winner.username} wins the Battle Royale!" if winner else 'Battle Royale ended with no winner',
            })
            self.notifier.close_session(code)
            self.scheduler.schedule((code, 'purge', 0), self.session_retention, self.purge_session, code)
            return session
