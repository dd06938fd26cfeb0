import pytest

from georoyale.errors import InvalidInput, NotAuthorized, SessionConflict, SessionNotFound
from georoyale.services.battle_royale import BattleRoyaleManager, RoundScheduler
from georoyale.services.battle_royale import manager as manager_module


class FakeNotifier:
    def __init__(self):
        self.events = []

    def to_session(self, code, event, payload, skip_sid=None):
        self.events.append(('session', code, event, payload))

    def to_socket(self, sid, event, payload):
        self.events.append(('socket', sid, event, payload))

    def close_session(self, code):
        self.events.append(('close', code, None, None))

    def names(self, event):
        return [e for e in self.events if e[2] == event]


def fixed_locations(count, difficulty=None, category=None):
    # Round N is played at (0, 30 * N)
    return [
        {'id': i, 'name': f'Loc {i}', 'country': 'Nowhere', 'difficulty': 'easy', 'category': 'urban',
         'latitude': 0.0, 'longitude': 30.0 * i}
        for i in range(1, count + 1)
    ]


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def br(notifier):
    return BattleRoyaleManager(
        notifier=notifier,
        scheduler=RoundScheduler(None, enabled=False),
        location_provider=fixed_locations,
        max_players=4,
        min_players=2,
        max_rounds=3,
        elimination_rate=0.25,
    )


def _lobby(br, *names):
    """Create a session owned by the first name and join the rest, all with sockets."""
    owner = names[0]
    session = br.create_session(owner, owner.title())
    br.join_session(session.code, owner, owner.title(), sid=f'sid-{owner}')
    for name in names[1:]:
        br.join_session(session.code, name, name.title(), sid=f'sid-{name}')
    return session


def _exact(br, session, user_id):
    loc = session.round().location
    return br.submit_guess(session.code, user_id, loc['latitude'], loc['longitude'])


def _off_by(br, session, user_id, degrees):
    loc = session.round().location
    return br.submit_guess(session.code, user_id, loc['latitude'], loc['longitude'] + degrees)


def test_create_session_defaults(br):
    session = br.create_session('alice', 'Alice')
    assert session.status == 'waiting'
    assert len(session.code) == 6
    assert session.max_rounds == 3
    assert [p.user_id for p in session.players] == ['alice']
    assert session.players[0].connected is False
    assert session.winner is None
    assert br.get_session(session.code.lower()) is session


def test_session_codes_are_collision_checked(br, monkeypatch):
    codes = iter(['AAAAAA', 'AAAAAA', 'BBBBBB'])
    monkeypatch.setattr(manager_module, 'generate_session_code', lambda length=6: next(codes))
    first = br.create_session('alice', 'Alice')
    second = br.create_session('bob', 'Bob')
    assert first.code == 'AAAAAA'
    assert second.code == 'BBBBBB'


def test_get_unknown_session(br):
    with pytest.raises(SessionNotFound):
        br.get_session('NOPE42')
    with pytest.raises(SessionNotFound):
        br.get_leaderboard('NOPE42')


def test_invalid_settings_rejected(br):
    with pytest.raises(InvalidInput):
        br.create_session('alice', 'Alice', {'max_rounds': 99})
    with pytest.raises(InvalidInput):
        br.create_session('alice', 'Alice', {'difficulty': 'impossible'})
    with pytest.raises(InvalidInput):
        br.create_session('alice', 'Alice', {'elimination_rate': 1.5})


def test_not_enough_locations(notifier):
    br = BattleRoyaleManager(
        notifier=notifier,
        scheduler=RoundScheduler(None, enabled=False),
        location_provider=lambda count, **kw: fixed_locations(1),
        max_rounds=3,
    )
    with pytest.raises(SessionConflict):
        br.create_session('alice', 'Alice')


def test_start_requires_creator_and_waiting(br):
    session = _lobby(br, 'alice', 'bob')
    with pytest.raises(NotAuthorized):
        br.start_session(session.code, 'bob')
    br.start_session(session.code, 'alice')
    assert session.status == 'active'
    assert session.started_at is not None
    assert session.current_round == 1
    with pytest.raises(SessionConflict):
        br.start_session(session.code, 'alice')


def test_start_requires_min_players(br):
    session = _lobby(br, 'alice')
    with pytest.raises(SessionConflict):
        br.start_session(session.code, 'alice')
    assert session.status == 'waiting'


def test_join_rules(br):
    session = _lobby(br, 'alice', 'bob', 'cara', 'dan')
    with pytest.raises(SessionConflict):
        br.join_session(session.code, 'erin', 'Erin', sid='sid-erin')
    # Rejoining refreshes the socket instead of adding a seat
    br.join_session(session.code, 'bob', 'Bob', sid='sid-bob-2')
    assert len(session.players) == 4
    assert session.find_player('bob').sid == 'sid-bob-2'
    br.start_session(session.code, 'alice')
    with pytest.raises(SessionConflict):
        br.join_session(session.code, 'bob', 'Bob', sid='sid-bob-3')


def test_joining_another_session_leaves_the_first(br):
    first = _lobby(br, 'alice', 'bob')
    second = _lobby(br, 'cara')
    br.join_session(second.code, 'bob', 'Bob', sid='sid-bob')
    assert first.find_player('bob') is None
    assert second.find_player('bob') is not None
    assert br.session_for_user('bob') is second


def test_leave_waiting_room(br, notifier):
    session = _lobby(br, 'alice', 'bob')
    assert br.leave_session(session.code, 'bob') is True
    assert [p.user_id for p in session.players] == ['alice']
    assert notifier.names('player-left')
    # Creator leaving cancels the session
    assert br.leave_session(session.code, 'alice') is True
    with pytest.raises(SessionNotFound):
        br.get_session(session.code)
    ended = notifier.names('session-ended')[-1][3]
    assert ended['cancelled'] is True
    assert ended['reason'] == 'creator_left'


def test_leaderboard_ties_follow_join_order(br):
    session = _lobby(br, 'alice', 'bob', 'cara')
    session.find_player('cara').score = 100
    board = br.get_leaderboard(session.code)
    assert [e['user_id'] for e in board] == ['cara', 'alice', 'bob']
    assert [e['rank'] for e in board] == [1, 2, 3]
    session.find_player('alice').score = 100
    board = br.get_leaderboard(session.code)
    assert [e['user_id'] for e in board] == ['alice', 'cara', 'bob']


def test_guess_validation(br):
    session = _lobby(br, 'alice', 'bob', 'cara')
    br.start_session(session.code, 'alice')
    with pytest.raises(InvalidInput):
        br.submit_guess(session.code, 'alice', 123.0, 0.0)
    with pytest.raises(InvalidInput):
        br.submit_guess(session.code, 'alice', 'north', 0.0)
    with pytest.raises(SessionConflict):
        br.submit_guess(session.code, 'mallory', 0.0, 0.0)
    result = _exact(br, session, 'alice')
    assert result['score'] == 5000
    assert result['round'] == 1
    with pytest.raises(SessionConflict):
        _exact(br, session, 'alice')


def test_guess_before_start_rejected(br):
    session = _lobby(br, 'alice', 'bob')
    with pytest.raises(SessionConflict):
        br.submit_guess(session.code, 'alice', 0.0, 0.0)


def test_guess_notifications(br, notifier):
    session = _lobby(br, 'alice', 'bob', 'cara')
    br.start_session(session.code, 'alice')
    started = notifier.names('round-started')[-1][3]
    assert started['round'] == 1
    assert 'latitude' not in started['location']
    _exact(br, session, 'bob')
    confirmed = notifier.names('guess-confirmed')[-1]
    assert confirmed[0] == 'socket' and confirmed[1] == 'sid-bob'
    assert confirmed[3]['total_score'] == 5000
    submitted = notifier.names('guess-submitted')[-1][3]
    assert submitted == {'user_id': 'bob', 'username': 'Bob', 'round': 1, 'guess_count': 1}


def test_full_elimination_flow(br, notifier):
    session = _lobby(br, 'alice', 'bob', 'cara', 'dan')
    br.start_session(session.code, 'alice')

    # Round 1: dan is furthest away and goes out
    _exact(br, session, 'alice')
    _off_by(br, session, 'bob', 1)
    _off_by(br, session, 'cara', 5)
    assert session.current_round == 1
    _off_by(br, session, 'dan', 20)
    assert session.current_round == 2
    assert session.find_player('dan').is_alive is False
    assert session.status == 'active'
    with pytest.raises(SessionConflict):
        _exact(br, session, 'dan')

    # Round 2: cara is furthest away and goes out
    _exact(br, session, 'alice')
    _exact(br, session, 'bob')
    _off_by(br, session, 'cara', 40)
    assert session.find_player('cara').is_alive is False
    assert session.current_round == 3
    assert session.winner is None

    # Round 3: two guessers left, nobody else is cut, max rounds reached
    _exact(br, session, 'alice')
    _off_by(br, session, 'bob', 2)
    assert session.status == 'finished'
    assert session.finished_at is not None
    assert session.winner.user_id == 'alice'
    assert session.find_player('bob').is_alive is True
    assert len(session.rounds) == 3

    eliminated = [e[3]['user_id'] for e in notifier.names('player-eliminated')]
    assert eliminated == ['dan', 'cara']
    ended = notifier.names('session-ended')[-1][3]
    assert ended['winner']['user_id'] == 'alice'
    assert ended['total_rounds'] == 3
    assert br.session_for_user('alice') is None


def test_elimination_ties_cut_later_joiner(br):
    session = _lobby(br, 'alice', 'bob', 'cara')
    br.start_session(session.code, 'alice')
    _exact(br, session, 'alice')
    _off_by(br, session, 'bob', 10)
    _off_by(br, session, 'cara', 10)
    assert session.find_player('cara').is_alive is False
    assert session.find_player('bob').is_alive is True


def test_disconnected_player_is_eliminated(br, notifier):
    session = _lobby(br, 'alice', 'bob', 'cara')
    br.start_session(session.code, 'alice')
    _exact(br, session, 'alice')
    assert br.handle_disconnect('cara', 'sid-cara') is True
    assert session.find_player('cara').connected is False
    _exact(br, session, 'bob')
    # Everyone still connected has guessed, so the round closed
    assert session.current_round == 2
    cara = session.find_player('cara')
    assert cara.is_alive is False
    assert cara.score == 0
    missed = [e[3] for e in notifier.names('player-eliminated') if e[3]['user_id'] == 'cara']
    assert missed[0]['missed_guess'] is True


def test_stale_disconnect_ignored(br):
    session = _lobby(br, 'alice', 'bob')
    br.join_session(session.code, 'bob', 'Bob', sid='sid-bob-new')
    assert br.handle_disconnect('bob', 'sid-bob') is False
    assert session.find_player('bob') is not None


def test_last_player_standing_wins_early(br):
    session = _lobby(br, 'alice', 'bob')
    br.start_session(session.code, 'alice')
    _off_by(br, session, 'alice', 3)
    br.leave_session(session.code, 'bob')
    assert session.status == 'finished'
    assert session.current_round == 1
    assert session.winner.user_id == 'alice'


def test_round_timeout_with_no_guesses_ends_without_winner(br):
    session = _lobby(br, 'alice', 'bob')
    br.start_session(session.code, 'alice')
    result = br.end_round(session.code, 1)
    assert {p['user_id'] for p in result['eliminated']} == {'alice', 'bob'}
    assert session.status == 'finished'
    assert session.winner is None


def test_stale_round_timer_is_ignored(br):
    session = _lobby(br, 'alice', 'bob', 'cara')
    br.start_session(session.code, 'alice')
    assert br.end_round(session.code, 2) is None
    assert session.round().is_open
    assert br.end_round(session.code, 1) is not None
    # Round 1 is closed; a late timer for it does nothing
    assert br.end_round(session.code, 1) is None


def test_stats(br):
    first = _lobby(br, 'alice', 'bob')
    _lobby(br, 'cara')
    br.start_session(first.code, 'alice')
    stats = br.get_stats()
    assert stats['total_sessions'] == 2
    assert stats['active_sessions'] == 1
    assert stats['waiting_sessions'] == 1
    assert stats['total_players'] == 3
    assert stats['bound_users'] == 3


def test_purge_only_finished_sessions(br):
    session = _lobby(br, 'alice', 'bob')
    assert br.purge_session(session.code) is False
    br.start_session(session.code, 'alice')
    br.end_round(session.code, 1)
    assert br.purge_session(session.code) is True
    with pytest.raises(SessionNotFound):
        br.get_session(session.code)


def test_explicit_zero_and_malformed_settings_rejected(br):
    for settings in (
        {'max_rounds': 0},
        {'elimination_rate': 0},
        {'round_duration': 0},
        {'category': ['urban']},
        {'category': ''},
        {'max_rounds': float('inf')},
        {'max_rounds': float('nan')},
    ):
        with pytest.raises(InvalidInput):
            br.create_session('alice', 'Alice', settings)
    assert br.sessions == {}


def test_null_settings_fall_back_to_defaults(br):
    session = br.create_session('alice', 'Alice', {'max_rounds': None, 'category': None})
    assert session.max_rounds == 3
    assert session.settings['category'] == 'mixed'


class FakeSocketIO:
    def __init__(self):
        self.tasks = []

    def start_background_task(self, target, *args):
        self.tasks.append((target, args))

    def sleep(self, seconds):
        pass

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for target, args in tasks:
            target(*args)


@pytest.fixture()
def timed(notifier):
    sio = FakeSocketIO()
    br = BattleRoyaleManager(
        notifier=notifier,
        scheduler=RoundScheduler(sio),
        location_provider=fixed_locations,
        max_rounds=3,
        waiting_room_timeout=120,
        session_retention=600,
    )
    return br, sio


def test_waiting_room_timeout_cancels_session(timed, notifier):
    br, sio = timed
    session = _lobby(br, 'alice', 'bob')
    sio.run_all()
    with pytest.raises(SessionNotFound):
        br.get_session(session.code)
    ended = notifier.names('session-ended')[-1][3]
    assert ended['cancelled'] is True
    assert ended['reason'] == 'timeout'
    assert br.session_for_user('bob') is None


def test_waiting_room_timeout_ignores_started_session(timed, notifier):
    br, sio = timed
    session = _lobby(br, 'alice', 'bob')
    br.start_session(session.code, 'alice')
    # Fire only the waiting-room timer; the round timer stays queued
    target, args = sio.tasks.pop(0)
    target(*args)
    assert br.get_session(session.code).status == 'active'
    assert not notifier.names('session-ended')


def test_finished_session_is_purged_after_retention(timed):
    br, sio = timed
    session = _lobby(br, 'alice', 'bob')
    br.start_session(session.code, 'alice')
    sio.tasks = []
    br.end_round(session.code, 1)
    assert session.status == 'finished'
    assert br.get_session(session.code) is session
    sio.run_all()
    with pytest.raises(SessionNotFound):
        br.get_session(session.code)
