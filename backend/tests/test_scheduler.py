from georoyale.services.battle_royale import RoundScheduler


class FakeSocketIO:
    def __init__(self):
        self.tasks = []
        self.slept = []

    def start_background_task(self, target, *args):
        self.tasks.append((target, args))

    def sleep(self, seconds):
        self.slept.append(seconds)

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for target, args in tasks:
            target(*args)


def test_schedule_runs_callback_once_per_key():
    sio = FakeSocketIO()
    scheduler = RoundScheduler(sio)
    fired = []
    assert scheduler.schedule(('ABC', 'round', 1), 30, fired.append, 'first') is True
    assert scheduler.schedule(('ABC', 'round', 1), 30, fired.append, 'dup') is False
    assert scheduler.pending(('ABC', 'round', 1))
    sio.run_all()
    assert fired == ['first']
    assert sio.slept == [30]
    assert not scheduler.pending(('ABC', 'round', 1))
    # Key is free again once fired
    assert scheduler.schedule(('ABC', 'round', 1), 5, fired.append, 'again') is True


def test_callback_errors_are_contained():
    sio = FakeSocketIO()
    scheduler = RoundScheduler(sio)

    def boom():
        raise RuntimeError('boom')

    scheduler.schedule('k', 1, boom)
    sio.run_all()
    assert not scheduler.pending('k')


def test_disabled_scheduler():
    scheduler = RoundScheduler(None, enabled=False)
    fired = []
    assert scheduler.schedule('k', 10, fired.append, 'timer') is False
    assert scheduler.run_after('k', 10, fired.append, 'inline') is True
    assert fired == ['inline']
