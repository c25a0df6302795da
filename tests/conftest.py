import pytest

from matchday.database import get_connection, init_database


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


class FakeTimerFactory:
    def __init__(self):
        self.created = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.created.append(timer)
        return timer

    def for_match(self, match_id):
        return [t for t in self.created if t.args == (match_id,)]


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "matchday.db"
    conn = get_connection(path)
    init_database(conn)
    conn.close()
    return path


@pytest.fixture
def conn(db_path):
    connection = get_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def timers():
    return FakeTimerFactory()
