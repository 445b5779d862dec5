"""Shared fakes for the notifier tests. Nothing here talks to Discord or the platform APIs."""

import pytest
import requests

from stream_notifier.services.health_tracker import HealthTracker
from stream_notifier.services.live_record import LiveRecord
from stream_notifier.services.reconciler import LiveMessageReconciler
from stream_notifier.services.tick_orchestrator import TickOrchestrator
from stream_notifier.utils.data_store import NotifierState

START_MS = 1_700_000_000_000


def http_error(status, retry_after=None):
    response_obj = requests.Response()
    response_obj.status_code = status
    if retry_after is not None:
        response_obj.headers["Retry-After"] = str(retry_after)
    return requests.exceptions.HTTPError(f"{status} Error", response=response_obj)


class FakeClock:
    def __init__(self, now=START_MS):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeStore:
    def __init__(self):
        self.saves = 0
        self.snapshots = []

    def save(self, state):
        self.save_snapshot(state.to_dict())

    def save_snapshot(self, data):
        self.saves += 1
        self.snapshots.append(data)


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.deleted = []
        self.existing = set()
        self.fail_send = False
        self.fail_delete = set()
        self._next_id = 1000

    async def send_live_notification(self, payload):
        if self.fail_send:
            return None
        self._next_id += 1
        message_id = str(self._next_id)
        self.sent.append(payload)
        self.existing.add(message_id)
        return message_id

    async def delete_notification(self, message_id):
        if message_id in self.fail_delete:
            return False
        self.deleted.append(message_id)
        self.existing.discard(message_id)
        return True

    async def notification_exists(self, message_id):
        return message_id in self.existing


class FakeRoleManager:
    def __init__(self):
        self.granted = []
        self.revoked = []

    async def grant_live_role(self, user_id):
        self.granted.append(user_id)
        return True

    async def revoke_live_role(self, user_id):
        self.revoked.append(user_id)
        return True


def kick_record(handle, live=True, title="NoxRP | day 12", category_id="15", started_at="2024-05-01T18:00:00Z"):
    return LiveRecord(
        platform="kick", handle=handle, is_live=live, title=title,
        category_id=category_id, category_name="Grand Theft Auto V", started_at=started_at,
    )


def twitch_record(handle, title="NoxRP | day 12", game_id="32982", stream_id="40001"):
    return LiveRecord(
        platform="twitch", handle=handle, is_live=True, title=title,
        category_id=game_id, category_name="Grand Theft Auto V",
        started_at="2024-05-01T18:00:00Z", stream_id=stream_id,
    )


class FakeKickClient:
    """Kick returns every requested channel, live or not."""

    enabled = True

    def __init__(self):
        self.channels = {}
        self.livestreams = []
        self.category_id = "15"
        self.category_error = None
        self.fetch_error = None
        self.fetch_calls = []
        self.category_calls = 0
        self.discovery_calls = []

    async def find_category_id_by_name(self, name):
        self.category_calls += 1
        if self.category_error:
            raise self.category_error
        return self.category_id

    async def fetch_live_records(self, slugs):
        self.fetch_calls.append(list(slugs))
        if self.fetch_error:
            raise self.fetch_error
        return [self.channels[s] for s in slugs if s in self.channels]

    async def fetch_live_records_by_category(self, category_id, limit=100, sort="viewer_count"):
        self.discovery_calls.append((category_id, limit, sort))
        return list(self.livestreams)[:limit]


class FakeTwitchClient:
    """Helix only lists live streams."""

    enabled = True

    def __init__(self):
        self.live = {}
        self.pages = []
        self.fetch_error = None
        self.fetch_calls = []
        self.page_calls = []

    async def fetch_live_records(self, logins, game_id=None):
        self.fetch_calls.append((list(logins), game_id))
        if self.fetch_error:
            raise self.fetch_error
        return [self.live[l] for l in logins if l in self.live]

    async def fetch_live_records_by_game(self, game_id, page_size=100, cursor=None):
        self.page_calls.append((game_id, page_size, cursor))
        index = int(cursor) if cursor else 0
        records = self.pages[index] if index < len(self.pages) else []
        next_cursor = str(index + 1) if index + 1 < len(self.pages) else None
        return records, next_cursor


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state():
    return NotifierState()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def role_manager():
    return FakeRoleManager()


@pytest.fixture
def health(state, clock):
    return HealthTracker(state, time_func=clock, jitter_func=lambda: 0)


@pytest.fixture
def reconciler(state, notifier, role_manager, clock):
    return LiveMessageReconciler(state, notifier, role_manager, time_func=clock)


@pytest.fixture
def kick_client():
    return FakeKickClient()


@pytest.fixture
def twitch_client():
    return FakeTwitchClient()


@pytest.fixture
def orchestrator(state, store, kick_client, twitch_client, reconciler, health, clock):
    return TickOrchestrator(state, store, kick_client, twitch_client, reconciler, health, time_func=clock)
