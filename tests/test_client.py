import pytest
import requests

from studio_booking import models
from studio_booking.client import GymStore, LocalCache, StudioAPIError

from conftest import PASSWORD, balance_of


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data

    def json(self):
        return self._data


class FailingHTTP:
    """Answers every request with the same error, remembering what the store showed at the time"""

    def __init__(self, store=None, status_code=500, error=None):
        self.store = store
        self.status_code = status_code
        self.error = error
        self.seen_credits = []

    def request(self, method, url, headers=None, **kwargs):
        if self.store is not None:
            self.seen_credits.append(self.store.credits)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code, {"detail": "Internal server error"})


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def sample_sessions():
    return [
        {"id": 1, "title": "HIIT", "max_capacity": 5, "current_bookings": 3, "is_registered": True, "is_full": False},
        {"id": 2, "title": "Yoga", "max_capacity": 5, "current_bookings": 5, "is_registered": False, "is_full": True},
    ]


@pytest.fixture
def cache(tmp_path):
    return LocalCache(str(tmp_path / "store.json"))


@pytest.fixture
def store(client, trainee, cache):
    s = GymStore(base_url="http://testserver", http=client, cache=cache)
    s.login(trainee.email, PASSWORD)
    return s


def test_can_book_labels():
    assert GymStore.can_book({"max_capacity": 5, "current_bookings": 2, "is_registered": True}) == (False, "Registered")
    assert GymStore.can_book({"max_capacity": 5, "current_bookings": 5}) == (False, "Full")
    assert GymStore.can_book({"max_capacity": 5, "current_bookings": 4}) == (True, "Book")


def test_refresh_loads_server_state(store, make_session):
    make_session(title="Morning HIIT")

    store.refresh()

    assert store.loading is False
    assert store.profile["email"] == "dana@example.com"
    assert store.credits == 3
    assert store.subscription is None
    assert [s["title"] for s in store.sessions] == ["Morning HIIT"]


def test_book_updates_local_state(store, trainee, make_session):
    session = make_session(capacity=1)
    store.refresh()

    result = store.book(session.id)

    assert result["success"] is True
    assert store.credits == 2
    assert store.sessions[0]["is_registered"] is True
    assert GymStore.can_book(store.sessions[0]) == (False, "Registered")
    assert balance_of(trainee.id) == 2


def test_book_failure_reports_server_message(store, make_user, make_session, client):
    session = make_session(capacity=1)
    other = make_user("other@example.com", balance=1)
    other_store = GymStore(base_url="http://testserver", http=client)
    other_store.login(other.email, PASSWORD)
    other_store.book(session.id)

    result = store.book(session.id)

    assert result == {"success": False, "message": "This session is full"}


def test_cancel_applies_and_keeps_server_result(store, trainee, make_session):
    session = make_session()
    store.refresh()
    store.book(session.id)

    result = store.cancel_booking(session.id)

    assert result["success"] is True
    assert store.credits == 3
    assert store.sessions[0]["is_registered"] is False
    assert store.sessions[0]["current_bookings"] == 0
    assert balance_of(trainee.id) == 3


def test_cancel_too_late_is_rolled_back(store, db, trainee, make_session):
    session = make_session(hours_from_now=3)
    db.add(models.Booking(session_id=session.id, user_id=trainee.id, status="confirmed"))
    db.commit()
    store.refresh()
    before = [dict(s) for s in store.sessions]

    result = store.cancel_booking(session.id)

    assert result["success"] is False
    assert result["message"] == "Too late to cancel (less than 10 hours notice)"
    assert store.credits == 3
    assert store.sessions == before


def test_cancel_server_error_is_rolled_back():
    store = GymStore(base_url="http://studio.test", token="t")
    store.http = FailingHTTP(store=store)
    store.sessions = sample_sessions()
    store.credits = 2

    result = store.cancel_booking(1)

    # The optimistic view was visible while the request was in flight
    assert store.http.seen_credits == [3]
    assert result["success"] is False
    assert store.credits == 2
    assert store.sessions == sample_sessions()


def test_cancel_network_error_is_rolled_back():
    store = GymStore(base_url="http://studio.test", token="t")
    store.http = FailingHTTP(error=requests.ConnectionError("offline"))
    store.sessions = sample_sessions()
    store.credits = 2

    result = store.cancel_booking(1)

    assert result["success"] is False
    assert store.credits == 2
    assert store.sessions[0]["is_registered"] is True


def test_request_error_carries_status():
    store = GymStore(base_url="http://studio.test", http=FailingHTTP(status_code=503))

    with pytest.raises(StudioAPIError) as exc:
        store.refresh()

    assert exc.value.status_code == 503
    assert store.loading is False


def test_cache_expires_after_ttl(tmp_path):
    clock = FakeClock()
    cache = LocalCache(str(tmp_path / "c.json"), ttl=300, clock=clock)
    cache.set("credits", 4)

    clock.now += 299
    assert cache.get("credits") == 4

    clock.now += 2
    assert cache.get("credits") is None


def test_cache_ignores_corrupt_file(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("{not json")

    assert LocalCache(str(path)).get("credits") is None


def test_load_cached_shows_data_immediately(store, cache, make_session):
    make_session()
    store.refresh()

    restarted = GymStore(base_url="http://testserver", cache=cache)

    assert restarted.loading is True
    assert restarted.load_cached() is True
    assert restarted.loading is False
    assert restarted.credits == 3
    assert len(restarted.sessions) == 1


def test_load_cached_with_stale_cache(tmp_path):
    clock = FakeClock()
    cache = LocalCache(str(tmp_path / "c.json"), clock=clock)
    cache.set("profile", {"id": 1})
    cache.set("credits", 2)
    clock.now += 301

    restarted = GymStore(cache=cache)

    assert restarted.load_cached() is False
    assert restarted.loading is True


def test_cache_ignores_non_object_json(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("[1, 2, 3]")

    assert LocalCache(str(path)).get("credits") is None


def test_cache_entry_without_timestamp(tmp_path):
    path = tmp_path / "c.json"
    path.write_text('{"credits": {"value": 4}, "profile": 7}')
    cache = LocalCache(str(path))

    assert cache.get("credits") is None
    assert cache.get("profile") is None

    cache.set("credits", 5)
    assert cache.get("credits") == 5
