import pytest
import requests

from glsync.core.glide_client import GlideApiError, GlideClient
from glsync.core.models import ErrorType


class StubResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text

    def json(self):
        return self._payload


class StubSession:
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr("glsync.core.glide_client.time.sleep", recorded.append)
    return recorded


def _client(session, **kwargs):
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("backoff_base", 1.0)
    return GlideClient("key-1", "app-1", session=session, **kwargs)


def test_fetch_page_sends_query_and_returns_next_token(sleeps):
    session = StubSession(
        StubResponse(payload=[{"rows": [{"$rowID": "r1"}], "next": "tok-2"}]),
        StubResponse(payload=[{"rows": [{"$rowID": "r2"}]}]),
    )
    client = _client(session)

    first = client.fetch_page("native-table-lines")
    second = client.fetch_page("native-table-lines", first.next_token)

    assert first.rows == [{"$rowID": "r1"}]
    assert first.next_token == "tok-2"
    assert second.next_token is None

    assert session.posts[0]["url"].endswith("/queryTables")
    assert session.posts[0]["headers"]["Authorization"] == "Bearer key-1"
    assert session.posts[0]["json"] == {
        "appID": "app-1",
        "queries": [{"tableName": "native-table-lines", "utc": True}],
    }
    assert session.posts[1]["json"]["queries"][0]["startAt"] == "tok-2"
    assert sleeps == []


def test_rate_limit_honours_retry_after(sleeps):
    session = StubSession(
        StubResponse(status_code=429, headers={"Retry-After": "2"}),
        StubResponse(payload=[{"rows": []}]),
    )

    page = _client(session).fetch_page("t")

    assert page.rows == []
    assert sleeps == [2.0]


def test_rate_limit_exhaustion_raises_rate_limit(sleeps):
    session = StubSession(*[StubResponse(status_code=429) for _ in range(4)])

    with pytest.raises(GlideApiError) as excinfo:
        _client(session).fetch_page("t")

    assert excinfo.value.error_type == ErrorType.RATE_LIMIT
    assert excinfo.value.status_code == 429
    assert len(session.posts) == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_backoff_is_capped(sleeps):
    session = StubSession(*[StubResponse(status_code=429) for _ in range(4)])

    with pytest.raises(GlideApiError):
        _client(session, backoff_max=3.0).fetch_page("t")

    assert sleeps == [1.0, 2.0, 3.0]


def test_server_error_is_retried_then_succeeds(sleeps):
    session = StubSession(
        StubResponse(status_code=502, text="bad gateway"),
        StubResponse(payload=[{"rows": [{"$rowID": "r1"}]}]),
    )

    page = _client(session).fetch_page("t")

    assert [r["$rowID"] for r in page.rows] == ["r1"]
    assert sleeps == [1.0]


def test_api_error_after_retries_includes_status_and_body(sleeps):
    session = StubSession(*[StubResponse(status_code=503, text="upstream unavailable") for _ in range(4)])

    with pytest.raises(GlideApiError) as excinfo:
        _client(session).fetch_page("t")

    assert excinfo.value.error_type == ErrorType.API_ERROR
    assert excinfo.value.status_code == 503
    assert "503" in str(excinfo.value)
    assert "upstream unavailable" in str(excinfo.value)


def test_transport_failure_is_network_error(sleeps):
    session = StubSession(*[requests.ConnectionError("reset") for _ in range(4)])

    with pytest.raises(GlideApiError) as excinfo:
        _client(session).fetch_page("t")

    assert excinfo.value.error_type == ErrorType.NETWORK_ERROR
    assert len(sleeps) == 3


def test_list_tables():
    session = StubSession(StubResponse(payload={"tables": [{"id": "native-table-1", "name": "Lines"}, {"name": "Products"}]}))

    assert _client(session).list_tables() == ["native-table-1", "Products"]
    assert session.posts[0]["json"]["queries"] == [{"listTables": True}]


def test_get_table_columns_from_metadata():
    session = StubSession(StubResponse(payload=[{
        "rows": [],
        "columns": [{"id": "qty", "name": "Qty Sold", "type": "number"}, {"id": "name", "name": "Name"}],
    }]))

    assert _client(session).get_table_columns("t") == [
        {"id": "qty", "name": "Qty Sold", "type": "number"},
        {"id": "name", "name": "Name", "type": "string"},
    ]


def test_get_table_columns_inferred_from_first_row():
    session = StubSession(StubResponse(payload=[{"rows": [{"$rowID": "r1", "qty": 2, "paid": True}]}]))

    assert _client(session).get_table_columns("t") == [
        {"id": "$rowID", "name": "$rowID", "type": "string"},
        {"id": "qty", "name": "qty", "type": "number"},
        {"id": "paid", "name": "paid", "type": "boolean"},
    ]


def test_test_connection_does_not_retry(sleeps):
    session = StubSession(StubResponse(status_code=401, text="unauthorized"))

    with pytest.raises(GlideApiError) as excinfo:
        _client(session).test_connection()

    assert excinfo.value.status_code == 401
    assert len(session.posts) == 1
    assert sleeps == []


def test_credentials_are_required():
    with pytest.raises(ValueError):
        GlideClient("", "app-1")
