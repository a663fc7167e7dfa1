import pytest
import requests

from config_loader import ConfigLoader
from conftest import make_item, make_post, make_response
from errors import RemoteFatalError, RemoteRateLimitError, TransientTransportError
from rate_governor import RateGovernor
from vk_api import VkApiClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, body_error=False):
        self.status_code = status_code
        self._payload = payload
        self._body_error = body_error

    def json(self):
        if self._body_error:
            raise ValueError("not json")
        return self._payload


class FakeSession(requests.Session):
    def __init__(self, responses):
        super().__init__()
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, timeout=None, **kwargs):
        self.requests.append((url, dict(params or {}), timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def loader(tmp_path):
    return ConfigLoader(str(tmp_path / "missing.json"))


def make_client(loader, responses):
    session = FakeSession(responses)
    return VkApiClient(loader, "TOKEN", RateGovernor(0), session=session), session


def test_fetch_page_sends_query_and_parses_page(loader):
    payload = {"response": make_response(
        [make_post(1, comments=5)],
        [make_item(1, [{"id": 10, "from_id": 7, "text": "hi"}], [{"id": 7}])],
        5,
    )}
    client, session = make_client(loader, [FakeResponse(payload=payload)])

    page = client.fetch_page("-1", 40, 20)

    url, params, timeout = session.requests[0]
    assert url == "https://api.vk.com/method/execute.getComments"
    assert params == {"group": "-1", "offset": "40", "req": "20", "access_token": "TOKEN", "v": "5.122"}
    assert timeout == 15
    assert page["total_count"] == 5
    assert page["posts"][0]["comments"] == 5
    assert page["items"][0]["post_id"] == "1"


def test_network_failures_are_transient(loader):
    client, _ = make_client(loader, [requests.Timeout("slow"), requests.ConnectionError("reset")])
    with pytest.raises(TransientTransportError):
        client.fetch_page("-1", 0, 20)
    with pytest.raises(TransientTransportError):
        client.fetch_page("-1", 0, 20)


def test_server_errors_and_bad_bodies_are_transient(loader):
    client, _ = make_client(loader, [FakeResponse(status_code=502), FakeResponse(body_error=True)])
    with pytest.raises(TransientTransportError):
        client.fetch_page("-1", 0, 20)
    with pytest.raises(TransientTransportError):
        client.fetch_page("-1", 0, 20)


def test_client_http_error_is_fatal(loader):
    client, _ = make_client(loader, [FakeResponse(status_code=404)])
    with pytest.raises(RemoteFatalError):
        client.fetch_page("-1", 0, 20)


def test_rate_limit_error_codes(loader):
    client, _ = make_client(loader, [
        FakeResponse(payload={"error": {"error_code": 29, "error_msg": "Rate limit reached"}}),
        FakeResponse(payload={
            "response": make_response([], [], 0),
            "execute_errors": [{"error_code": 29, "error_msg": "Rate limit reached"}],
        }),
    ])
    with pytest.raises(RemoteRateLimitError) as excinfo:
        client.fetch_page("-1", 0, 20)
    assert excinfo.value.code == 29
    with pytest.raises(RemoteRateLimitError):
        client.fetch_page("-1", 0, 20)


def test_other_api_errors_are_fatal(loader):
    client, _ = make_client(loader, [
        FakeResponse(payload={"error": {"error_code": 5, "error_msg": "User authorization failed"}}),
        FakeResponse(payload={"execute_errors": [{"error_code": 15, "error_msg": "Access denied"}]}),
    ])
    with pytest.raises(RemoteFatalError):
        client.fetch_page("-1", 0, 20)
    with pytest.raises(RemoteFatalError):
        client.fetch_page("-1", 0, 20)


def test_non_rate_limit_execute_errors_keep_partial_response(loader):
    client, _ = make_client(loader, [FakeResponse(payload={
        "response": make_response([make_post(1)], [], 1),
        "execute_errors": [{"error_code": 15, "error_msg": "Access denied"}],
    })])
    page = client.fetch_page("-1", 0, 20)
    assert len(page["posts"]) == 1


def test_resolve_groups_builds_owner_ids(loader):
    client, session = make_client(loader, [FakeResponse(payload={"response": [
        {"id": 123, "screen_name": "first"},
        {"id": 456},
        {"name": "broken"},
    ]})])

    sources = client.resolve_groups(["first", "second", ""])

    assert session.requests[0][0] == "https://api.vk.com/method/groups.getById"
    assert session.requests[0][1]["group_ids"] == "first,second"
    assert sources == [("-123", "first"), ("-456", "second")]


def test_resolve_groups_without_response_is_fatal(loader):
    client, _ = make_client(loader, [FakeResponse(payload={})])
    with pytest.raises(RemoteFatalError):
        client.resolve_groups(["first"])
