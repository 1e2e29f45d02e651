"""Tests for the Linear GraphQL client with mocked HTTP."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wippulse.config import Config, PaginationSettings
from wippulse.errors import ApiError, PaginationLimitExceeded
from wippulse.linear_client import LinearClient


def _build_client(**pagination) -> LinearClient:
    config = Config(api_key="lin_api_key", pagination=PaginationSettings(**pagination))
    return LinearClient(config=config)


def _response(status_code: int, payload: dict | None = None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def _node(issue_id: str, team: dict | None = None, **overrides) -> dict:
    node = {
        "id": issue_id,
        "identifier": f"ENG-{issue_id}",
        "title": f"Issue {issue_id}",
        "description": None,
        "priority": 2,
        "estimate": 3,
        "url": f"https://linear.app/issue/ENG-{issue_id}",
        "createdAt": "2026-01-01T00:00:00.000Z",
        "updatedAt": "2026-01-02T00:00:00.000Z",
        "startedAt": "2026-01-01T12:00:00.000Z",
        "completedAt": None,
        "canceledAt": None,
        "parent": None,
        "team": team if team is not None else {"id": "t1", "name": "Engineering", "key": "ENG"},
        "state": {"id": "s1", "name": "In Progress", "type": "started"},
        "assignee": {"id": "u1", "name": "Alice"},
        "project": None,
        "labels": {"nodes": [{"name": "Bug"}]},
        "comments": {"nodes": []},
    }
    node.update(overrides)
    return node


def _page(nodes: list, has_next: bool = False, cursor: str | None = None) -> dict:
    return {"data": {"issues": {"nodes": nodes, "pageInfo": {"hasNextPage": has_next, "endCursor": cursor}}}}


def test_session_sends_api_key_header():
    """Verify the API key is sent as the Authorization header."""
    client = _build_client()

    assert client._session.headers["Authorization"] == "lin_api_key"


def test_post_graphql_retries_on_429_and_succeeds():
    """Verify _post_graphql retries after HTTP 429 and eventually returns data."""
    client = _build_client()
    first = _response(429, headers={"Retry-After": "2"})
    second = _response(200, payload={"data": {"viewer": {"id": "me"}}})
    client._session.post = Mock(side_effect=[first, second])

    with patch("wippulse.linear_client.time.sleep") as sleep_mock:
        data = client._post_graphql("query { viewer { id } }")

    assert data == {"viewer": {"id": "me"}}
    sleep_mock.assert_called_once_with(2)


def test_post_graphql_raises_after_exhausting_retries():
    """Verify persistent 5xx responses raise ApiError after the final attempt."""
    client = _build_client()
    client._session.post = Mock(return_value=_response(503, text="unavailable"))

    with patch("wippulse.linear_client.time.sleep"):
        with pytest.raises(ApiError):
            client._post_graphql("query { viewer { id } }")

    assert client._session.post.call_count == LinearClient._MAX_RETRIES


def test_post_graphql_retries_transport_errors():
    """Verify connection errors are retried before succeeding."""
    client = _build_client()
    client._session.post = Mock(
        side_effect=[requests.ConnectionError("reset"), _response(200, payload={"data": {}})]
    )

    with patch("wippulse.linear_client.time.sleep"):
        assert client._post_graphql("query { viewer { id } }") == {}


def test_post_graphql_raises_on_graphql_errors():
    """Verify GraphQL errors in a 200 response raise ApiError."""
    client = _build_client()
    client._session.post = Mock(
        return_value=_response(200, payload={"errors": [{"message": "Query too complex"}]})
    )

    with pytest.raises(ApiError, match="Query too complex"):
        client._post_graphql("query { issues { nodes { id } } }")


def test_test_connection_returns_false_on_api_error():
    """Verify connectivity checks report False instead of raising."""
    client = _build_client()
    client._session.post = Mock(return_value=_response(401, text="unauthorized"))

    assert client.test_connection() is False


def test_test_connection_returns_true_for_viewer():
    """Verify connectivity checks report True when the viewer query answers."""
    client = _build_client()
    client._session.post = Mock(return_value=_response(200, payload={"data": {"viewer": {"id": "me"}}}))

    assert client.test_connection() is True


def test_fetch_by_state_type_follows_cursor_and_maps_items():
    """Verify pages are followed, progress is reported and nodes are mapped."""
    client = _build_client()
    client._session.post = Mock(
        side_effect=[
            _response(200, payload=_page([_node("1"), _node("2")], has_next=True, cursor="c1")),
            _response(200, payload=_page([_node("3", team={})])),
        ]
    )
    progress = Mock()

    items = client.fetch_by_state_type("started", on_progress=progress)

    assert [item.id for item in items] == ["1", "2"]
    assert items[0].team.key == "ENG"
    assert items[0].assignee_name == "Alice"
    assert items[0].estimate == 3.0
    assert items[0].labels == ["Bug"]
    assert items[0].created_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
    progress.assert_any_call(2, 2)
    progress.assert_any_call(3, 1)
    second_variables = client._session.post.call_args_list[1].kwargs["json"]["variables"]
    assert second_variables["after"] == "c1"
    assert second_variables["stateType"] == "started"


def test_nested_queries_use_smaller_page_size():
    """Verify nested queries use the nested page size and flat queries the flat one."""
    nested = _build_client(flat_page_size=100, nested_page_size=40, fetch_nested=True)
    flat = _build_client(flat_page_size=100, nested_page_size=40, fetch_nested=False)
    for client in (nested, flat):
        client._session.post = Mock(return_value=_response(200, payload=_page([])))
        client.fetch_by_state_type("started")

    nested_body = nested._session.post.call_args.kwargs["json"]
    flat_body = flat._session.post.call_args.kwargs["json"]
    assert nested_body["variables"]["first"] == 40
    assert "labels" in nested_body["query"]
    assert flat_body["variables"]["first"] == 100
    assert "labels" not in flat_body["query"]


def test_page_cap_raises_after_exactly_max_pages():
    """Verify a never-ending cursor stops after max_pages requests."""
    client = _build_client(max_pages=3)
    client._session.post = Mock(
        return_value=_response(200, payload=_page([_node("1")], has_next=True, cursor="again"))
    )

    with pytest.raises(PaginationLimitExceeded) as exc_info:
        client.fetch_by_state_type("started")

    assert client._session.post.call_count == 3
    assert exc_info.value.pages == 3
    assert exc_info.value.cursor == "again"
    assert exc_info.value.phase == "started"


def test_fetch_by_project_ids_pages_each_project():
    """Verify every project is queried separately and results are concatenated."""
    client = _build_client()
    project = {
        "id": "p1",
        "name": "Launch",
        "state": "started",
        "health": "atRisk",
        "updatedAt": "2026-01-03T00:00:00Z",
        "targetDate": "2026-02-01",
        "startDate": None,
        "lead": {"id": "u9", "name": "Lead"},
    }
    client._session.post = Mock(
        side_effect=[
            _response(200, payload=_page([_node("1", project=project)])),
            _response(200, payload=_page([_node("2"), _node("3")])),
        ]
    )
    progress = Mock()

    items = client.fetch_by_project_ids(["p1", "p2"], on_progress=progress)

    assert [item.id for item in items] == ["1", "2", "3"]
    assert items[0].project.health == "atRisk"
    assert items[0].project.target_date == datetime(2026, 2, 1, tzinfo=timezone.utc)
    assert items[0].project.lead.name == "Lead"
    assert progress.call_args_list[-1].args == (3,)
    variables = [call.kwargs["json"]["variables"]["projectId"] for call in client._session.post.call_args_list]
    assert variables == ["p1", "p2"]


def test_missing_issues_connection_raises_api_error():
    """Verify a response without the issues connection raises ApiError."""
    client = _build_client()
    client._session.post = Mock(return_value=_response(200, payload={"data": {}}))

    with pytest.raises(ApiError):
        client.fetch_by_state_type("started")


def test_malformed_timestamp_raises_typed_error_with_phase():
    """Verify an unparsable timestamp surfaces as ApiError tagged with the fetch phase."""
    client = _build_client()
    client._session.post = Mock(
        return_value=_response(200, payload=_page([_node("1", createdAt="not-a-date")]))
    )

    with pytest.raises(ApiError) as exc_info:
        client.fetch_by_state_type("started")

    assert exc_info.value.phase == "started"
    assert "not-a-date" in str(exc_info.value)


def test_malformed_issue_fields_raise_api_error():
    """Verify non-numeric fields in an issue node raise ApiError rather than ValueError."""
    client = _build_client()
    client._session.post = Mock(
        return_value=_response(200, payload=_page([_node("1", priority="urgent")]))
    )

    with pytest.raises(ApiError) as exc_info:
        client.fetch_by_project_ids(["p1"])

    assert exc_info.value.phase == "project:p1"
