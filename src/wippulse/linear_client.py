"""Linear GraphQL API client used as the remote work-item source."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from .config import Config, PaginationSettings
from .errors import ApiError, PaginationLimitExceeded
from .models import PersonRef, ProjectRef, TeamRef, WorkflowState, WorkItem

logger = logging.getLogger(__name__)

StateProgress = Callable[[int, int], None]
ProjectProgress = Callable[[int], None]

_BASE_ISSUE_FIELDS = """
    id
    identifier
    title
    description
    priority
    estimate
    url
    createdAt
    updatedAt
    startedAt
    completedAt
    canceledAt
    parent { id }
    team { id name key }
    state { id name type }
    assignee { id name }
    project {
        id
        name
        state
        health
        updatedAt
        targetDate
        startDate
        lead { id name }
    }
"""

_NESTED_ISSUE_FIELDS = """
    labels { nodes { name } }
    comments(first: 1, orderBy: createdAt) { nodes { createdAt } }
"""

_VIEWER_QUERY = "query Viewer { viewer { id } }"


def _issues_query(filter_clause: str, variables: str, nested: bool) -> str:
    fields = _BASE_ISSUE_FIELDS + (_NESTED_ISSUE_FIELDS if nested else "")
    return (
        f"query Issues($first: Int!, $after: String{variables}) {{\n"
        f"  issues(first: $first, after: $after, filter: {filter_clause}) {{\n"
        f"    nodes {{ {fields} }}\n"
        f"    pageInfo {{ hasNextPage endCursor }}\n"
        f"  }}\n"
        f"}}"
    )


class LinearClient:
    """Small, typed client for the Linear issues GraphQL API."""

    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(self, config: Config, timeout_seconds: int = 30) -> None:
        """Initialize an authenticated Linear API client.

        Args:
            config: Validated runtime configuration including the API key and
                pagination settings.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._config = config
        self._pagination: PaginationSettings = config.pagination
        self._timeout_seconds = timeout_seconds
        self._url = config.api_url

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": config.api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _parse_datetime(self, value: Optional[str]) -> Optional[datetime]:
        """Parse Linear ISO8601 timestamps (or plain dates) into UTC datetimes."""
        if not value:
            return None

        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ApiError(f"Linear API returned a malformed timestamp: {value!r}") from exc
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _post_graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GraphQL request with retry logic for 429/5xx responses.

        Returns:
            The ``data`` object of the GraphQL response.

        Raises:
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                carries GraphQL errors, or does not return valid JSON.
        """
        body = {"query": query, "variables": variables or {}}
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.post(self._url, json=body, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"Linear request failed after retries: POST {self._url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code >= 400:
                raise ApiError(
                    "Linear API request failed: "
                    f"POST {self._url} returned {status_code} - {response.text}"
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"Linear API returned invalid JSON: POST {self._url}") from exc

            if not isinstance(payload, dict):
                raise ApiError(f"Linear API returned unexpected payload shape: POST {self._url}")

            errors = payload.get("errors")
            if errors:
                messages = "; ".join(str(error.get("message", error)) for error in errors)
                raise ApiError(f"Linear API returned GraphQL errors: {messages}")

            data = payload.get("data")
            if not isinstance(data, dict):
                raise ApiError(f"Linear API response is missing 'data': POST {self._url}")

            return data

        raise ApiError(f"Linear request failed after retries: POST {self._url}") from last_error

    def test_connection(self) -> bool:
        """Return ``True`` when the API answers an authenticated viewer query."""
        try:
            data = self._post_graphql(_VIEWER_QUERY)
        except ApiError as exc:
            logger.warning("Linear connectivity check failed", extra={"error": str(exc)})
            return False
        return bool((data.get("viewer") or {}).get("id"))

    def _paginate(
        self,
        query: str,
        variables: Dict[str, Any],
        phase: str,
        on_page: Optional[Callable[[int], None]] = None,
    ) -> List[WorkItem]:
        """Follow ``endCursor`` until the last page or the page cap.

        Exactly ``max_pages`` requests are made before ``PaginationLimitExceeded``
        is raised, so a runaway cursor never loops forever.
        """
        items: List[WorkItem] = []
        cursor: Optional[str] = None
        pages = 0

        while True:
            data = self._post_graphql(
                query,
                {**variables, "first": self._pagination.page_size, "after": cursor},
            )
            connection = data.get("issues")
            if not isinstance(connection, dict):
                raise ApiError(f"Linear API response is missing 'issues' during {phase}")

            nodes = connection.get("nodes") or []
            for node in nodes:
                try:
                    item = self._map_issue(node)
                except ApiError as exc:
                    if exc.phase is None:
                        exc.phase = phase
                    raise
                except (KeyError, TypeError, ValueError) as exc:
                    raise ApiError(
                        f"Linear issue payload is malformed: {exc}", phase=phase
                    ) from exc
                if item is not None:
                    items.append(item)

            pages += 1
            if on_page is not None:
                on_page(len(nodes))

            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage"):
                break

            if pages >= self._pagination.max_pages:
                raise PaginationLimitExceeded(phase=phase, pages=pages, cursor=cursor)

        return items

    def fetch_by_state_type(
        self,
        state_type: str,
        on_progress: Optional[StateProgress] = None,
    ) -> List[WorkItem]:
        """Fetch every issue whose workflow state category equals ``state_type``."""
        query = _issues_query(
            "{ state: { type: { eq: $stateType } } }",
            ", $stateType: String!",
            self._pagination.fetch_nested,
        )
        fetched: List[int] = [0]

        def _on_page(page_size: int) -> None:
            fetched[0] += page_size
            if on_progress is not None:
                on_progress(fetched[0], page_size)

        items = self._paginate(query, {"stateType": state_type}, phase=state_type, on_page=_on_page)
        logger.info("Fetched issues by state", extra={"state_type": state_type, "count": len(items)})
        return items

    def fetch_by_project_ids(
        self,
        project_ids: Iterable[str],
        on_progress: Optional[ProjectProgress] = None,
    ) -> List[WorkItem]:
        """Fetch every issue (any state) for each project, one paged query per project."""
        query = _issues_query(
            "{ project: { id: { eq: $projectId } } }",
            ", $projectId: ID!",
            self._pagination.fetch_nested,
        )
        items: List[WorkItem] = []

        for project_id in project_ids:
            project_items = self._paginate(
                query,
                {"projectId": project_id},
                phase=f"project:{project_id}",
            )
            items.extend(project_items)
            logger.debug(
                "Fetched project issues",
                extra={"project_id": project_id, "count": len(project_items)},
            )
            if on_progress is not None:
                on_progress(len(items))

        return items

    def _map_issue(self, node: Dict[str, Any]) -> Optional[WorkItem]:
        """Map one GraphQL issue node; nodes without team or state are skipped."""
        team = node.get("team")
        state = node.get("state")
        if not team or not state:
            logger.debug("Skipping issue without team or state", extra={"issue_id": node.get("id")})
            return None

        created_at = self._parse_datetime(node.get("createdAt"))
        updated_at = self._parse_datetime(node.get("updatedAt"))
        if not node.get("id") or created_at is None or updated_at is None:
            raise ApiError(f"Linear issue payload is missing required fields: payload={node}")

        assignee = node.get("assignee")
        project = node.get("project")
        comments = ((node.get("comments") or {}).get("nodes")) or []
        labels = ((node.get("labels") or {}).get("nodes")) or []
        estimate = node.get("estimate")

        return WorkItem(
            id=str(node["id"]),
            identifier=str(node.get("identifier") or ""),
            title=str(node.get("title") or ""),
            description=node.get("description") or None,
            team=TeamRef(id=str(team["id"]), name=str(team["name"]), key=str(team["key"])),
            state=WorkflowState(id=str(state["id"]), name=str(state["name"]), type=str(state["type"])),
            assignee=PersonRef(id=str(assignee["id"]), name=str(assignee["name"])) if assignee else None,
            priority=int(node.get("priority") or 0),
            estimate=float(estimate) if estimate is not None else None,
            created_at=created_at,
            updated_at=updated_at,
            started_at=self._parse_datetime(node.get("startedAt")),
            completed_at=self._parse_datetime(node.get("completedAt")),
            canceled_at=self._parse_datetime(node.get("canceledAt")),
            url=str(node.get("url") or ""),
            project=self._map_project(project) if project else None,
            labels=[str(label["name"]) for label in labels if label.get("name")],
            last_comment_at=self._parse_datetime(comments[0].get("createdAt")) if comments else None,
            parent_id=(node.get("parent") or {}).get("id"),
        )

    def _map_project(self, project: Dict[str, Any]) -> ProjectRef:
        lead = project.get("lead")
        return ProjectRef(
            id=str(project["id"]),
            name=str(project.get("name") or ""),
            state=project.get("state"),
            health=project.get("health"),
            updated_at=self._parse_datetime(project.get("updatedAt")),
            target_date=self._parse_datetime(project.get("targetDate")),
            start_date=self._parse_datetime(project.get("startDate")),
            lead=PersonRef(id=str(lead["id"]), name=str(lead["name"])) if lead else None,
        )
