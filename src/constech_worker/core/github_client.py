"""GitHub REST and GraphQL client.

Operations fall into two classes. Primary operations (creating issues and
pull requests, reading an issue, resolving the current user) raise
:class:`GitHubError`. Auxiliary operations (project board sync and the
display-only title lookup) log a warning and return ``None``/``False``.
"""

import logging
import os
import re
from typing import Any, Dict, List, Literal, Optional

import httpx

from constech_worker.core.errors import GitHubError
from constech_worker.core.models import GitHubIssue, ProjectBoard, PullRequest, PullRequestRequest

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"

ItemKind = Literal["issue", "pr"]

_ADD_TO_PROJECT = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) {
    item { id }
  }
}
"""

_PROJECT_ITEMS = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    %s(number: $number) {
      projectItems(first: 10) {
        nodes { id project { id } }
      }
    }
  }
}
"""

_UPDATE_STATUS = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(input: {
    projectId: $projectId
    itemId: $itemId
    fieldId: $fieldId
    value: {singleSelectOptionId: $optionId}
  }) {
    projectV2Item { id }
  }
}
"""

_DISCOVER_PROJECTS = """
query($owner: String!, $repo: String!) {
  repository(owner: $owner, name: $repo) {
    projectsV2(first: 20) {
      nodes {
        id
        title
        number
        fields(first: 20) {
          nodes {
            ... on ProjectV2SingleSelectField {
              id
              name
              options { id name }
            }
          }
        }
      }
    }
  }
}
"""


def normalize_option_name(name: str) -> str:
    """Reduce a status option name to lowercase letters ("In progress" -> "inprogress")."""
    return re.sub(r"[^a-z]", "", name.lower())


def _build_http_client(
    token: str,
    base_url: str,
    timeout: float,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": API_VERSION,
    }
    return httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)


class GitHubClient:
    """Thin synchronous wrapper over the GitHub API."""

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not token:
            raise GitHubError("A GitHub token is required")
        base_url = (base_url or os.environ.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/")
        if timeout is None:
            timeout = float(os.environ.get("GITHUB_HTTP_TIMEOUT", "30"))
        self._http = _build_http_client(token, base_url, timeout, transport)

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:500]
            raise GitHubError(
                f"GitHub API error {e.response.status_code} for {method} {path}: {detail}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise GitHubError(f"Failed to connect to GitHub: {e}") from e

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._request("POST", "/graphql", json={"query": query, "variables": variables})
        if not isinstance(payload, dict):
            raise GitHubError("Unexpected GraphQL response")
        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            raise GitHubError(f"GraphQL error: {messages}")
        return payload.get("data") or {}

    @staticmethod
    def _to_issue(data: Dict[str, Any]) -> GitHubIssue:
        return GitHubIssue(
            number=data["number"],
            title=data["title"],
            body=data.get("body") or "",
            url=data["html_url"],
        )

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        assignees: Optional[List[str]] = None,
        labels: Optional[List[str]] = None,
    ) -> GitHubIssue:
        """Create an issue.

        Raises:
            GitHubError: If the issue cannot be created
        """
        payload: Dict[str, Any] = {"title": title, "body": body}
        if assignees:
            payload["assignees"] = assignees
        if labels:
            payload["labels"] = labels

        try:
            data = self._request("POST", f"/repos/{owner}/{repo}/issues", json=payload)
        except GitHubError as e:
            logger.error(f"Failed to create issue: {e}")
            raise GitHubError(f"Failed to create GitHub issue: {e}", e.status_code) from e

        issue = self._to_issue(data)
        logger.debug(f"Created issue #{issue.number}: {issue.title}")
        return issue

    def get_issue(self, owner: str, repo: str, number: int) -> GitHubIssue:
        """Fetch an issue.

        Raises:
            GitHubError: If the issue cannot be read
        """
        try:
            data = self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        except GitHubError as e:
            raise GitHubError(f"Failed to get issue #{number}: {e}", e.status_code) from e
        return self._to_issue(data)

    def fetch_issue_title(self, owner: str, repo: str, number: int) -> Optional[str]:
        """Best-effort title lookup used for display only."""
        try:
            return self.get_issue(owner, repo, number).title
        except GitHubError as e:
            logger.warning(f"Could not fetch title for issue #{number}: {e}")
            return None

    def add_issue_to_project(
        self, number: int, project_id: str, owner: str, repo: str
    ) -> Optional[str]:
        """Add an issue to a project board.

        Returns:
            The project item ID, or None if the operation failed
        """
        try:
            issue = self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
            data = self._graphql(
                _ADD_TO_PROJECT, {"projectId": project_id, "contentId": issue["node_id"]}
            )
            item_id = data["addProjectV2ItemById"]["item"]["id"]
        except (GitHubError, KeyError, TypeError) as e:
            logger.warning(f"Failed to add issue #{number} to project: {e}")
            return None

        logger.debug(f"Added issue #{number} to project {project_id}")
        return item_id

    def update_project_item_status(
        self,
        item_number: int,
        project_id: str,
        status_field_id: str,
        status_option_id: str,
        kind: ItemKind,
        owner: str,
        repo: str,
    ) -> bool:
        """Set the board status of an issue or pull request.

        Returns:
            True if the status was updated
        """
        field = "issue" if kind == "issue" else "pullRequest"
        try:
            data = self._graphql(
                _PROJECT_ITEMS % field, {"owner": owner, "repo": repo, "number": item_number}
            )
            nodes = data["repository"][field]["projectItems"]["nodes"]
            matching = [
                node for node in nodes if (node.get("project") or {}).get("id") == project_id
            ]
            items = matching or nodes
            if not items:
                logger.warning(f"No project items found for {kind} #{item_number}")
                return False

            self._graphql(
                _UPDATE_STATUS,
                {
                    "projectId": project_id,
                    "itemId": items[0]["id"],
                    "fieldId": status_field_id,
                    "optionId": status_option_id,
                },
            )
        except (GitHubError, KeyError, TypeError) as e:
            logger.warning(f"Failed to update project item status: {e}")
            return False

        logger.debug(f"Updated {kind} #{item_number} status in project")
        return True

    def create_pull_request(self, request: PullRequestRequest) -> PullRequest:
        """Open a pull request, then apply assignees, reviewers and labels.

        Raises:
            GitHubError: If any of the calls fails
        """
        base = f"/repos/{request.owner}/{request.repo}"
        try:
            data = self._request(
                "POST",
                f"{base}/pulls",
                json={
                    "title": request.title,
                    "body": request.body,
                    "head": request.head,
                    "base": request.base,
                },
            )
            number = data["number"]
            if request.assignees:
                self._request(
                    "POST",
                    f"{base}/issues/{number}/assignees",
                    json={"assignees": request.assignees},
                )
            if request.reviewers:
                self._request(
                    "POST",
                    f"{base}/pulls/{number}/requested_reviewers",
                    json={"reviewers": request.reviewers},
                )
            if request.labels:
                self._request(
                    "POST", f"{base}/issues/{number}/labels", json={"labels": request.labels}
                )
        except GitHubError as e:
            raise GitHubError(f"Failed to create pull request: {e}", e.status_code) from e

        logger.debug(f"Created PR #{number}: {request.title}")
        return PullRequest(number=number, url=data["html_url"])

    def get_current_user(self) -> Dict[str, Optional[str]]:
        """Return the login and display name of the authenticated user.

        Raises:
            GitHubError: If the token is rejected
        """
        try:
            data = self._request("GET", "/user")
        except GitHubError as e:
            raise GitHubError(f"Failed to get current user: {e}", e.status_code) from e
        return {"login": data["login"], "name": data.get("name")}

    def discover_projects(self, owner: str, repo: str) -> List[ProjectBoard]:
        """List project boards linked to a repository, with their status fields.

        Status option keys are normalized with :func:`normalize_option_name`.
        Failures are logged at debug level and produce an empty list.
        """
        try:
            data = self._graphql(_DISCOVER_PROJECTS, {"owner": owner, "repo": repo})
            nodes = data["repository"]["projectsV2"]["nodes"]
        except (GitHubError, KeyError, TypeError) as e:
            logger.debug(f"Failed to discover projects: {e}")
            return []

        boards = []
        for project in nodes:
            if not project:
                continue
            fields = (project.get("fields") or {}).get("nodes") or []
            status_field = next(
                (f for f in fields if f and f.get("name") == "Status" and f.get("options")),
                None,
            )
            options: Dict[str, str] = {}
            if status_field:
                for option in status_field["options"]:
                    options[normalize_option_name(option["name"])] = option["id"]
            boards.append(
                ProjectBoard(
                    id=project["id"],
                    title=project["title"],
                    number=project.get("number"),
                    status_field_id=status_field["id"] if status_field else None,
                    status_options=options,
                )
            )
        return boards
