"""GitHub REST API client used by the reconciliation engine."""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import dataclasses
import os
import typing as typ
from http import HTTPStatus
from urllib.parse import quote, urlsplit

import httpx

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import BranchState, Permission, ProtectionRule, TeamGrant, TeamRef

type Sleeper = cabc.Callable[[float], cabc.Awaitable[None]]

_DEFAULT_API_URL = "https://api.github.com"
_DEFAULT_MAX_RETRIES = 3


class RepositoryHost(typ.Protocol):
    """Remote operations the engine needs from a repository host."""

    def iter_organisation_repository_pages(
        self, org: str, *, per_page: int, repo_type: str
    ) -> cabc.AsyncIterator[list[dict[str, typ.Any]]]:
        """Yield raw repository payloads one page at a time."""
        ...

    async def list_organisation_teams(self, org: str) -> list[TeamRef]:
        """Return every team in the organisation."""
        ...

    async def get_branch(self, owner: str, repo: str, branch: str) -> BranchState:
        """Return the protection flag of a branch."""
        ...

    async def set_branch_protection(
        self, owner: str, repo: str, branch: str, rule: ProtectionRule
    ) -> None:
        """Replace the protection rule on a branch."""
        ...

    async def list_repository_teams(self, owner: str, repo: str) -> list[TeamGrant]:
        """Return the teams holding access to a repository."""
        ...

    async def grant_team_permission(  # noqa: PLR0913
        self,
        org: str,
        team_slug: str,
        owner: str,
        repo: str,
        permission: str,
    ) -> None:
        """Add or update a team's permission on a repository."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubRestConfig:
    """Configuration for the GitHub REST API client."""

    token: str
    api_url: str = _DEFAULT_API_URL
    timeout_s: float = 20.0
    user_agent: str = "steward/0.1"
    api_version: str = "2022-11-28"
    max_retries: int = _DEFAULT_MAX_RETRIES
    min_backoff_s: float = 0.5
    max_backoff_s: float = 20.0

    @classmethod
    def from_env(cls) -> GitHubRestConfig:
        """Build configuration from ``STEWARD_GITHUB_*`` environment variables.

        ``STEWARD_GITHUB_TOKEN`` is required. ``STEWARD_GITHUB_API_URL`` and
        ``STEWARD_GITHUB_MAX_RETRIES`` are optional overrides.
        """
        token = os.environ.get("STEWARD_GITHUB_TOKEN", "").strip()
        if not token:
            raise GitHubConfigError.missing_token()

        api_url = os.environ.get("STEWARD_GITHUB_API_URL", "").strip()
        raw_retries = os.environ.get("STEWARD_GITHUB_MAX_RETRIES", "").strip()
        max_retries = _DEFAULT_MAX_RETRIES
        if raw_retries:
            try:
                max_retries = int(raw_retries)
            except ValueError as exc:
                raise GitHubConfigError.invalid_setting(
                    "STEWARD_GITHUB_MAX_RETRIES", raw_retries
                ) from exc
            if max_retries < 0:
                raise GitHubConfigError.invalid_setting(
                    "STEWARD_GITHUB_MAX_RETRIES", raw_retries
                )

        return cls(
            token=token,
            api_url=api_url.rstrip("/") or _DEFAULT_API_URL,
            max_retries=max_retries,
        )


_RETRYABLE_STATUSES = frozenset(
    {
        HTTPStatus.TOO_MANY_REQUESTS,
        HTTPStatus.BAD_GATEWAY,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
        HTTPStatus.INTERNAL_SERVER_ERROR,
    }
)
_HTTP_ERROR_STATUS_THRESHOLD = 400
_ERROR_TEXT_LIMIT = 200


def _is_rate_limited(response: httpx.Response) -> bool:
    """Return True for GitHub's 403 primary and secondary rate limit answers."""
    if response.status_code != HTTPStatus.FORBIDDEN:
        return False
    return (
        "Retry-After" in response.headers
        or response.headers.get("X-RateLimit-Remaining") == "0"
    )


def _is_retryable(response: httpx.Response) -> bool:
    return response.status_code in _RETRYABLE_STATUSES or _is_rate_limited(response)


def _error_detail(response: httpx.Response) -> str | None:
    """Extract GitHub's ``message`` field, falling back to truncated text."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:_ERROR_TEXT_LIMIT] or None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str):
            return message
    return None


def _path_of(url: str) -> str:
    return urlsplit(url).path or url


def _segment(value: str) -> str:
    return quote(value, safe="")


def _expect_list(payload: object, *, field: str) -> list[dict[str, typ.Any]]:
    if not isinstance(payload, list):
        raise GitHubResponseShapeError.unexpected(field, "a list")
    return [item for item in payload if isinstance(item, dict)]


def _team_from_payload(payload: dict[str, typ.Any]) -> TeamRef:
    team_id = payload.get("id")
    slug = payload.get("slug")
    name = payload.get("name")
    if not isinstance(team_id, int):
        raise GitHubResponseShapeError.missing("team.id")
    if not isinstance(slug, str) or not isinstance(name, str):
        raise GitHubResponseShapeError.missing("team.slug")
    return TeamRef(id=team_id, slug=slug, name=name)


class GitHubRestClient:
    """GitHub REST implementation of :class:`RepositoryHost`.

    Every request is retried on HTTP 429, 5xx gateway errors, rate-limited
    403 responses, and transport failures, using exponential backoff bounded
    by the configuration (``Retry-After`` is honoured when present). Other
    4xx responses fail immediately.
    """

    def __init__(
        self,
        config: GitHubRestConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_s)
        self._headers = {
            "Authorization": f"Bearer {config.token}",
            "User-Agent": config.user_agent,
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": config.api_version,
        }

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitHubRestClient:
        """Return the client for use as an async context manager."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close owned resources on context exit."""
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self._config.api_url}{path}"

    def _backoff_seconds(self, attempt: int, retry_after: str | None) -> float:
        if retry_after is not None:
            try:
                return min(float(retry_after), self._config.max_backoff_s)
            except ValueError:
                pass
        return min(
            self._config.max_backoff_s, self._config.min_backoff_s * (2**attempt)
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, typ.Any] | None = None,
        json: dict[str, typ.Any] | None = None,
    ) -> httpx.Response:
        """Issue a request, retrying transient failures."""
        attempts = self._config.max_retries + 1
        last_error = "no attempt made"
        last_status: int | None = None

        for attempt in range(attempts):
            retry_after: str | None = None
            try:
                response = await self._client.request(
                    method, url, params=params, json=json, headers=self._headers
                )
            except httpx.TransportError as exc:
                last_error = str(exc) or type(exc).__name__
                last_status = None
            else:
                if response.status_code < _HTTP_ERROR_STATUS_THRESHOLD:
                    return response
                if not _is_retryable(response):
                    raise GitHubAPIError.http_error(
                        response.status_code,
                        method=method,
                        path=_path_of(url),
                        detail=_error_detail(response),
                    )
                last_status = response.status_code
                last_error = f"HTTP {response.status_code}"
                retry_after = response.headers.get("Retry-After")

            if attempt + 1 < attempts:
                await self._sleep(self._backoff_seconds(attempt, retry_after))

        raise GitHubAPIError.retries_exhausted(
            method=method,
            path=_path_of(url),
            attempts=attempts,
            last_error=last_error,
            status_code=last_status,
        )

    async def iter_organisation_repository_pages(
        self, org: str, *, per_page: int = 100, repo_type: str = "all"
    ) -> typ.AsyncIterator[list[dict[str, typ.Any]]]:
        """Yield organisation repositories page by page, following ``Link``."""
        url: str | None = self._url(f"/orgs/{_segment(org)}/repos")
        params: dict[str, typ.Any] | None = {"per_page": per_page, "type": repo_type}

        while url is not None:
            response = await self._request("GET", url, params=params)
            yield _expect_list(response.json(), field="repositories")
            # The next link already carries the query string.
            url = response.links.get("next", {}).get("url")
            params = None

    async def _collect_pages(self, url: str, *, field: str) -> list[dict[str, typ.Any]]:
        items: list[dict[str, typ.Any]] = []
        next_url: str | None = url
        params: dict[str, typ.Any] | None = {"per_page": 100}
        while next_url is not None:
            response = await self._request("GET", next_url, params=params)
            items.extend(_expect_list(response.json(), field=field))
            next_url = response.links.get("next", {}).get("url")
            params = None
        return items

    async def list_organisation_teams(self, org: str) -> list[TeamRef]:
        """Return every team in the organisation."""
        payloads = await self._collect_pages(
            self._url(f"/orgs/{_segment(org)}/teams"), field="teams"
        )
        return [_team_from_payload(payload) for payload in payloads]

    async def get_branch(self, owner: str, repo: str, branch: str) -> BranchState:
        """Return the protection flag of ``branch``."""
        response = await self._request(
            "GET",
            self._url(
                f"/repos/{_segment(owner)}/{_segment(repo)}/branches/{_segment(branch)}"
            ),
        )
        payload = response.json()
        if not isinstance(payload, dict):
            raise GitHubResponseShapeError.unexpected("branch", "an object")
        protected = payload.get("protected")
        if not isinstance(protected, bool):
            raise GitHubResponseShapeError.missing("branch.protected")
        name = payload.get("name")
        return BranchState(
            name=name if isinstance(name, str) else branch, protected=protected
        )

    async def set_branch_protection(
        self, owner: str, repo: str, branch: str, rule: ProtectionRule
    ) -> None:
        """Replace the protection rule on ``branch``."""
        await self._request(
            "PUT",
            self._url(
                f"/repos/{_segment(owner)}/{_segment(repo)}"
                f"/branches/{_segment(branch)}/protection"
            ),
            json=rule.to_payload(),
        )

    async def list_repository_teams(self, owner: str, repo: str) -> list[TeamGrant]:
        """Return the teams holding access to a repository."""
        payloads = await self._collect_pages(
            self._url(f"/repos/{_segment(owner)}/{_segment(repo)}/teams"),
            field="repository teams",
        )
        grants: list[TeamGrant] = []
        for payload in payloads:
            permission = payload.get("permission")
            grants.append(
                TeamGrant(
                    team=_team_from_payload(payload),
                    permission=permission if isinstance(permission, str) else "",
                )
            )
        return grants

    async def grant_team_permission(  # noqa: PLR0913
        self,
        org: str,
        team_slug: str,
        owner: str,
        repo: str,
        permission: str = Permission.PUSH,
    ) -> None:
        """Add or update a team's permission on a repository."""
        await self._request(
            "PUT",
            self._url(
                f"/orgs/{_segment(org)}/teams/{_segment(team_slug)}"
                f"/repos/{_segment(owner)}/{_segment(repo)}"
            ),
            json={"permission": str(permission)},
        )


__all__ = ["GitHubRestClient", "GitHubRestConfig", "RepositoryHost"]
