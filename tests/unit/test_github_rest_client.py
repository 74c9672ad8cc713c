"""Unit tests for the GitHub REST client."""

from __future__ import annotations

import json
import secrets
import typing as typ

import httpx
import pytest

from steward.github import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
    GitHubRestClient,
    GitHubRestConfig,
    ProtectionRule,
)

_TOKEN = secrets.token_hex(8)
_API = "https://api.example.test"

type Reply = httpx.Response | Exception


class _Recorder:
    """Serve queued replies and remember requests and backoff delays."""

    def __init__(self, replies: list[Reply]) -> None:
        self.replies = list(replies)
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def _make_client(
    replies: list[Reply], *, max_retries: int = 2
) -> tuple[GitHubRestClient, _Recorder]:
    recorder = _Recorder(replies)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(recorder.handler))
    client = GitHubRestClient(
        GitHubRestConfig(token=_TOKEN, api_url=_API, max_retries=max_retries),
        http_client=http_client,
        sleep=recorder.sleep,
    )
    return client, recorder


def _repos_page(
    names: list[str], *, next_url: str | None = None
) -> httpx.Response:
    headers = {"Link": f'<{next_url}>; rel="next"'} if next_url else {}
    payload = [{"id": index, "name": name} for index, name in enumerate(names)]
    return httpx.Response(200, json=payload, headers=headers)


async def _drain(client: GitHubRestClient, org: str) -> list[list[dict[str, typ.Any]]]:
    return [page async for page in client.iter_organisation_repository_pages(org)]


@pytest.mark.asyncio
async def test_repository_pages_follow_link_headers() -> None:
    """Pagination follows ``rel=next`` until the last page."""
    client, recorder = _make_client(
        [
            _repos_page(["alpha", "beta"], next_url=f"{_API}/orgs/acme/repos?page=2"),
            _repos_page(["gamma"]),
        ]
    )

    pages = await _drain(client, "acme")

    assert [[repo["name"] for repo in page] for page in pages] == [
        ["alpha", "beta"],
        ["gamma"],
    ]
    first, second = recorder.requests
    assert first.url.path == "/orgs/acme/repos"
    assert first.url.params["per_page"] == "100"
    assert first.url.params["type"] == "all"
    assert second.url.params["page"] == "2"
    assert first.headers["Authorization"] == f"Bearer {_TOKEN}"
    assert first.headers["X-GitHub-Api-Version"] == "2022-11-28"


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff() -> None:
    """5xx and transport errors back off exponentially before retrying."""
    client, recorder = _make_client(
        [
            httpx.Response(502),
            httpx.ConnectError("connection refused"),
            _repos_page(["alpha"]),
        ]
    )

    pages = await _drain(client, "acme")

    assert pages == [[{"id": 0, "name": "alpha"}]]
    assert recorder.sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_after_header_sets_delay() -> None:
    """Rate-limited answers honour ``Retry-After``."""
    client, recorder = _make_client(
        [
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(403, headers={"Retry-After": "7"}),
            _repos_page([]),
        ]
    )

    await _drain(client, "acme")

    assert recorder.sleeps == [3.0, 7.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_with_last_status() -> None:
    """Persistent 5xx answers surface once retries are exhausted."""
    client, recorder = _make_client(
        [httpx.Response(503) for _ in range(3)], max_retries=2
    )

    with pytest.raises(GitHubAPIError, match=r"after 3 attempt\(s\)") as excinfo:
        await _drain(client, "acme")

    assert excinfo.value.status_code == 503
    assert len(recorder.requests) == 3
    assert len(recorder.sleeps) == 2


@pytest.mark.asyncio
async def test_client_errors_fail_without_retry() -> None:
    """Non-retryable 4xx answers raise immediately with GitHub's message."""
    client, recorder = _make_client(
        [httpx.Response(409, json={"message": "Git Repository is empty."})]
    )

    with pytest.raises(GitHubAPIError, match="Git Repository is empty") as excinfo:
        await client.get_branch("acme", "fresh", "main")

    assert excinfo.value.status_code == 409
    assert recorder.sleeps == []


@pytest.mark.asyncio
async def test_plain_forbidden_is_not_retried() -> None:
    """A 403 without rate-limit headers is a permission failure."""
    client, recorder = _make_client([httpx.Response(403, text="forbidden")])

    with pytest.raises(GitHubAPIError) as excinfo:
        await client.list_organisation_teams("acme")

    assert excinfo.value.status_code == 403
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_get_branch_reads_protection_flag() -> None:
    """get_branch returns the protected flag of the branch."""
    client, recorder = _make_client(
        [httpx.Response(200, json={"name": "main", "protected": True})]
    )

    state = await client.get_branch("acme", "alpha", "main")

    assert state.protected is True
    assert state.name == "main"
    assert recorder.requests[0].url.path == "/repos/acme/alpha/branches/main"


@pytest.mark.asyncio
async def test_get_branch_rejects_payload_without_flag() -> None:
    """Branch payloads without ``protected`` are a shape error."""
    client, _ = _make_client([httpx.Response(200, json={"name": "main"})])

    with pytest.raises(GitHubResponseShapeError, match="branch.protected"):
        await client.get_branch("acme", "alpha", "main")


@pytest.mark.asyncio
async def test_set_branch_protection_sends_rule() -> None:
    """Protection writes PUT the rule payload."""
    client, recorder = _make_client([httpx.Response(200, json={})])

    await client.set_branch_protection("acme", "alpha", "main", ProtectionRule())

    request = recorder.requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/repos/acme/alpha/branches/main/protection"
    body = json.loads(request.content)
    assert body["allow_force_pushes"] is False
    assert body["enforce_admins"] is True
    assert body["required_pull_request_reviews"] is None


@pytest.mark.asyncio
async def test_list_repository_teams_parses_permissions() -> None:
    """Repository team listings map to team grants."""
    client, _ = _make_client(
        [
            httpx.Response(
                200,
                json=[
                    {"id": 1, "slug": "eng", "name": "Eng", "permission": "admin"},
                    {"id": 2, "slug": "ops", "name": "Ops", "permission": "pull"},
                ],
            )
        ]
    )

    grants = await client.list_repository_teams("acme", "alpha")

    assert [(g.team.slug, g.permission) for g in grants] == [
        ("eng", "admin"),
        ("ops", "pull"),
    ]


@pytest.mark.asyncio
async def test_list_organisation_teams_rejects_malformed_entries() -> None:
    """Team payloads without an id are a shape error."""
    client, _ = _make_client([httpx.Response(200, json=[{"slug": "eng"}])])

    with pytest.raises(GitHubResponseShapeError, match="team.id"):
        await client.list_organisation_teams("acme")


@pytest.mark.asyncio
async def test_grant_team_permission_puts_permission() -> None:
    """Grants PUT the permission on the team repository endpoint."""
    client, recorder = _make_client([httpx.Response(204)])

    await client.grant_team_permission("acme", "eng", "acme", "alpha", "push")

    request = recorder.requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/orgs/acme/teams/eng/repos/acme/alpha"
    assert json.loads(request.content) == {"permission": "push"}


@pytest.mark.asyncio
async def test_repository_pages_must_be_lists() -> None:
    """A non-list repositories payload is a shape error."""
    client, _ = _make_client([httpx.Response(200, json={"message": "nope"})])

    with pytest.raises(GitHubResponseShapeError, match="repositories"):
        await _drain(client, "acme")


def test_empty_token_is_rejected() -> None:
    """Clients refuse blank tokens."""
    with pytest.raises(GitHubConfigError, match="non-empty"):
        GitHubRestClient(GitHubRestConfig(token="  "))


def test_config_from_env_requires_token(monkeypatch: pytest.MonkeyPatch) -> None:
    """from_env raises when no token is configured."""
    monkeypatch.delenv("STEWARD_GITHUB_TOKEN", raising=False)

    with pytest.raises(GitHubConfigError, match="STEWARD_GITHUB_TOKEN"):
        GitHubRestConfig.from_env()


def test_config_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """from_env applies the API URL and retry overrides."""
    monkeypatch.setenv("STEWARD_GITHUB_TOKEN", _TOKEN)
    monkeypatch.setenv("STEWARD_GITHUB_API_URL", "https://ghe.example.test/api/v3/")
    monkeypatch.setenv("STEWARD_GITHUB_MAX_RETRIES", "5")

    config = GitHubRestConfig.from_env()

    assert config.token == _TOKEN
    assert config.api_url == "https://ghe.example.test/api/v3"
    assert config.max_retries == 5


@pytest.mark.parametrize("value", ["many", "-1"])
def test_config_from_env_rejects_bad_retries(
    monkeypatch: pytest.MonkeyPatch, value: str
) -> None:
    """Unparseable or negative retry counts are configuration errors."""
    monkeypatch.setenv("STEWARD_GITHUB_TOKEN", _TOKEN)
    monkeypatch.setenv("STEWARD_GITHUB_MAX_RETRIES", value)

    with pytest.raises(GitHubConfigError, match="STEWARD_GITHUB_MAX_RETRIES"):
        GitHubRestConfig.from_env()
