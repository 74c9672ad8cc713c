"""Remote listing of a tenant's GitHub repositories."""

from __future__ import annotations

import typing as typ

import httpx

from steward.common.time import parse_github_datetime
from steward.github.errors import GitHubAPIError, GitHubResponseShapeError

from .errors import RemoteUnavailable
from .models import ListingOptions, RemoteRecord, RepositoryAttributes

if typ.TYPE_CHECKING:
    from steward.github.client import RepositoryHost

    from .models import TenantInfo


class RemoteLister(typ.Protocol):
    """Produce the complete remote collection for a tenant."""

    async def list_records(
        self, tenant: TenantInfo, options: ListingOptions
    ) -> list[RemoteRecord]:
        """Return every remote record or raise :class:`RemoteUnavailable`."""
        ...


def _str_field(payload: dict[str, typ.Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else default


def _int_field(payload: dict[str, typ.Any], key: str) -> int:
    value = payload.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def _bool_field(payload: dict[str, typ.Any], key: str) -> bool:
    return payload.get(key) is True


def remote_record_from_payload(
    tenant: TenantInfo, payload: dict[str, typ.Any]
) -> RemoteRecord:
    """Normalise one ``GET /orgs/{org}/repos`` item.

    Raises
    ------
    GitHubResponseShapeError
        If the payload has no numeric ``id`` or no ``name``.
    ValueError
        If a timestamp is not a timezone-aware ISO-8601 string.

    """
    remote_id = payload.get("id")
    if not isinstance(remote_id, int) or isinstance(remote_id, bool):
        raise GitHubResponseShapeError.missing("repository.id")
    name = payload.get("name")
    if not isinstance(name, str) or not name:
        raise GitHubResponseShapeError.missing("repository.name")

    owner_payload = payload.get("owner")
    owner = tenant.github_org
    if isinstance(owner_payload, dict) and isinstance(owner_payload.get("login"), str):
        owner = owner_payload["login"]

    topics = payload.get("topics")
    attributes = RepositoryAttributes(
        owner=owner,
        full_name=_str_field(payload, "full_name", f"{owner}/{name}"),
        description=_str_field(payload, "description"),
        default_branch=_str_field(payload, "default_branch", "main"),
        private=_bool_field(payload, "private"),
        fork=_bool_field(payload, "fork"),
        archived=_bool_field(payload, "archived"),
        disabled=_bool_field(payload, "disabled"),
        html_url=_str_field(payload, "html_url"),
        clone_url=_str_field(payload, "clone_url"),
        homepage=_str_field(payload, "homepage"),
        language=_str_field(payload, "language"),
        topics=tuple(t for t in topics if isinstance(t, str))
        if isinstance(topics, list)
        else (),
        stargazers_count=_int_field(payload, "stargazers_count"),
        forks_count=_int_field(payload, "forks_count"),
        watchers_count=_int_field(payload, "watchers_count"),
        open_issues_count=_int_field(payload, "open_issues_count"),
        size=_int_field(payload, "size"),
        has_issues=_bool_field(payload, "has_issues"),
        has_wiki=_bool_field(payload, "has_wiki"),
        has_pages=_bool_field(payload, "has_pages"),
        pushed_at=parse_github_datetime(payload.get("pushed_at")),
        created_at=parse_github_datetime(payload.get("created_at")),
        updated_at=parse_github_datetime(payload.get("updated_at")),
    )
    return RemoteRecord(
        remote_id=str(remote_id),
        natural_key=name,
        tenant_id=tenant.id,
        attributes=attributes,
    )


class GitHubRepositoryLister:
    """List organisation repositories through a :class:`RepositoryHost`.

    Pagination is drained completely before anything is returned. Any page
    failure, including exhausted retries inside the client, or a malformed
    item raises :class:`RemoteUnavailable` and discards the pages already
    fetched.
    """

    def __init__(self, host: RepositoryHost) -> None:
        """Wrap the host used to fetch repository pages."""
        self._host = host

    async def list_records(
        self, tenant: TenantInfo, options: ListingOptions | None = None
    ) -> list[RemoteRecord]:
        """Return every repository of ``tenant``'s organisation."""
        opts = options or ListingOptions()
        records: list[RemoteRecord] = []
        try:
            async for page in self._host.iter_organisation_repository_pages(
                tenant.github_org,
                per_page=opts.page_size,
                repo_type=opts.repo_type,
            ):
                records.extend(
                    remote_record_from_payload(tenant, item) for item in page
                )
        except (
            GitHubAPIError,
            GitHubResponseShapeError,
            httpx.HTTPError,
            ValueError,
        ) as exc:
            raise RemoteUnavailable(tenant.key, str(exc)) from exc
        return records


__all__ = ["GitHubRepositoryLister", "RemoteLister", "remote_record_from_payload"]
