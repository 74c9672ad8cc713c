"""Airtable mirror sink.

Rows are matched on the tenant column plus the column of the record's match
key (the repository name by default). Upserts use Airtable's
``performUpsert``; deletes look the row up with ``filterByFormula`` first,
so deleting a row that is already gone is a no-op.
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
import typing as typ
from http import HTTPStatus
from urllib.parse import quote

import httpx

from steward.reconcile.models import MatchKey

from .errors import AirtableConfigError, MirrorSyncError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from steward.reconcile.models import RecordIdentity

    from .sink import MirrorRecord

    type Sleeper = cabc.Callable[[float], cabc.Awaitable[None]]

_DEFAULT_API_URL = "https://api.airtable.com/v0"
_DEFAULT_TABLE = "GitHub Repos"
_RETRYABLE_STATUSES = frozenset(
    {
        HTTPStatus.TOO_MANY_REQUESTS,
        HTTPStatus.INTERNAL_SERVER_ERROR,
        HTTPStatus.BAD_GATEWAY,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
    }
)
_HTTP_ERROR_STATUS_THRESHOLD = 400
# Airtable rejects DELETE requests naming more than ten records.
_DELETE_BATCH_SIZE = 10


@dataclasses.dataclass(frozen=True, slots=True)
class AirtableConfig:
    """Connection and column settings for the Airtable mirror."""

    token: str
    base_id: str
    table: str = _DEFAULT_TABLE
    api_url: str = _DEFAULT_API_URL
    tenant_field: str = "Tenant"
    name_field: str = "Name"
    remote_id_field: str = "GitHub ID"
    timeout_s: float = 30.0
    max_retries: int = 5
    min_backoff_s: float = 0.8
    max_backoff_s: float = 20.0

    @classmethod
    def from_env(cls) -> AirtableConfig | None:
        """Build configuration from ``STEWARD_AIRTABLE_*`` variables.

        Returns ``None`` when neither a token nor a base id is set, which
        disables mirroring. Setting only one of them is an error.
        """
        token = os.environ.get("STEWARD_AIRTABLE_TOKEN", "").strip()
        base_id = os.environ.get("STEWARD_AIRTABLE_BASE_ID", "").strip()
        if not token and not base_id:
            return None
        if not token:
            raise AirtableConfigError.missing_setting("STEWARD_AIRTABLE_TOKEN")
        if not base_id:
            raise AirtableConfigError.missing_setting("STEWARD_AIRTABLE_BASE_ID")
        table = os.environ.get("STEWARD_AIRTABLE_TABLE", "").strip() or _DEFAULT_TABLE
        raw_retries = os.environ.get("STEWARD_AIRTABLE_MAX_RETRIES", "").strip()
        if not raw_retries:
            return cls(token=token, base_id=base_id, table=table)
        if not raw_retries.isdigit():
            raise AirtableConfigError.invalid_setting(
                "STEWARD_AIRTABLE_MAX_RETRIES", raw_retries
            )
        return cls(
            token=token, base_id=base_id, table=table, max_retries=int(raw_retries)
        )

    def key_field(self, match_on: MatchKey) -> str:
        """Return the column holding the value of ``match_on``."""
        if match_on is MatchKey.REMOTE_ID:
            return self.remote_id_field
        return self.name_field


def _formula_literal(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_match_formula(fields: typ.Mapping[str, str]) -> str:
    """Return a ``filterByFormula`` expression matching every field exactly.

    >>> build_match_formula({"Tenant": "acme", "Name": "alpha"})
    "AND({Tenant}='acme', {Name}='alpha')"

    """
    clauses = [f"{{{field}}}={_formula_literal(value)}" for field, value in fields.items()]
    return f"AND({', '.join(clauses)})"


def _isoformat(value: object) -> str | None:
    isoformat = getattr(value, "isoformat", None)
    return isoformat() if callable(isoformat) else None


def _row_fields(config: AirtableConfig, record: MirrorRecord) -> dict[str, typ.Any]:
    attrs = record.attributes
    return {
        config.tenant_field: record.tenant_key,
        config.name_field: record.name,
        config.remote_id_field: record.remote_id,
        "Owner": attrs.owner,
        "Full Name": attrs.full_name,
        "Description": attrs.description,
        "Default Branch": attrs.default_branch,
        "Private": attrs.private,
        "Fork": attrs.fork,
        "Archived": attrs.archived,
        "Link": attrs.html_url,
        "Clone URL": attrs.clone_url,
        "Homepage": attrs.homepage,
        "Language": attrs.language,
        "Topics": ", ".join(attrs.topics),
        "Stars": attrs.stargazers_count,
        "Forks": attrs.forks_count,
        "Watchers": attrs.watchers_count,
        "Open Issues": attrs.open_issues_count,
        "Size": attrs.size,
        "Has Issues": attrs.has_issues,
        "Has Wiki": attrs.has_wiki,
        "Has Pages": attrs.has_pages,
        "Pushed At": _isoformat(attrs.pushed_at),
        "Created At": _isoformat(attrs.created_at),
        "Updated At": _isoformat(attrs.updated_at),
    }


class AirtableMirrorSink:
    """:class:`~steward.mirror.sink.MirrorSink` writing to one Airtable table.

    Requests are retried on HTTP 429, 5xx and transport errors with
    exponential backoff, honouring ``Retry-After``. Other 4xx answers fail
    immediately.
    """

    def __init__(
        self,
        config: AirtableConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialise the sink with connection settings."""
        self._config = config
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_s)
        self._table_url = (
            f"{config.api_url.rstrip('/')}/{config.base_id}/"
            f"{quote(config.table, safe='')}"
        )
        self._headers = {
            "Authorization": f"Bearer {config.token}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    def _backoff_seconds(self, attempt: int, retry_after: str | None) -> float:
        if retry_after is not None:
            try:
                return min(float(retry_after), self._config.max_backoff_s)
            except ValueError:
                pass
        return min(self._config.max_backoff_s, self._config.min_backoff_s * 2**attempt)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        key: str,
        params: typ.Any = None,
        json: dict[str, typ.Any] | None = None,
    ) -> httpx.Response:
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
                if response.status_code not in _RETRYABLE_STATUSES:
                    raise MirrorSyncError(
                        operation,
                        key,
                        f"Airtable returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                last_status = response.status_code
                last_error = f"HTTP {response.status_code}"
                retry_after = response.headers.get("Retry-After")

            if attempt + 1 < attempts:
                await self._sleep(self._backoff_seconds(attempt, retry_after))

        raise MirrorSyncError(
            operation,
            key,
            f"gave up after {attempts} attempt(s): {last_error}",
            status_code=last_status,
        )

    async def upsert(self, record: MirrorRecord) -> None:
        """Create or overwrite the row for ``record``."""
        merge_on = [
            self._config.tenant_field,
            self._config.key_field(record.identity.match_on),
        ]
        await self._request(
            "PATCH",
            self._table_url,
            operation="upsert",
            key=str(record.identity),
            json={
                "performUpsert": {"fieldsToMergeOn": merge_on},
                "records": [{"fields": _row_fields(self._config, record)}],
                "typecast": True,
            },
        )

    async def _find_row_ids(self, tenant_key: str, identity: RecordIdentity) -> list[str]:
        formula = build_match_formula(
            {
                self._config.tenant_field: tenant_key,
                self._config.key_field(identity.match_on): identity.key,
            }
        )
        response = await self._request(
            "GET",
            self._table_url,
            operation="delete",
            key=str(identity),
            params={"filterByFormula": formula, "fields[]": self._config.name_field},
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MirrorSyncError("delete", str(identity), "invalid JSON") from exc
        records = payload.get("records") if isinstance(payload, dict) else None
        if not isinstance(records, list):
            raise MirrorSyncError("delete", str(identity), "response has no records")
        return [
            row["id"]
            for row in records
            if isinstance(row, dict) and isinstance(row.get("id"), str)
        ]

    async def delete(self, tenant_key: str, identity: RecordIdentity) -> None:
        """Delete every row matching ``identity``; nothing happens when absent."""
        row_ids = await self._find_row_ids(tenant_key, identity)
        for start in range(0, len(row_ids), _DELETE_BATCH_SIZE):
            batch = row_ids[start : start + _DELETE_BATCH_SIZE]
            await self._request(
                "DELETE",
                self._table_url,
                operation="delete",
                key=str(identity),
                params=[("records[]", row_id) for row_id in batch],
            )


__all__ = ["AirtableConfig", "AirtableMirrorSink", "build_match_formula"]
