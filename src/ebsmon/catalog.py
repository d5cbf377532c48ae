"""Catalog lookups: which add-on files exist, queried through Redash."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import requests

from ebsmon.exceptions import CatalogError
from ebsmon.models import FileRow, RunBoundary, parse_timestamp

logger = logging.getLogger(__name__)

# AMO constants
ADDON_TYPE_STRINGS = {
    "extension": 1,
    "theme": 2,
    "dictionary": 3,
    "search": 4,
    "langpack": 5,
    "persona": 9,
    "statictheme": 10,
}
ADDON_CHANNEL_STRINGS = {
    "unlisted": 1,
    "listed": 2,
}
ADDON_STATUS_STRINGS = {
    "incomplete": 0,
    "nominated": 3,
    "public": 4,
    "disabled": 5,
    "deleted": 11,
}
ADDON_FILE_STATUS_STRINGS = {
    "unreviewed": 1,
    "public": 4,
    "disabled": 5,
}

QUERY_TIMEOUT = 600  # seconds
JOB_SUCCESS = 3
JOB_FAILURE = 4
JOB_CANCELLED = 5


@dataclass
class CatalogFilter:
    """Criteria for selecting files.

    ``after`` and ``min_id`` are exclusive, ``until`` and ``max_id`` inclusive.
    Symbolic names or numeric ids are accepted for types, statuses and channel;
    ``"all"`` in ``addon_types`` disables the type filter.
    """

    channel: str | int | None = None
    after: datetime | None = None
    until: datetime | None = None
    addon_types: list[str | int] = field(default_factory=list)
    file_status: list[str | int] = field(default_factory=list)
    addon_status: list[str | int] = field(default_factory=list)
    min_id: int | None = None
    max_id: int | None = None


class PathResolver(Protocol):
    def get_paths(self, criteria: CatalogFilter) -> list[str]: ...

    def get_boundary(
        self, until: datetime, addon_types: list[str | int] | None = None
    ) -> RunBoundary | None: ...


def _resolve(value: str | int, names: dict[str, int], kind: str) -> int:
    if isinstance(value, int):
        return value
    if value in names:
        return names[value]
    try:
        return int(value)
    except ValueError:
        raise CatalogError(f"Unknown {kind}: {value}") from None


def _ids(values: list[str | int], names: dict[str, int], kind: str) -> str:
    return ",".join(str(_resolve(v, names, kind)) for v in values)


def _sql_datetime(value: datetime) -> str:
    # Catalog timestamps are naive UTC
    stamp = parse_timestamp(value.isoformat()).strftime("%Y-%m-%d %H:%M:%S")
    return f"'{stamp}'"


def build_where(criteria: CatalogFilter) -> list[str]:
    """SQL conditions for ``criteria``; every value is normalized first."""
    where = ["f.is_webextension = 1"]

    if criteria.addon_types and "all" not in criteria.addon_types:
        ids = _ids(criteria.addon_types, ADDON_TYPE_STRINGS, "addon type")
        where.append(f"a.addontype_id IN ({ids})")

    if criteria.addon_status:
        ids = _ids(criteria.addon_status, ADDON_STATUS_STRINGS, "addon status")
        where.append(f"a.status IN ({ids})")

    if criteria.file_status:
        ids = _ids(criteria.file_status, ADDON_FILE_STATUS_STRINGS, "file status")
        where.append(f"f.status IN ({ids})")

    if criteria.channel is not None:
        where.append(f"v.channel = {_resolve(criteria.channel, ADDON_CHANNEL_STRINGS, 'channel')}")

    if criteria.after is not None:
        where.append(f"f.created > {_sql_datetime(criteria.after)}")

    if criteria.until is not None:
        where.append(f"f.created <= {_sql_datetime(criteria.until)}")

    if criteria.min_id is not None:
        where.append(f"f.id > {int(criteria.min_id)}")

    if criteria.max_id is not None:
        where.append(f"f.id <= {int(criteria.max_id)}")

    return where


def build_query(
    criteria: CatalogFilter,
    order_by: str = "f.created",
    limit: int | None = None,
) -> str:
    """Build the file listing query for ``criteria``."""
    sql = (
        "SELECT f.created, a.addontype_id, a.id AS addon_id, v.channel,"
        " v.id AS version_id, f.id AS file_id"
        " FROM files f"
        " JOIN versions v ON f.version_id = v.id"
        " JOIN addons a ON v.addon_id = a.id"
        " WHERE " + " AND ".join(build_where(criteria))
        + f" ORDER BY {order_by}"
    )
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return sql


class RedashClient:
    """Minimal client for Redash ad-hoc queries."""

    def __init__(
        self,
        url: str,
        api_key: str,
        data_source_id: int,
        timeout: int = 30,
        poll_interval: float = 1.0,
        session: requests.Session | None = None,
    ):
        self.url = url.rstrip("/")
        self.data_source_id = data_source_id
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Key {api_key}"})

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.session.request(
                method, f"{self.url}{endpoint}", timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.ConnectionError as e:
            raise CatalogError(f"Could not connect to Redash at {self.url}: {e}") from e
        except requests.exceptions.Timeout:
            raise CatalogError(f"Redash request to {endpoint} timed out") from None
        except requests.exceptions.RequestException as e:
            raise CatalogError(f"Redash request to {endpoint} failed: {e}") from e
        except ValueError as e:
            raise CatalogError(f"Invalid response from Redash: {e}") from e

    def query(self, sql: str, max_wait: float = QUERY_TIMEOUT) -> list[dict[str, Any]]:
        """Run ``sql`` and return its rows, polling the job until it finishes."""
        logger.debug("Redash query: %s", sql)
        data = self._request(
            "POST",
            "/api/query_results",
            json={"query": sql, "data_source_id": self.data_source_id, "max_age": 0},
        )
        if "query_result" in data:
            return data["query_result"]["data"]["rows"]

        job = data["job"]
        deadline = time.monotonic() + max_wait
        while job["status"] not in (JOB_SUCCESS, JOB_FAILURE, JOB_CANCELLED):
            if time.monotonic() > deadline:
                raise CatalogError(f"Redash query did not finish within {max_wait}s")
            time.sleep(self.poll_interval)
            job = self._request("GET", f"/api/jobs/{job['id']}")["job"]

        if job["status"] == JOB_FAILURE:
            raise CatalogError(f"Redash query failed: {job.get('error', 'unknown error')}")
        if job["status"] == JOB_CANCELLED:
            raise CatalogError("Redash query was cancelled")

        result = self._request("GET", f"/api/query_results/{job['query_result_id']}")
        return result["query_result"]["data"]["rows"]


def row_to_file(row: dict[str, Any]) -> FileRow:
    return FileRow(
        created=parse_timestamp(str(row["created"])),
        addon_type_id=int(row["addontype_id"]),
        addon_id=int(row["addon_id"]),
        channel=int(row["channel"]),
        version_id=int(row["version_id"]),
        file_id=int(row["file_id"]),
    )


class Catalog:
    """PathResolver backed by the add-on database through Redash."""

    def __init__(self, client: RedashClient):
        self.client = client

    def get_rows(self, criteria: CatalogFilter) -> list[FileRow]:
        rows = self.client.query(build_query(criteria))
        return [row_to_file(row) for row in rows]

    def get_paths(self, criteria: CatalogFilter) -> list[str]:
        return [row.path for row in self.get_rows(criteria)]

    def get_boundary(
        self, until: datetime, addon_types: list[str | int] | None = None
    ) -> RunBoundary | None:
        """Newest file created up to ``until``, or None if there is none."""
        criteria = CatalogFilter(until=until, addon_types=list(addon_types or []))
        rows = self.client.query(build_query(criteria, order_by="f.id DESC", limit=1))
        if not rows:
            return None
        row = row_to_file(rows[0])
        return RunBoundary(file_id=row.file_id, timestamp=row.created)
