"""Fixed catalog of dashboard aggregations over the requests table.

Every query takes an optional TimeRange, applied as ``start <= ts < end``
(UTC) before aggregation. Ranked results break ties on the grouping key
ascending, so repeated calls over the same data return identical rows.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import duckdb

from ezlens.store import TABLE_NAME, SchemaStore

logger = logging.getLogger(__name__)

TOP_HOSTS_LIMIT = 15
TOP_COUNTRIES_LIMIT = 20
ERROR_HOSTS_LIMIT = 10
TOP_PATHS_LIMIT = 15

DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24

QUERY_NAMES = (
    "requests_over_time",
    "bandwidth_over_time",
    "top_hosts",
    "status_codes",
    "top_countries",
    "hourly_heatmap",
    "error_analysis",
    "user_agents",
    "top_paths",
)

# First matching branch wins; order matters (Edge and Opera carry "Chrome").
_BROWSER_FAMILY_SQL = """
    CASE
        WHEN user_agent LIKE '%Chrome%' AND user_agent NOT LIKE '%Edg%' THEN 'Chrome'
        WHEN user_agent LIKE '%Firefox%' THEN 'Firefox'
        WHEN user_agent LIKE '%Safari%' AND user_agent NOT LIKE '%Chrome%' THEN 'Safari'
        WHEN user_agent LIKE '%Edg%' THEN 'Edge'
        WHEN user_agent LIKE '%Opera%' THEN 'Opera'
        WHEN user_agent LIKE '%bot%' OR user_agent LIKE '%Bot%' THEN 'Bot'
        ELSE 'Other'
    END
"""


class QueryFault(Exception):
    """Raised for a malformed time bound, an unknown query, or a failed aggregation.

    ``client_error`` is True when the caller supplied bad input.
    """

    def __init__(self, message: str, client_error: bool = False):
        super().__init__(message)
        self.client_error = client_error


# ---------------------------------------------------------------------------
# Time bounds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeRange:
    """Half-open UTC interval; either side may be open."""

    start: datetime | None = None
    end: datetime | None = None

    def conditions(self) -> tuple[list[str], list[datetime]]:
        clauses: list[str] = []
        params: list[datetime] = []
        if self.start is not None:
            clauses.append("ts >= ?")
            params.append(_to_naive_utc(self.start))
        if self.end is not None:
            clauses.append("ts < ?")
            params.append(_to_naive_utc(self.end))
        return clauses, params


ALL_TIME = TimeRange()


def _to_naive_utc(value: datetime) -> datetime:
    # The ts column stores UTC wall-clock time without an offset.
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_time_bound(value: str | None) -> datetime | None:
    """Parse an ISO-8601 date or datetime into an aware UTC datetime.

    Naive values are taken as UTC. Empty or None means unbounded.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise QueryFault(f"malformed time bound {value!r}", client_error=True) from None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_time_range(start: str | None = None, end: str | None = None) -> TimeRange:
    start_dt = parse_time_bound(start)
    end_dt = parse_time_bound(end)
    if start_dt is not None and end_dt is not None and start_dt > end_dt:
        raise QueryFault(
            f"start {start!r} is after end {end!r}", client_error=True
        )
    return TimeRange(start=start_dt, end=end_dt)


def _where(time_range: TimeRange | None, *conditions: str) -> tuple[str, list]:
    clauses = list(conditions)
    range_clauses, params = (time_range or ALL_TIME).conditions()
    clauses.extend(range_clauses)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def _hour_label(bucket: datetime) -> str:
    return bucket.isoformat() + "Z"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class QueryEngine:
    """Read-only aggregations against a SchemaStore.

    Each call opens its own cursor, so the engine can be shared by many
    concurrent request handlers.
    """

    def __init__(self, store: SchemaStore):
        self._store = store
        self._catalog: dict[str, Callable[[TimeRange | None], list[dict[str, Any]]]] = {
            name: getattr(self, name) for name in QUERY_NAMES
        }

    @property
    def store(self) -> SchemaStore:
        return self._store

    def query(self, name: str, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        """Run the catalog query *name* over *time_range*."""
        handler = self._catalog.get(name)
        if handler is None:
            raise QueryFault(f"unknown query {name!r}", client_error=True)
        return handler(time_range)

    def run(self, name: str, start: str | None = None, end: str | None = None) -> list[dict[str, Any]]:
        """Like query(), with ISO-8601 string bounds."""
        return self.query(name, parse_time_range(start, end))

    def _fetch(self, sql: str, params: list) -> list[tuple]:
        try:
            with self._store.reader() as cur:
                return cur.execute(sql, params).fetchall()
        except duckdb.Error as exc:
            raise QueryFault(f"aggregation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Time series
    # ------------------------------------------------------------------

    def requests_over_time(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range)
        rows = self._fetch(
            f"""
            SELECT date_trunc('hour', ts) AS bucket, count(*) AS n
            FROM {TABLE_NAME} {where}
            GROUP BY bucket ORDER BY bucket
            """,
            params,
        )
        return [{"t": _hour_label(bucket), "n": n} for bucket, n in rows]

    def bandwidth_over_time(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range)
        rows = self._fetch(
            f"""
            SELECT date_trunc('hour', ts) AS bucket, sum(bytes) AS total
            FROM {TABLE_NAME} {where}
            GROUP BY bucket ORDER BY bucket
            """,
            params,
        )
        return [
            {"t": _hour_label(bucket), "bytes": int(total), "mb": int(total) / 1e6}
            for bucket, total in rows
        ]

    # ------------------------------------------------------------------
    # Rankings and distributions
    # ------------------------------------------------------------------

    def top_hosts(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range, "host <> ''")
        rows = self._fetch(
            f"""
            SELECT host, count(*) AS n
            FROM {TABLE_NAME} {where}
            GROUP BY host ORDER BY n DESC, host ASC
            LIMIT {TOP_HOSTS_LIMIT}
            """,
            params,
        )
        return [{"host": host, "n": n} for host, n in rows]

    def status_codes(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range)
        rows = self._fetch(
            f"""
            SELECT status, count(*) AS n
            FROM {TABLE_NAME} {where}
            GROUP BY status ORDER BY status
            """,
            params,
        )
        return [{"status": status, "n": n} for status, n in rows]

    def top_countries(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range, "country <> ''")
        rows = self._fetch(
            f"""
            SELECT country, count(*) AS n
            FROM {TABLE_NAME} {where}
            GROUP BY country ORDER BY n DESC, country ASC
            LIMIT {TOP_COUNTRIES_LIMIT}
            """,
            params,
        )
        return [{"country": country, "n": n} for country, n in rows]

    def hourly_heatmap(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        """Full 7x24 grid of counts; day 0 is Sunday. Empty cells are 0."""
        where, params = _where(time_range)
        rows = self._fetch(
            f"""
            SELECT CAST(dayofweek(ts) AS INTEGER) AS day,
                   CAST(hour(ts) AS INTEGER) AS hour,
                   count(*) AS n
            FROM {TABLE_NAME} {where}
            GROUP BY day, hour
            """,
            params,
        )
        counts = {(day, hour): n for day, hour, n in rows}
        return [
            {"day": day, "hour": hour, "n": counts.get((day, hour), 0)}
            for day in range(DAYS_PER_WEEK)
            for hour in range(HOURS_PER_DAY)
        ]

    def error_analysis(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range, "status >= 400", "host <> ''")
        rows = self._fetch(
            f"""
            SELECT host,
                   count(*) AS errors,
                   count(*) FILTER (WHERE status >= 500) AS server_errors,
                   count(*) FILTER (WHERE status < 500) AS client_errors
            FROM {TABLE_NAME} {where}
            GROUP BY host ORDER BY errors DESC, host ASC
            LIMIT {ERROR_HOSTS_LIMIT}
            """,
            params,
        )
        return [
            {
                "host": host,
                "errors": errors,
                "server_errors": server_errors,
                "client_errors": client_errors,
            }
            for host, errors, server_errors, client_errors in rows
        ]

    def user_agents(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range, "user_agent <> ''")
        rows = self._fetch(
            f"""
            SELECT {_BROWSER_FAMILY_SQL} AS browser, count(*) AS n
            FROM {TABLE_NAME} {where}
            GROUP BY browser ORDER BY n DESC, browser ASC
            """,
            params,
        )
        return [{"browser": browser, "n": n} for browser, n in rows]

    def top_paths(self, time_range: TimeRange | None = None) -> list[dict[str, Any]]:
        where, params = _where(time_range, "path <> ''", "path <> '/'")
        rows = self._fetch(
            f"""
            SELECT path, count(*) AS n, avg(bytes) AS avg_bytes
            FROM {TABLE_NAME} {where}
            GROUP BY path ORDER BY n DESC, path ASC
            LIMIT {TOP_PATHS_LIMIT}
            """,
            params,
        )
        return [
            {"path": path, "n": n, "avg_bytes": float(avg_bytes)}
            for path, n, avg_bytes in rows
        ]
