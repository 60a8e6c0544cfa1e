"""Record schema, parse-failure values, and the import summary."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Record:
    """One successfully parsed proxy access-log line.

    ``ts`` is timezone-aware and always UTC. The derived URL fields
    (scheme/host/port/path/query) are either a consistent decomposition of
    ``url`` or all left at their empty/zero defaults.
    """

    ts: datetime
    remote_addr: str
    identd: str
    user_or_session: str
    method: str
    url: str
    scheme: str
    host: str
    port: int
    path: str
    query: str
    http_version: str
    status: int
    bytes: int
    country: str
    user_agent: str
    raw: str


# Column order of the ``requests`` table; matches the Record field order.
RECORD_COLUMNS = (
    "ts",
    "remote_addr",
    "identd",
    "user_or_session",
    "method",
    "url",
    "scheme",
    "host",
    "port",
    "path",
    "query",
    "http_version",
    "status",
    "bytes",
    "country",
    "user_agent",
    "raw",
)


class FailureReason(Enum):
    BAD_TIMESTAMP = "bad-timestamp"
    BAD_REQUEST_FIELD = "bad-request-field"
    BAD_STATUS = "bad-status"
    BAD_BYTES = "bad-bytes"
    TRUNCATED_LINE = "truncated-line"


@dataclass(frozen=True)
class ParseFailure:
    """A line that could not be decoded into a Record."""

    line: str
    reason: FailureReason
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.reason.value}: {self.detail}"
        return self.reason.value


@dataclass
class ImportSummary:
    imported: int = 0
    failed: int = 0
    batches: int = 0
    failure_reasons: dict[str, int] = field(default_factory=dict)
    failure_samples: list[ParseFailure] = field(default_factory=list)
    max_failure_samples: int = 100

    def record_failure(self, failure: ParseFailure) -> None:
        self.failed += 1
        key = failure.reason.value
        self.failure_reasons[key] = self.failure_reasons.get(key, 0) + 1
        if len(self.failure_samples) < self.max_failure_samples:
            self.failure_samples.append(failure)

    @property
    def processed(self) -> int:
        return self.imported + self.failed

    def merge(self, other: "ImportSummary") -> "ImportSummary":
        """Return a new summary combining the counts of *self* and *other*."""
        reasons = Counter(self.failure_reasons)
        reasons.update(other.failure_reasons)
        samples = (self.failure_samples + other.failure_samples)[: self.max_failure_samples]
        return ImportSummary(
            imported=self.imported + other.imported,
            failed=self.failed + other.failed,
            batches=self.batches + other.batches,
            failure_reasons=dict(reasons),
            failure_samples=samples,
            max_failure_samples=self.max_failure_samples,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "failed": self.failed,
            "batches": self.batches,
            "failure_reasons": dict(self.failure_reasons),
        }
