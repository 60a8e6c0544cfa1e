"""Sequential batch importer: lines -> parse -> bounded batches -> store."""

import logging
from typing import Callable, Generator, Iterable

from ezlens.config import ImportSettings
from ezlens.models import ImportSummary, ParseFailure, Record
from ezlens.parser import parse_line
from ezlens.store import SchemaStore, StorageFault

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_RAW_PREVIEW = 200


class SourceIOError(Exception):
    """Raised when a log source cannot be opened or read.

    Carries the path and the partial ImportSummary of the batches that were
    flushed before the error.
    """

    def __init__(self, path: str, message: str, summary: ImportSummary | None = None):
        super().__init__(message)
        self.path = path
        self.summary = summary


def read_lines(filepath: str) -> Generator[str, None, None]:
    """Yield each line of *filepath* with its line terminator removed."""
    with open(filepath, "r", encoding="utf-8", errors="replace", newline="\n") as f:
        for line in f:
            yield line.rstrip("\r\n")


class BatchImporter:
    """Drives the parser over a line stream and bulk-appends valid records.

    Lines are processed strictly in order. A malformed line is counted and
    skipped; it never aborts the run. Records are flushed to the store every
    ``batch_size`` records and once more at end of stream.
    """

    def __init__(
        self,
        store: SchemaStore,
        batch_size: int = ImportSettings.batch_size,
        progress_every: int = ImportSettings.progress_every,
        on_progress: ProgressCallback | None = None,
        max_failure_samples: int = ImportSettings.max_failure_samples,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if progress_every < 1:
            raise ValueError(f"progress_every must be >= 1, got {progress_every}")
        self._store = store
        self._batch_size = batch_size
        self._progress_every = progress_every
        self._on_progress = on_progress
        self._max_failure_samples = max_failure_samples

    @classmethod
    def from_settings(
        cls,
        store: SchemaStore,
        settings: ImportSettings,
        on_progress: ProgressCallback | None = None,
    ) -> "BatchImporter":
        return cls(
            store,
            batch_size=settings.batch_size,
            progress_every=settings.progress_every,
            on_progress=on_progress,
            max_failure_samples=settings.max_failure_samples,
        )

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def import_lines(self, lines: Iterable[str]) -> ImportSummary:
        """Import an in-memory or streamed sequence of lines.

        Raises StorageFault (with ``.summary`` set) if a batch cannot be
        persisted; earlier batches stay in the store.
        """
        summary = self._new_summary()
        self._run(lines, summary)
        return summary

    def import_file(self, path: str) -> ImportSummary:
        """Import one log file. Raises SourceIOError if it cannot be read."""
        logger.info("Importing %s", path)
        summary = self._new_summary()
        try:
            self._run(read_lines(path), summary)
        except OSError as exc:
            raise SourceIOError(path, f"cannot read {path}: {exc}", summary) from exc

        logger.info(
            "Finished %s: %d imported, %d failed, %d batch(es)",
            path, summary.imported, summary.failed, summary.batches,
        )
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_summary(self) -> ImportSummary:
        return ImportSummary(max_failure_samples=self._max_failure_samples)

    def _run(self, lines: Iterable[str], summary: ImportSummary) -> None:
        batch: list[Record] = []
        processed = 0
        try:
            for line in lines:
                # DuckDB rejects lone surrogates; replace them like read_lines does
                line = line.encode("utf-8", "replace").decode("utf-8")
                result = parse_line(line)
                if isinstance(result, ParseFailure):
                    summary.record_failure(result)
                    logger.debug(
                        "Skipping line (%s): %s", result, result.line[:_RAW_PREVIEW]
                    )
                else:
                    batch.append(result)
                    if len(batch) >= self._batch_size:
                        self._flush(batch, summary)
                        batch = []

                processed += 1
                if processed % self._progress_every == 0:
                    self._report_progress(processed, len(batch), summary)

            if batch:
                self._flush(batch, summary)
        except StorageFault as fault:
            fault.summary = summary
            raise

    def _flush(self, batch: list[Record], summary: ImportSummary) -> None:
        written = self._store.append_batch(batch)
        summary.imported += written
        summary.batches += 1

    def _report_progress(self, processed: int, pending: int, summary: ImportSummary) -> None:
        logger.info(
            "Processed %d lines (%d imported, %d failed, %d pending)",
            processed, summary.imported, summary.failed, pending,
        )
        if self._on_progress is not None:
            self._on_progress(summary.imported, summary.failed)


def import_file(
    path: str,
    store: SchemaStore,
    batch_size: int = ImportSettings.batch_size,
    progress_every: int = ImportSettings.progress_every,
    on_progress: ProgressCallback | None = None,
) -> ImportSummary:
    """Import *path* into *store*; the store's schema must already exist."""
    importer = BatchImporter(
        store,
        batch_size=batch_size,
        progress_every=progress_every,
        on_progress=on_progress,
    )
    return importer.import_file(path)
