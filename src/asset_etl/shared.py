"""asset_etl.shared

Run bookkeeping shared by every import type: error records and the
error sink, run counters, the final summary, and report writing.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# ErrorRecord / ErrorSink
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorRecord:
    """One failed row (row number) or failed batch (descriptive label)."""

    row: int | str
    error: str
    data: dict[str, Any] | list[dict[str, Any]]


def batch_label(offset: int) -> str:
    return f"Batch starting at {offset}"


class ErrorSink:
    """In-memory error accumulator, written as one JSON array at the end of a run."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._records: list[ErrorRecord] = []

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def add_row_failure(self, row_number: int, reason: str, raw_row: dict[str, Any]) -> None:
        self._records.append(ErrorRecord(row=row_number, error=reason, data=dict(raw_row)))

    def add_batch_failure(
        self,
        offset: int,
        reason: str,
        batch: list[dict[str, Any]],
    ) -> None:
        self._records.append(
            ErrorRecord(row=batch_label(offset), error=reason, data=list(batch))
        )

    def write(self) -> Path | None:
        """Write the error artifact if any errors were recorded; overwrite prior runs."""
        if not self._records:
            return None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [asdict(r) for r in self._records]
        self._path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        return self._path


# ---------------------------------------------------------------------------
# Counters / summary
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    rows_read: int = 0
    rows_valid: int = 0
    rows_rejected: int = 0
    records_committed: int = 0
    batches_committed: int = 0
    batches_failed: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImportSummary:
    total_processed: int
    total_succeeded: int
    total_failed: int

    @classmethod
    def from_run(cls, counters: ImportCounters, sink: ErrorSink) -> "ImportSummary":
        return cls(
            total_processed=counters.rows_read,
            total_succeeded=counters.records_committed,
            total_failed=len(sink),
        )


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    import_type: str,
    dry_run: bool,
    source_path: str,
    counters: ImportCounters,
    summary: ImportSummary,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "import_type": import_type,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        "source_path": source_path,
        "summary": asdict(summary),
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
