# depradar/report.py
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from .changelog import sort_entries
from .models import CacheEntry, ChangelogEntry, MigrationResult, Package, ProjectInfo, ScanResult, Vulnerability

logger = logging.getLogger(__name__)

OUTDATED_PENALTY = 3
OUTDATED_PENALTY_CAP = 40
MAJOR_PENALTY = 10


class ScanInProgressError(RuntimeError):
    """A full scan was triggered while another one is still running."""


def compute_health_score(outdated_count: int, major_count: int) -> int:
    """100, minus 3 per outdated package (at most 40), minus 10 per major-behind package, clamped to [0, 100]."""
    score = 100
    score -= min(outdated_count * OUTDATED_PENALTY, OUTDATED_PENALTY_CAP)
    score -= major_count * MAJOR_PENALTY
    return max(0, min(100, score))


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def merge_report(project: ProjectInfo,
                 packages: list[Package] | None = None,
                 vulnerabilities: list[Vulnerability] | None = None,
                 migration: MigrationResult | None = None,
                 outdated: list[ChangelogEntry] | None = None,
                 errors: list[str] | None = None) -> ScanResult:
    result = ScanResult(
        project=project,
        packages=list(packages or []),
        vulnerabilities=list(vulnerabilities or []),
        outdated=sort_entries(outdated or []),
        errors=list(errors or []),
    )
    if migration is not None:
        result.current_version = migration.current_version
        result.latest_major = migration.latest_major
        result.migration_guide_url = migration.migration_guide_url
        result.issues = list(migration.issues)
    result.score = compute_health_score(len(result.outdated), result.major_count)
    return result


def build_cache_entry(project: ProjectInfo, outdated: list[ChangelogEntry], security_issues: int = 0,
                      checked_at: str | None = None) -> CacheEntry:
    outdated_count = len(outdated)
    major_count = sum(1 for e in outdated if e.update_type == "major")
    return CacheEntry(
        project=project.name,
        path=project.path,
        language=project.language,
        framework=project.framework,
        outdated_count=outdated_count,
        major_count=major_count,
        security_issues=security_issues,
        score=compute_health_score(outdated_count, major_count),
        checked_at=checked_at or utc_now(),
    )


class CacheStore:
    """
    Single JSON file shared with the status endpoint. Every write replaces the
    whole document.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, entries: list[CacheEntry], updated_at: str | None = None) -> None:
        document = {
            "projects": [entry.to_dict() for entry in entries],
            "updatedAt": updated_at or utc_now(),
        }
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".cache-", suffix=".json", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.info(f"Cache written to {self.path} ({len(entries)} projects)")

    def read(self) -> dict | None:
        if not self.path.is_file():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read cache {self.path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def entries(self) -> list[CacheEntry]:
        data = self.read() or {}
        return [CacheEntry.from_dict(item) for item in data.get("projects") or [] if isinstance(item, dict)]


class ScanState:
    """In-progress flag for full scans. A second trigger is rejected, not queued."""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def scanning(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def guard(self):
        if not self._lock.acquire(blocking=False):
            raise ScanInProgressError("Scan already in progress")
        try:
            yield self
        finally:
            self._lock.release()
