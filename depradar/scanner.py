# depradar/scanner.py
"""
Per-project enrichment pipeline.

Inventory feeds three independent stages (OSV advisories, migration patterns,
outdated packages) which run concurrently; a failing stage is recorded in the
report's errors and never affects the other two.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .changelog import PackageLister, get_project_changelog
from .docs import RegistryClient
from .migrate import detect_migration
from .models import CacheEntry, LiveCveResult, ProjectInfo, ScanResult
from .osv_scanner import OsvClient, VulnerabilityIndex
from .parser import ECOSYSTEM_MAP, get_installed_packages
from .report import CacheStore, ScanState, build_cache_entry, merge_report, utc_now

logger = logging.getLogger(__name__)


def live_audit_project(project: ProjectInfo, index: VulnerabilityIndex | None = None) -> LiveCveResult:
    ecosystem = ECOSYSTEM_MAP.get(project.language)
    if not ecosystem:
        return LiveCveResult(project=project.name, queried_at=utc_now())
    packages = get_installed_packages(project.path, project.language)
    vulns = (index or OsvClient()).query(packages, ecosystem) if packages else []
    return LiveCveResult(
        project=project.name,
        vulnerabilities=vulns,
        packages_queried=len(packages),
        queried_at=utc_now(),
    )


def live_audit_all_projects(projects: list[ProjectInfo], index: VulnerabilityIndex | None = None) -> list[LiveCveResult]:
    index = index or OsvClient()
    results = []
    for project in projects:
        try:
            result = live_audit_project(project, index)
        except Exception as e:
            logger.error(f"{project.name}: error during advisory audit: {e}")
            continue
        if result.vulnerabilities:
            results.append(result)
    return results


def scan_project(project: ProjectInfo, index: VulnerabilityIndex, lister: PackageLister,
                 registry: RegistryClient | None = None) -> ScanResult:
    packages = get_installed_packages(project.path, project.language)
    ecosystem = ECOSYSTEM_MAP.get(project.language)
    errors = []

    with ThreadPoolExecutor(max_workers=3) as executor:
        futures = {
            "vulnerabilities": executor.submit(index.query, packages, ecosystem) if ecosystem and packages else None,
            "migration": executor.submit(detect_migration, project.path, project.name, project.framework)
            if project.framework else None,
            "outdated": executor.submit(get_project_changelog, project.path, project.language, lister, registry),
        }
        outcomes = {}
        for stage, future in futures.items():
            if future is None:
                outcomes[stage] = None
                continue
            try:
                outcomes[stage] = future.result()
            except Exception as e:
                error_msg = f"Error in {stage} check: {e}"
                logger.error(f"{project.name}: {error_msg}")
                errors.append(error_msg)
                outcomes[stage] = None

    result = merge_report(
        project,
        packages=packages,
        vulnerabilities=outcomes["vulnerabilities"],
        migration=outcomes["migration"],
        outdated=outcomes["outdated"],
        errors=errors,
    )
    logger.info(f"{project.name}: {len(result.vulnerabilities)} advisories, {len(result.issues)} migration issues, "
                f"{len(result.outdated)} outdated, score {result.score}")
    return result


def scan_projects(projects: list[ProjectInfo], index: VulnerabilityIndex, lister: PackageLister,
                  registry: RegistryClient | None = None) -> list[ScanResult]:
    """Projects one at a time; only those with issues or advisories are returned."""
    results = []
    for project in projects:
        try:
            result = scan_project(project, index, lister, registry)
        except Exception as e:
            logger.error(f"{project.name}: error during scan: {e}")
            continue
        if result.has_findings:
            results.append(result)
    return results


@dataclass
class CheckSummary:
    entries: list[CacheEntry] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def alerts(self) -> list[CacheEntry]:
        return [e for e in self.entries if e.outdated_count > 0]


def run_check(projects: list[ProjectInfo], lister: PackageLister, store: CacheStore,
              state: ScanState | None = None) -> CheckSummary:
    """
    Background pass: outdated counts and scores for every project, written to the
    cache in one full replace. Skips the vulnerability audit to stay fast.
    """
    state = state or ScanState()
    start = time.monotonic()
    with state.guard():
        logger.info(f"Scanning {len(projects)} projects...")
        entries = []
        for project in projects:
            try:
                outdated = get_project_changelog(project.path, project.language, lister)
            except Exception as e:
                logger.error(f"{project.name}: error during check: {e}")
                continue
            entry = build_cache_entry(project, outdated)
            entries.append(entry)
            logger.info(f"  {project.name}: {entry.outdated_count} outdated, score {entry.score}")
        store.write(entries)
    summary = CheckSummary(entries=entries, elapsed=time.monotonic() - start)
    logger.info(f"Done in {summary.elapsed:.1f}s. {len(entries)} projects, {len(summary.alerts)} need attention.")
    return summary
