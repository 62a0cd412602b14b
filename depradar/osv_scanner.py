# depradar/osv_scanner.py
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import requests
from cvss import CVSS3, CVSS4

from .models import Package, Vulnerability, VULN_SEVERITIES

logger = logging.getLogger(__name__)

OSV_API_BATCH_URL = "https://api.osv.dev/v1/querybatch"
OSV_API_VULN_URL = "https://api.osv.dev/v1/vulns/"  # Note the trailing slash
OSV_VULN_PAGE_URL = "https://osv.dev/vulnerability/"
# querybatch accepts up to 1000 queries; smaller batches keep each request fast
BATCH_SIZE = 100
OSV_TIMEOUT = 15
MAX_WORKERS = 4

SEVERITY_LABELS = {
    "CRITICAL": "critical",
    "HIGH": "high",
    "MODERATE": "moderate",
    "MEDIUM": "moderate",
    "LOW": "low",
}


class VulnerabilityIndex(Protocol):
    def query(self, packages: list[Package], ecosystem: str) -> list[Vulnerability]:
        ...


def partition(items: list, size: int) -> list[list]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


def parse_severity_score(advisory: dict) -> float | None:
    """First usable score from an advisory's 'severity' list (plain number or CVSS v3/v4 vector)."""
    severity_list = advisory.get('severity')
    if not isinstance(severity_list, list):
        return None
    for severity_entry in severity_list:
        if not isinstance(severity_entry, dict):
            continue
        score = severity_entry.get('score')
        if isinstance(score, (int, float)):
            return float(score)
        if not isinstance(score, str):
            continue
        try:
            return float(score)
        except ValueError:
            pass
        try:
            if score.startswith('CVSS:3'):
                return float(CVSS3(score).base_score)
            if score.startswith('CVSS:4'):
                return float(CVSS4(score).base_score)
        except Exception as e_cvss:
            logger.warning(f"Failed CVSS parse for {advisory.get('id')}: {e_cvss}")
    return None


def severity_label(advisory: dict) -> str | None:
    database_specific = advisory.get('database_specific')
    if not isinstance(database_specific, dict):
        return None
    label = SEVERITY_LABELS.get(str(database_specific.get('severity', '')).upper())
    return label if label in VULN_SEVERITIES else None


def _dicts(items) -> list[dict]:
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _package_name(affected: dict) -> str | None:
    package = affected.get('package')
    return package.get('name') if isinstance(package, dict) else None


def fixed_version(advisory: dict, package_name: str) -> str | None:
    """First range event marked 'fixed', preferring the entry for this package."""
    affected = _dicts(advisory.get('affected'))
    affected.sort(key=lambda a: _package_name(a) != package_name)
    for entry in affected:
        for version_range in _dicts(entry.get('ranges')):
            for event in _dicts(version_range.get('events')):
                if event.get('fixed'):
                    return str(event['fixed'])
    return None


def advisory_url(advisory: dict) -> str:
    for reference in _dicts(advisory.get('references')):
        if reference.get('url'):
            return str(reference['url'])
    return f"{OSV_VULN_PAGE_URL}{advisory['id']}"


def map_advisory(advisory: dict, pkg: Package, ecosystem: str) -> Vulnerability:
    summary = str(advisory.get('summary') or str(advisory.get('details') or '')[:200] or "No description")
    return Vulnerability(
        id=advisory['id'],
        summary=summary,
        package=pkg.name,
        ecosystem=ecosystem,
        affected_range=f"{pkg.version} (installed)",
        fixed_version=fixed_version(advisory, pkg.name),
        url=advisory_url(advisory),
        published=advisory.get('published') or "",
        score=parse_severity_score(advisory),
        severity_label=severity_label(advisory),
    )


def _is_stub(advisory: dict) -> bool:
    # querybatch only returns {id, modified}
    return not any(advisory.get(key) for key in ('summary', 'details', 'severity', 'affected'))


class OsvClient:
    """
    Batch client for the osv.dev API.
    A failed or timed-out batch contributes empty results; it never aborts the query.
    """

    def __init__(self, session=None, batch_size: int = BATCH_SIZE, timeout: float = OSV_TIMEOUT,
                 hydrate: bool = True, max_workers: int = MAX_WORKERS):
        self.http = session or requests
        self.batch_size = batch_size
        self.timeout = timeout
        self.hydrate = hydrate
        self.max_workers = max_workers

    def query_batch(self, batch: list[Package], ecosystem: str) -> list[list[dict]]:
        """Advisory lists aligned with `batch`."""
        empty = [[] for _ in batch]
        queries = [
            {"package": {"name": pkg.name, "ecosystem": ecosystem}, "version": str(pkg.version)}
            for pkg in batch
        ]
        try:
            response = self.http.post(OSV_API_BATCH_URL, json={"queries": queries}, timeout=self.timeout)
            response.raise_for_status()
            results = response.json().get('results', [])
        except requests.exceptions.RequestException as e:
            logger.warning(f"OSV batch of {len(batch)} packages failed, skipping: {e}")
            return empty
        except (ValueError, AttributeError) as e:
            logger.warning(f"Malformed OSV batch response, skipping: {e}")
            return empty
        if not isinstance(results, list):
            logger.warning(f"Malformed OSV batch response, 'results' is {type(results).__name__}; skipping")
            return empty

        aligned = empty
        for j, result in enumerate(results[:len(batch)]):
            vulns = result.get('vulns') if isinstance(result, dict) else None
            aligned[j] = [v for v in _dicts(vulns) if isinstance(v.get('id'), str) and v['id']]
        return aligned

    def get_vuln_details(self, vuln_id: str) -> dict | None:
        try:
            response = self.http.get(OSV_API_VULN_URL + vuln_id, timeout=self.timeout)
            response.raise_for_status()
            details = response.json()
        except requests.exceptions.RequestException as e:
            logger.debug(f"Error fetching OSV details for {vuln_id}: {e}")
            return None
        except ValueError as e:
            logger.debug(f"Error decoding OSV details JSON for {vuln_id}: {e}")
            return None
        return details if isinstance(details, dict) and details.get('id') else None

    def query_packages(self, packages: list[Package], ecosystem: str) -> list[list[dict]]:
        """
        Advisory lists for every package; result[i] belongs to packages[i].
        Batches run concurrently and are re-joined in submission order.
        """
        if not packages:
            return []
        batches = partition(list(packages), self.batch_size)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as executor:
            batch_results = list(executor.map(lambda b: self.query_batch(b, ecosystem), batches))
        aligned = [advisories for batch in batch_results for advisories in batch]
        if self.hydrate:
            aligned = self._hydrate(aligned)
        return aligned

    def _hydrate(self, aligned: list[list[dict]]) -> list[list[dict]]:
        stub_ids = sorted({a['id'] for advisories in aligned for a in advisories if _is_stub(a)})
        if not stub_ids:
            return aligned
        logger.debug(f"Fetching details for {len(stub_ids)} OSV advisories")
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            details = dict(zip(stub_ids, executor.map(self.get_vuln_details, stub_ids)))
        return [[details.get(a['id']) or a for a in advisories] for advisories in aligned]

    def query(self, packages: list[Package], ecosystem: str) -> list[Vulnerability]:
        vulns = []
        for pkg, advisories in zip(packages, self.query_packages(packages, ecosystem)):
            for advisory in advisories:
                vulns.append(map_advisory(advisory, pkg, ecosystem))
        logger.info(f"OSV query for {len(packages)} {ecosystem} packages found {len(vulns)} advisories.")
        return vulns
