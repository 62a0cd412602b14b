# depradar/docs.py
"""
Library documentation aggregator: npm registry -> GitHub repo -> README/CHANGELOG/migration guide.
"""
import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol
from urllib.parse import quote

import requests

from .models import DocResult

logger = logging.getLogger(__name__)

NPM_REGISTRY_URL = "https://registry.npmjs.org/"
NPM_SEARCH_URL = "https://registry.npmjs.org/-/v1/search"
RAW_GITHUB_URL = "https://raw.githubusercontent.com/{owner}/{repo}/HEAD/{path}"
USER_AGENT = "depradar/0.1"
FETCH_TIMEOUT = 10
MAX_WORKERS = 8

README_MIN_REGISTRY_LENGTH = 100
MIN_DOC_LENGTH = 50
README_MAX_LINES = 300
CHANGELOG_MAX_LINES = 200
MIGRATION_MAX_LINES = 300
QUERY_CONTEXT_LINES = 5

SECTIONS = ("all", "readme", "changelog", "migration")
README_FILES = ["README.md", "readme.md", "Readme.md"]
CHANGELOG_FILES = ["CHANGELOG.md", "changelog.md", "CHANGES.md", "HISTORY.md", "History.md"]
GENERIC_MIGRATION_FILES = [
    "MIGRATION.md", "UPGRADING.md", "UPGRADE.md", "migration.md", "upgrading.md",
    "docs/migration.md", "docs/upgrading.md", "docs/MIGRATION.md",
]
# Known migration/upgrade guide paths per library
MIGRATION_PATHS = {
    "svelte": [
        "documentation/docs/07-misc/07-v5-migration-guide.md",
        "packages/svelte/CHANGELOG.md",
    ],
    "@sveltejs/kit": [
        "documentation/docs/25-build-and-deploy/99-migration-guide.md",
        "packages/kit/CHANGELOG.md",
    ],
    "next": [
        "docs/01-app/02-building-your-application/10-upgrading/01-version-15.mdx",
        "docs/01-app/02-building-your-application/10-upgrading/02-version-14.mdx",
    ],
    "tailwindcss": ["packages/tailwindcss/CHANGELOG.md", "CHANGELOG.md"],
    "vite": ["packages/vite/CHANGELOG.md", "CHANGELOG.md"],
    "better-auth": ["CHANGELOG.md"],
    "@supabase/supabase-js": ["CHANGELOG.md"],
    "stripe": ["CHANGELOG.md", "UPGRADING.md"],
    "react": ["CHANGELOG.md"],
    "vue": ["CHANGELOG.md"],
    "express": ["History.md"],
}

GITHUB_REPO_PATTERN = re.compile(r'github\.com[/:]([\w.-]+)/([\w.-]+)')
SHORTHAND_REPO_PATTERN = re.compile(r'^(?:github:)?([\w.-]+)/([\w.-]+)$')


class PackageNotFoundError(Exception):
    """Raised when the registry has no (usable) metadata for a package."""

    def __init__(self, package: str, reason: str = "not found on npm"):
        super().__init__(f'Package "{package}" {reason}.')
        self.package = package


def fetch_url(http, url: str, timeout: float = FETCH_TIMEOUT, params: dict | None = None) -> str | None:
    """GET a URL as text. Any failure (timeout, non-2xx, connection) is 'no data'."""
    try:
        response = http.get(
            url,
            params=params,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "text/plain, application/json"},
        )
        response.raise_for_status()
        return response.text
    except requests.exceptions.RequestException as e:
        logger.debug(f"Fetch failed for {url}: {e}")
        return None


class RegistryClient:
    def __init__(self, session=None, timeout: float = FETCH_TIMEOUT):
        self.http = session or requests
        self.timeout = timeout

    def get_metadata(self, package: str) -> dict | None:
        body = fetch_url(self.http, NPM_REGISTRY_URL + quote(package, safe="@"), self.timeout)
        if body is None:
            return None
        try:
            data = json.loads(body)
        except ValueError:
            logger.warning(f"Invalid npm registry data for {package}")
            return None
        return data if isinstance(data, dict) else None

    def search(self, query: str, size: int = 10) -> list[dict]:
        body = fetch_url(self.http, NPM_SEARCH_URL, self.timeout, params={"text": query, "size": size})
        if body is None:
            return []
        try:
            objects = json.loads(body).get("objects") or []
        except (ValueError, AttributeError):
            return []
        if not isinstance(objects, list):
            return []
        results = []
        for obj in objects:
            pkg = obj.get("package") if isinstance(obj, dict) else None
            if isinstance(pkg, dict) and pkg.get("name"):
                results.append({
                    "name": pkg["name"],
                    "version": pkg.get("version", ""),
                    "description": pkg.get("description") or "",
                })
        return results


class DocRepository(Protocol):
    def fetch(self, owner: str, repo: str, path: str) -> str | None:
        ...


class RawFileRepository:
    """Raw file contents from GitHub at the default branch."""

    def __init__(self, session=None, timeout: float = FETCH_TIMEOUT):
        self.http = session or requests
        self.timeout = timeout

    def fetch(self, owner: str, repo: str, path: str) -> str | None:
        return fetch_url(self.http, RAW_GITHUB_URL.format(owner=owner, repo=repo, path=path), self.timeout)


def extract_github_repo(repo_url) -> tuple[str, str] | None:
    if isinstance(repo_url, dict):
        repo_url = repo_url.get("url", "")
    if not isinstance(repo_url, str) or not repo_url:
        return None
    cleaned = re.sub(r'^git\+', '', repo_url.strip())
    cleaned = re.sub(r'\.git$', '', cleaned)
    cleaned = re.sub(r'^ssh://git@github\.com/', 'https://github.com/', cleaned)
    cleaned = re.sub(r'^git://github\.com/', 'https://github.com/', cleaned)
    match = GITHUB_REPO_PATTERN.search(cleaned) or SHORTHAND_REPO_PATTERN.match(cleaned)
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-len(".git")]
    return owner, repo


def package_base_name(package: str) -> str:
    return package.split("/", 1)[1] if package.startswith("@") and "/" in package else package


def monorepo_paths(base_name: str, files: list[str]) -> list[str]:
    """Root files first, then packages/<name>/<file> for monorepos."""
    return list(files) + [f"packages/{base_name}/{f}" for f in files]


def fetch_first_found(repository: DocRepository, owner: str, repo: str, paths: list[str],
                      min_length: int = MIN_DOC_LENGTH) -> str:
    """
    Fetches every candidate concurrently, waits for all of them, then returns the
    first result in `paths` order that is longer than `min_length`.
    """
    if not paths:
        return ""
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(paths))) as executor:
        results = list(executor.map(lambda p: repository.fetch(owner, repo, p), paths))
    for text in results:
        if text and len(text) > min_length:
            return text
    return ""


def truncate_doc(text: str, max_lines: int = 200) -> str:
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[:max_lines]) + f"\n\n... (truncated, {len(lines) - max_lines} more lines)"


def filter_by_query(text: str, query: str | None, context_lines: int = QUERY_CONTEXT_LINES) -> str:
    """
    Keeps lines within `context_lines` of a keyword hit. With no hits at all the
    full text comes back unchanged.
    """
    if not query or not text:
        return text
    lines = text.split("\n")
    keywords = [kw for kw in query.lower().split() if kw]
    matched = set()
    for i, line in enumerate(lines):
        lower = line.lower()
        if any(kw in lower for kw in keywords):
            matched.update(range(max(0, i - context_lines), min(len(lines) - 1, i + context_lines) + 1))
    if not matched:
        return text
    result = []
    last_line = None
    for n in sorted(matched):
        if (last_line is None and n > 0) or (last_line is not None and n > last_line + 1):
            result.append("...")
        result.append(lines[n])
        last_line = n
    return "\n".join(result)


def _shape(text: str, query: str | None, max_lines: int) -> str:
    return truncate_doc(filter_by_query(text, query), max_lines)


def fetch_library_docs(package: str, query: str | None = None, sections: str = "all",
                       registry: RegistryClient | None = None,
                       repository: DocRepository | None = None) -> DocResult:
    """
    Only the registry lookup is fatal (PackageNotFoundError); every other fetch
    degrades to an empty section.
    """
    sections = (sections or "all").lower()
    if sections not in SECTIONS:
        raise ValueError(f"Unknown docs section '{sections}', expected one of {', '.join(SECTIONS)}")
    want = {name: sections in ("all", name) for name in SECTIONS[1:]}
    registry = registry or RegistryClient()
    repository = repository or RawFileRepository()

    result = DocResult(package=package)
    metadata = registry.get_metadata(package)
    if metadata is None:
        raise PackageNotFoundError(package)

    result.version = (metadata.get("dist-tags") or {}).get("latest", "")
    result.description = metadata.get("description") or ""
    result.homepage = metadata.get("homepage") or ""

    gh = extract_github_repo(metadata.get("repository"))
    if gh:
        result.repository = f"https://github.com/{gh[0]}/{gh[1]}"
    else:
        logger.info(f"No GitHub repository for {package}; changelog and migration guide skipped.")
    base_name = package_base_name(package)

    if want["readme"]:
        readme = metadata.get("readme") or ""
        if len(readme) <= README_MIN_REGISTRY_LENGTH and gh:
            readme = fetch_first_found(repository, gh[0], gh[1], README_FILES) or readme
        if readme:
            result.readme = _shape(readme, query, README_MAX_LINES)

    if want["changelog"] and gh:
        changelog = fetch_first_found(repository, gh[0], gh[1], monorepo_paths(base_name, CHANGELOG_FILES))
        if changelog:
            result.changelog = _shape(changelog, query, CHANGELOG_MAX_LINES)

    if want["migration"] and gh:
        guide = ""
        known_paths = MIGRATION_PATHS.get(package) or MIGRATION_PATHS.get(base_name)
        if known_paths:
            guide = fetch_first_found(repository, gh[0], gh[1], known_paths)
        if not guide:
            guide = fetch_first_found(repository, gh[0], gh[1], monorepo_paths(base_name, GENERIC_MIGRATION_FILES))
        if guide:
            result.migration_guide = _shape(guide, query, MIGRATION_MAX_LINES)

    return result


def search_package(query: str, registry: RegistryClient | None = None) -> list[dict]:
    return (registry or RegistryClient()).search(query)
