# depradar/changelog.py
"""Outdated dependencies via native package managers, classified by update type."""
import json
import logging
import re
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

from packaging.version import Version, InvalidVersion

from .docs import RegistryClient, extract_github_repo
from .models import ChangelogEntry, OutdatedPackage, UPDATE_ORDER

logger = logging.getLogger(__name__)

OUTDATED_TIMEOUT = 30
MAX_WORKERS = 4
NPM_VERSIONS_URL = "https://www.npmjs.com/package/{name}?activeTab=versions"


class PackageLister(Protocol):
    def list_outdated(self, project_path: str, language: str) -> list[OutdatedPackage]:
        ...


def run_command(args: list[str], cwd: str, timeout: float) -> str | None:
    """
    Stdout of a package-manager command. Non-zero exits still return stdout
    (`npm outdated` exits 1 whenever something is outdated).
    """
    if not shutil.which(args[0]) and not Path(args[0]).is_file():
        logger.debug(f"{args[0]} not found on PATH")
        return None
    try:
        result = subprocess.run(args, cwd=cwd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        logger.warning(f"'{' '.join(args)}' timed out after {timeout}s in {cwd}")
        partial = e.stdout.decode("utf-8", "ignore") if isinstance(e.stdout, bytes) else e.stdout
        return partial.strip() if partial else None
    except OSError as e:
        logger.warning(f"Could not run '{' '.join(args)}' in {cwd}: {e}")
        return None
    if result.returncode != 0:
        logger.debug(f"'{' '.join(args)}' exited {result.returncode} in {cwd}")
    return result.stdout.strip() or None


def _python_interpreter(project_path: Path) -> str | None:
    """The project's own virtualenv interpreter, or None when it has none."""
    for venv in (".venv", "venv", "env"):
        for candidate in (project_path / venv / "bin" / "python", project_path / venv / "Scripts" / "python.exe"):
            if candidate.is_file():
                return str(candidate)
    return None


def parse_npm_outdated(stdout: str) -> list[OutdatedPackage]:
    data = json.loads(stdout)
    packages = []
    for name, info in data.items():
        if isinstance(info, list):  # workspaces report one entry per dependent
            info = info[0] if info else {}
        if not isinstance(info, dict):
            continue
        current, latest = info.get("current"), info.get("latest")
        if not current or not latest or current == latest:
            continue
        packages.append(OutdatedPackage(name=name, current=current, wanted=info.get("wanted") or current, latest=latest))
    return packages


def parse_pip_outdated(stdout: str) -> list[OutdatedPackage]:
    packages = []
    for entry in json.loads(stdout):
        current, latest = entry.get("version"), entry.get("latest_version")
        if entry.get("name") and current and latest and current != latest:
            packages.append(OutdatedPackage(name=entry["name"], current=current, wanted=latest, latest=latest))
    return packages


def parse_composer_outdated(stdout: str) -> list[OutdatedPackage]:
    packages = []
    for entry in json.loads(stdout).get("installed") or []:
        current = str(entry.get("version", "")).lstrip("v")
        latest = str(entry.get("latest", "")).lstrip("v")
        if entry.get("name") and current and latest and current != latest:
            packages.append(OutdatedPackage(name=entry["name"], current=current, wanted=latest, latest=latest))
    return packages


class SubprocessPackageLister:
    """Lists outdated packages by shelling out to npm, pip or composer."""

    def __init__(self, timeout: float = OUTDATED_TIMEOUT):
        self.timeout = timeout

    def _command(self, project_path: Path, language: str):
        if language == "node" and (project_path / "package.json").is_file():
            return ["npm", "outdated", "--json"], parse_npm_outdated
        if language == "python":
            interpreter = _python_interpreter(project_path)
            if interpreter is None:
                logger.debug(f"No virtualenv in {project_path}, skipping outdated check")
                return None, None
            return [interpreter, "-m", "pip", "list", "--outdated", "--format=json"], parse_pip_outdated
        if language == "php" and (project_path / "composer.json").is_file():
            return ["composer", "outdated", "--direct", "--format=json"], parse_composer_outdated
        return None, None

    def list_outdated(self, project_path: str, language: str) -> list[OutdatedPackage]:
        root = Path(project_path)
        args, parse = self._command(root, (language or "").lower())
        if args is None:
            return []
        stdout = run_command(args, str(root), self.timeout)
        if not stdout:
            return []
        try:
            return parse(stdout)
        except (ValueError, AttributeError, TypeError) as e:
            logger.warning(f"Could not parse output of '{' '.join(args)}' in {project_path}: {e}")
            return []


def _release(version: str) -> tuple[int, ...]:
    try:
        return Version(version).release
    except InvalidVersion:
        return tuple(int(part) for part in re.findall(r'\d+', version.split("-")[0].split("+")[0]))


def get_update_type(current: str, latest: str) -> str:
    """major / minor / patch by the first differing version component."""
    c, l = _release(current), _release(latest)
    for index in range(max(len(c), len(l))):
        c_part = c[index] if index < len(c) else 0
        l_part = l[index] if index < len(l) else 0
        if c_part != l_part:
            return ("major", "minor")[index] if index < 2 else "patch"
    return "patch"


def sort_entries(entries: list[ChangelogEntry]) -> list[ChangelogEntry]:
    return sorted(entries, key=lambda e: UPDATE_ORDER[e.update_type])


def _changelog_links(registry: RegistryClient, entry: ChangelogEntry) -> ChangelogEntry:
    metadata = registry.get_metadata(entry.package)
    if metadata is None:
        entry.changelog_url = NPM_VERSIONS_URL.format(name=entry.package)
        return entry
    gh = extract_github_repo(metadata.get("repository"))
    if gh:
        entry.changelog_url = f"https://github.com/{gh[0]}/{gh[1]}/blob/HEAD/CHANGELOG.md"
    else:
        entry.changelog_url = metadata.get("homepage") or NPM_VERSIONS_URL.format(name=entry.package)
    if entry.has_breaking_changes:
        release = (metadata.get("versions") or {}).get(entry.latest_version) or {}
        if release.get("deprecated"):
            entry.release_notes = f"DEPRECATED: {release['deprecated']}"
        else:
            entry.release_notes = release.get("description") or metadata.get("description")
    return entry


def get_project_changelog(project_path: str, language: str, lister: PackageLister,
                          registry: RegistryClient | None = None) -> list[ChangelogEntry]:
    """Outdated packages as changelog entries, majors first. npm packages get registry links."""
    entries = [
        ChangelogEntry(
            package=pkg.name,
            current_version=pkg.current,
            latest_version=pkg.latest,
            update_type=get_update_type(pkg.current, pkg.latest),
        )
        for pkg in lister.list_outdated(project_path, language)
    ]
    if registry is not None and language == "node" and entries:
        with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
            entries = list(executor.map(lambda e: _changelog_links(registry, e), entries))
    return sort_entries(entries)
