# depradar/parser.py
import json
import logging
import re
from pathlib import Path

import yaml
from packaging.version import parse as parse_version, InvalidVersion

from .models import Package
from .go_parser import parse_go_packages

logger = logging.getLogger(__name__)

# Our language names -> OSV ecosystem names (https://ossf.github.io/osv-schema/#affectedpackage-field)
ECOSYSTEM_MAP = {
    "node": "npm",
    "python": "PyPI",
    "rust": "crates.io",
    "go": "Go",
    "php": "Packagist",
    "ruby": "RubyGems",
    "dart": "Pub",
}

# Regex to find package==version lines, ignoring comments and extras
REQ_PATTERN = re.compile(r'^\s*([a-zA-Z0-9_.-]+)\s*==\s*([a-zA-Z0-9_.*+!-]+)')
RANGE_OPERATOR = re.compile(r'^[\^~>=<]+\s*v?')
# [[package]] tables shared by Cargo.lock and poetry.lock
LOCK_PACKAGE_PATTERN = re.compile(r'\[\[package\]\]\s*\nname = "(.+?)"\s*\nversion = "(.+?)"')
GEMFILE_SPEC_PATTERN = re.compile(r'^    ([^\s(]+) \(([^)]+)\)\s*$')


def strip_range_operator(spec: str) -> str:
    """'^1.2.3' -> '1.2.3', '>= 2.0 <3' -> '2.0'."""
    stripped = RANGE_OPERATOR.sub("", str(spec).strip())
    return stripped.split()[0] if stripped else ""


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return None


def _dedupe(packages: list[Package]) -> list[Package]:
    seen = set()
    unique = []
    for pkg in packages:
        if pkg.key in seen:
            continue
        seen.add(pkg.key)
        unique.append(pkg)
    return unique


def parse_requirements(content: str, source_hint: str = "input") -> list[Package]:
    """Parses requirements.txt content, keeping only pinned (==) entries."""
    packages = []
    for line_num, line in enumerate(content.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        match = REQ_PATTERN.match(line)
        if not match:
            continue
        name = match.group(1).lower()
        version_str = match.group(2)
        try:
            parse_version(version_str)
        except InvalidVersion:
            logger.warning(f"({source_hint}) Skipping line {line_num}: invalid version '{version_str}' for '{name}'")
            continue
        packages.append(Package(name=name, version=version_str, ecosystem="PyPI"))
    logger.debug(f"Parsed {len(packages)} packages from requirements content ({source_hint}).")
    return _dedupe(packages)


def parse_pipfile_lock(content: str, source_hint: str = "Pipfile.lock") -> list[Package]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning(f"({source_hint}) Could not decode JSON content.")
        return []
    if not isinstance(data, dict):
        logger.warning(f"({source_hint}) Expected a JSON object, got {type(data).__name__}.")
        return []
    packages = []
    for section in ("default", "develop"):
        entries = data.get(section) or {}
        if not isinstance(entries, dict):
            continue
        for name, details in entries.items():
            if not isinstance(details, dict):
                continue
            version_str = strip_range_operator(details.get("version", ""))
            if version_str:
                packages.append(Package(name=name.lower(), version=version_str, ecosystem="PyPI"))
    return _dedupe(packages)


def parse_package_lock(content: str, source_hint: str = "package-lock.json") -> list[Package]:
    """
    Parses package-lock.json content (v2/v3 format with 'packages' key).
    Only top-level node_modules entries are kept.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning(f"({source_hint}) Could not decode JSON content.")
        return []
    if not isinstance(data, dict) or not isinstance(data.get('packages'), dict):
        logger.warning(f"({source_hint}) Lockfile has no 'packages' table (v1 format or invalid).")
        return []

    packages = []
    for path, details in data['packages'].items():
        if not path or not path.startswith('node_modules/') or '/node_modules/' in path[len('node_modules/'):]:
            continue
        version_str = details.get('version') if isinstance(details, dict) else None
        if version_str:
            packages.append(Package(name=path[len('node_modules/'):], version=str(version_str), ecosystem="npm"))
    return _dedupe(packages)


def _installed_node_version(project_path: Path, name: str) -> str | None:
    manifest = project_path / "node_modules" / name / "package.json"
    content = _read_text(manifest)
    if content is None:
        return None
    try:
        version = json.loads(content).get("version")
    except (json.JSONDecodeError, AttributeError):
        return None
    return str(version) if version else None


def read_package_json(project_path: Path) -> dict | None:
    content = _read_text(project_path / "package.json")
    if content is None:
        return None
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning(f"Could not decode {project_path / 'package.json'}")
        return None
    return data if isinstance(data, dict) else None


def declared_node_dependencies(manifest: dict) -> dict:
    declared = {}
    for section in ("dependencies", "devDependencies"):
        deps = manifest.get(section) or {}
        if not isinstance(deps, dict):
            logger.warning(f"Ignoring '{section}' in package.json: expected an object, got {type(deps).__name__}")
            continue
        declared.update(deps)
    return declared


def resolve_node_version(project_path: Path, name: str, spec: str) -> str:
    """Installed node_modules version wins over the declared range."""
    installed = _installed_node_version(project_path, name)
    if installed:
        return installed
    return strip_range_operator(spec)


def parse_node_project(project_path: Path) -> list[Package]:
    manifest = read_package_json(project_path)
    if manifest is None:
        lock = _read_text(project_path / "package-lock.json")
        return parse_package_lock(lock) if lock else []

    packages = []
    for name, spec in declared_node_dependencies(manifest).items():
        version_str = resolve_node_version(project_path, name, str(spec))
        # workspace:, file:, git urls and tags have no comparable version
        if not version_str or not version_str[0].isdigit():
            logger.debug(f"Skipping {name}: no resolvable version from '{spec}'")
            continue
        packages.append(Package(name=name, version=version_str, ecosystem="npm"))
    return packages


def parse_toml_lock(content: str, ecosystem: str) -> list[Package]:
    packages = [
        Package(name=name, version=version, ecosystem=ecosystem)
        for name, version in LOCK_PACKAGE_PATTERN.findall(content)
    ]
    return _dedupe(packages)


def parse_composer_lock(content: str, source_hint: str = "composer.lock") -> list[Package]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning(f"({source_hint}) Could not decode JSON content.")
        return []
    if not isinstance(data, dict):
        logger.warning(f"({source_hint}) Expected a JSON object, got {type(data).__name__}.")
        return []
    packages = []
    for section in ("packages", "packages-dev"):
        entries = data.get(section) or []
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name = entry.get("name")
            version_str = str(entry.get("version", "")).lstrip("v")
            if name and version_str:
                packages.append(Package(name=str(name), version=version_str, ecosystem="Packagist"))
    return _dedupe(packages)


def parse_gemfile_lock(content: str) -> list[Package]:
    packages = []
    in_specs = False
    for line in content.splitlines():
        if line.strip() == "specs:":
            in_specs = True
            continue
        if in_specs and line and not line.startswith(" "):
            in_specs = False
        if not in_specs:
            continue
        match = GEMFILE_SPEC_PATTERN.match(line)
        if match:
            packages.append(Package(name=match.group(1), version=match.group(2), ecosystem="RubyGems"))
    return _dedupe(packages)


def parse_pubspec_lock(content: str, source_hint: str = "pubspec.lock") -> list[Package]:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.warning(f"({source_hint}) Could not parse YAML: {e}")
        return []
    entries = data.get("packages") if isinstance(data, dict) else None
    if not isinstance(entries, dict):
        logger.warning(f"({source_hint}) No 'packages' mapping found.")
        return []
    packages = []
    for name, details in entries.items():
        if not isinstance(details, dict):
            continue
        version_str = details.get("version")
        if version_str:
            packages.append(Package(name=str(name), version=str(version_str), ecosystem="Pub"))
    return _dedupe(packages)


def _parse_python_project(project_path: Path) -> list[Package]:
    requirements = _read_text(project_path / "requirements.txt")
    if requirements is not None:
        return parse_requirements(requirements, source_hint=str(project_path / "requirements.txt"))
    pipfile_lock = _read_text(project_path / "Pipfile.lock")
    if pipfile_lock is not None:
        return parse_pipfile_lock(pipfile_lock)
    poetry_lock = _read_text(project_path / "poetry.lock")
    if poetry_lock is not None:
        return parse_toml_lock(poetry_lock, "PyPI")
    return []


def _parse_from_file(project_path: Path, filename: str, parse) -> list[Package]:
    content = _read_text(project_path / filename)
    return parse(content) if content is not None else []


def get_installed_packages(project_path: str, language: str) -> list[Package]:
    """
    Best-effort inventory of a project's resolved dependencies, in discovery order.
    Missing or unparseable manifests yield an empty list.
    """
    root = Path(project_path)
    language = (language or "").lower()
    if language == "node":
        return parse_node_project(root)
    if language == "python":
        return _parse_python_project(root)
    if language == "rust":
        return _parse_from_file(root, "Cargo.lock", lambda c: parse_toml_lock(c, "crates.io"))
    if language == "go":
        return parse_go_packages(str(root))
    if language == "php":
        return _parse_from_file(root, "composer.lock", parse_composer_lock)
    if language == "ruby":
        return _parse_from_file(root, "Gemfile.lock", parse_gemfile_lock)
    if language == "dart":
        return _parse_from_file(root, "pubspec.lock", parse_pubspec_lock)
    logger.debug(f"No inventory support for language '{language}'")
    return []
