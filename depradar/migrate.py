# depradar/migrate.py
"""
Framework migration detector.

Picks the single upgrade rule for a project's (framework, installed major) and
scans its source tree for code patterns the next major breaks or deprecates.
"""
import logging
import os
import re
from pathlib import Path

from .migration_rules import RULE_REGISTRY, get_rule
from .models import MigrationIssue, MigrationResult, ProjectInfo
from .parser import declared_node_dependencies, read_package_json, resolve_node_version

logger = logging.getLogger(__name__)

MAX_DEPTH = 5
SKIP_DIRS = frozenset({
    "node_modules", ".git", ".svelte-kit", ".next", ".nuxt", "dist", "build",
    ".vercel", ".cache", "vendor", "target", "__pycache__",
})
# Framework display names / sub-tools -> the npm package that carries the version
FRAMEWORK_ALIASES = {
    "svelte": "svelte",
    "sveltekit": "svelte",
    "next": "next",
    "next.js": "next",
    "nextjs": "next",
    "nuxt": "nuxt",
    "astro": "astro",
    "react": "react",
    "tailwind": "tailwindcss",
    "tailwindcss": "tailwindcss",
}

_COMPILED = {
    pattern.regex: re.compile(pattern.regex)
    for rule in RULE_REGISTRY.values()
    for pattern in rule.patterns
}


def normalize_framework(framework: str) -> str:
    name = (framework or "").strip().lower()
    return FRAMEWORK_ALIASES.get(name, name)


def parse_major(version: str) -> int | None:
    match = re.match(r'\d+', version or "")
    return int(match.group(0)) if match else None


def get_framework_major(project_path: str, framework: str) -> int | None:
    """Installed node_modules version first, declared range as fallback."""
    root = Path(project_path)
    manifest = read_package_json(root)
    if manifest is None:
        return None
    pkg_name = normalize_framework(framework)
    spec = declared_node_dependencies(manifest).get(pkg_name)
    if not spec:
        return None
    return parse_major(resolve_node_version(root, pkg_name, str(spec)))


def walk_files(directory: str, extensions, max_depth: int = MAX_DEPTH, depth: int = 0) -> list[str]:
    if depth > max_depth:
        return []
    files = []
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError as e:
        logger.debug(f"Cannot list {directory}: {e}")
        return []
    for entry in entries:
        if entry.name.startswith(".") or entry.name in SKIP_DIRS:
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                files.extend(walk_files(entry.path, extensions, max_depth, depth + 1))
            elif os.path.splitext(entry.name)[1] in extensions:
                files.append(entry.path)
        except OSError:
            continue
    return files


def _read_lines(path: str) -> list[str] | None:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().split("\n")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Skipping unreadable file {path}: {e}")
        return None


def scan_for_patterns(project_path: str, rule) -> list[MigrationIssue]:
    """
    One issue per (file, line, pattern): a pattern that matches several times on
    one line is reported once.
    """
    root = Path(project_path)
    all_exts = {ext for pattern in rule.patterns for ext in pattern.file_extensions}
    candidates = walk_files(project_path, all_exts)
    contents = {}
    issues = []
    for pattern in rule.patterns:
        regex = _COMPILED.get(pattern.regex) or re.compile(pattern.regex)
        for file_path in candidates:
            if os.path.splitext(file_path)[1] not in pattern.file_extensions:
                continue
            if file_path not in contents:
                contents[file_path] = _read_lines(file_path)
            lines = contents[file_path]
            if lines is None:
                continue
            relative = Path(file_path).relative_to(root).as_posix()
            for line_number, line in enumerate(lines, 1):
                if regex.search(line):
                    issues.append(MigrationIssue(
                        severity=pattern.severity,
                        pattern=pattern.regex,
                        file=relative,
                        line=line_number,
                        message=pattern.message,
                        migration=pattern.migration,
                    ))
    return issues


def detect_migration(project_path: str, project_name: str, framework: str,
                     current_major: int | None = None) -> MigrationResult:
    if current_major is None:
        current_major = get_framework_major(project_path, framework)

    result = MigrationResult(
        project=project_name,
        framework=framework,
        current_version=f"{current_major}.x" if current_major else "unknown",
    )
    if not current_major:
        return result

    rule = get_rule(normalize_framework(framework), current_major)
    if rule is None:
        return result

    result.latest_major = f"{rule.to_major}.x"
    result.migration_guide_url = rule.guide_url
    result.issues = scan_for_patterns(project_path, rule)
    result.migration_needed = bool(result.issues)
    if result.migration_needed:
        logger.info(f"{project_name}: {len(result.issues)} {rule.framework} {rule.from_major}->{rule.to_major} migration issue(s)")
    return result


def detect_all_migrations(projects: list[ProjectInfo]) -> list[MigrationResult]:
    results = []
    for project in projects:
        if not project.framework:
            continue
        result = detect_migration(project.path, project.name, project.framework)
        if result.migration_needed:
            results.append(result)
    return results
