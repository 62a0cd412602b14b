# depradar/project.py
import logging
import os
from pathlib import Path

from .models import ProjectInfo
from .parser import declared_node_dependencies, read_package_json

logger = logging.getLogger(__name__)

# Checked in order; the first marker found decides the language
LANGUAGE_MARKERS = (
    ("package.json", "node"),
    ("pyproject.toml", "python"),
    ("requirements.txt", "python"),
    ("setup.py", "python"),
    ("Cargo.toml", "rust"),
    ("go.mod", "go"),
    ("composer.json", "php"),
    ("Gemfile", "ruby"),
    ("pubspec.yaml", "dart"),
)
NODE_FRAMEWORKS = (
    ("@sveltejs/kit", "SvelteKit"),
    ("svelte", "Svelte"),
    ("next", "Next.js"),
    ("nuxt", "Nuxt"),
    ("astro", "Astro"),
    ("vue", "Vue"),
    ("react", "React"),
    ("express", "Express"),
)
PYTHON_FRAMEWORKS = (("django", "Django"), ("flask", "Flask"), ("fastapi", "FastAPI"))
SKIP_DIRS = frozenset({"node_modules", "vendor", "target", "dist", "build", "__pycache__", "venv", "env"})


def detect_language(path: Path) -> str | None:
    for marker, language in LANGUAGE_MARKERS:
        if (path / marker).is_file():
            return language
    return None


def detect_framework(path: Path, language: str) -> str | None:
    if language == "node":
        manifest = read_package_json(path)
        if manifest is None:
            return None
        deps = declared_node_dependencies(manifest)
        for package_name, framework in NODE_FRAMEWORKS:
            if package_name in deps:
                return framework
        return None
    if language == "python":
        text = ""
        for name in ("requirements.txt", "pyproject.toml"):
            candidate = path / name
            if candidate.is_file():
                try:
                    text += candidate.read_text(encoding="utf-8", errors="ignore").lower()
                except OSError:
                    continue
        for package_name, framework in PYTHON_FRAMEWORKS:
            if package_name in text:
                return framework
    return None


def discover_projects(root: str, max_depth: int = 2, exclude=()) -> list[ProjectInfo]:
    """
    Directories under `root` (up to `max_depth` levels) holding a recognised
    manifest. A detected project is not searched for nested projects.
    """
    projects = []
    excluded = set(exclude)

    def visit(directory: Path, depth: int):
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            return
        for entry in entries:
            if entry.name.startswith(".") or entry.name in SKIP_DIRS or entry.name in excluded:
                continue
            if not entry.is_dir(follow_symlinks=False):
                continue
            path = Path(entry.path)
            language = detect_language(path)
            if language:
                projects.append(ProjectInfo(
                    name=entry.name,
                    path=str(path),
                    language=language,
                    framework=detect_framework(path, language),
                ))
            elif depth < max_depth:
                visit(path, depth + 1)

    root_path = Path(root).expanduser()
    if not root_path.is_dir():
        logger.warning(f"Projects directory '{root_path}' does not exist")
        return []
    visit(root_path, 1)
    logger.info(f"Discovered {len(projects)} projects under {root_path}")
    return projects


def project_from_path(path: str) -> ProjectInfo | None:
    project_path = Path(path).expanduser().resolve()
    language = detect_language(project_path) if project_path.is_dir() else None
    if not language:
        return None
    return ProjectInfo(
        name=project_path.name,
        path=str(project_path),
        language=language,
        framework=detect_framework(project_path, language),
    )


def resolve_project(name_or_path: str, projects: list[ProjectInfo]) -> ProjectInfo | None:
    """Look up by project name, falling back to treating the argument as a path."""
    for project in projects:
        if project.name == name_or_path:
            return project
    return project_from_path(name_or_path)
