# depradar/models.py
from dataclasses import dataclass, field
from typing import Optional

# Severity labels used for advisories (OSV) and migration findings
VULN_SEVERITIES = ("critical", "high", "moderate", "low")
MIGRATION_SEVERITIES = ("breaking", "deprecated", "recommended")
UPDATE_ORDER = {"major": 0, "minor": 1, "patch": 2}


@dataclass(frozen=True)
class Package:
    name: str
    version: str
    ecosystem: Optional[str] = None

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.name, self.ecosystem)


@dataclass(frozen=True)
class Vulnerability:
    id: str
    summary: str
    package: str
    ecosystem: str
    affected_range: str
    fixed_version: str | None = None
    url: str = ""
    published: str = ""
    score: float | None = None
    # Advisory-supplied label, used only when no usable score exists
    severity_label: str | None = None

    @property
    def severity(self) -> str:
        if not self.score:
            if self.severity_label in VULN_SEVERITIES:
                return self.severity_label
            return "moderate"
        elif self.score >= 9.0:
            return "critical"
        elif self.score >= 7.0:
            return "high"
        elif self.score >= 4.0:
            return "moderate"
        else:
            return "low"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "summary": self.summary,
            "severity": self.severity,
            "package": self.package,
            "ecosystem": self.ecosystem,
            "affectedRange": self.affected_range,
            "fixedVersion": self.fixed_version,
            "url": self.url,
            "published": self.published,
        }


@dataclass(frozen=True)
class MigrationPattern:
    regex: str
    file_extensions: tuple[str, ...]
    severity: str  # breaking, deprecated, recommended
    message: str
    migration: str


@dataclass(frozen=True)
class MigrationRule:
    framework: str
    from_major: int
    to_major: int
    guide_url: str
    patterns: tuple[MigrationPattern, ...]


@dataclass(frozen=True)
class MigrationIssue:
    severity: str
    pattern: str
    file: str
    line: int
    message: str
    migration: str

    def to_dict(self) -> dict:
        return {
            "type": self.severity,
            "pattern": self.pattern,
            "file": self.file,
            "line": self.line,
            "message": self.message,
            "migration": self.migration,
        }


@dataclass
class MigrationResult:
    project: str
    framework: str
    current_version: str = "unknown"
    latest_major: str | None = None
    migration_needed: bool = False
    issues: list[MigrationIssue] = field(default_factory=list)
    migration_guide_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "framework": self.framework,
            "currentVersion": self.current_version,
            "latestMajor": self.latest_major,
            "migrationNeeded": self.migration_needed,
            "issues": [i.to_dict() for i in self.issues],
            "migrationGuideUrl": self.migration_guide_url,
        }


@dataclass
class LiveCveResult:
    project: str
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    packages_queried: int = 0
    source: str = "osv.dev"
    queried_at: str = ""

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "packagesQueried": self.packages_queried,
            "source": self.source,
            "queriedAt": self.queried_at,
        }


@dataclass(frozen=True)
class OutdatedPackage:
    name: str
    current: str
    wanted: str
    latest: str


@dataclass
class ChangelogEntry:
    package: str
    current_version: str
    latest_version: str
    update_type: str  # patch, minor, major
    changelog_url: str | None = None
    release_notes: str | None = None

    @property
    def has_breaking_changes(self) -> bool:
        return self.update_type == "major"

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "currentVersion": self.current_version,
            "latestVersion": self.latest_version,
            "hasBreakingChanges": self.has_breaking_changes,
            "changelogUrl": self.changelog_url,
            "releaseNotes": self.release_notes,
            "updateType": self.update_type,
        }


@dataclass(frozen=True)
class ProjectInfo:
    name: str
    path: str
    language: str
    framework: str | None = None


@dataclass
class DocResult:
    package: str
    version: str = ""
    description: str = ""
    repository: str = ""
    readme: str = ""
    changelog: str = ""
    migration_guide: str = ""
    homepage: str = ""

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "version": self.version,
            "description": self.description,
            "repository": self.repository,
            "readme": self.readme,
            "changelog": self.changelog,
            "migrationGuide": self.migration_guide,
            "homepage": self.homepage,
        }


@dataclass
class ScanResult:
    """Merged per-project report: inventory, advisories, migration risk and staleness."""
    project: ProjectInfo
    packages: list[Package] = field(default_factory=list)
    current_version: str | None = None
    latest_major: str | None = None
    migration_guide_url: str | None = None
    issues: list[MigrationIssue] = field(default_factory=list)
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    outdated: list[ChangelogEntry] = field(default_factory=list)
    score: int = 100
    errors: list[str] = field(default_factory=list)

    @property
    def major_count(self) -> int:
        return sum(1 for e in self.outdated if e.update_type == "major")

    @property
    def has_findings(self) -> bool:
        return bool(self.issues or self.vulnerabilities)

    def to_dict(self) -> dict:
        return {
            "project": self.project.name,
            "path": self.project.path,
            "language": self.project.language,
            "framework": self.project.framework,
            "packagesScanned": len(self.packages),
            "currentVersion": self.current_version,
            "latestMajor": self.latest_major,
            "migrationNeeded": bool(self.issues),
            "migrationGuideUrl": self.migration_guide_url,
            "issues": [i.to_dict() for i in self.issues],
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "outdated": [e.to_dict() for e in self.outdated],
            "score": self.score,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class CacheEntry:
    project: str
    path: str
    language: str
    framework: str | None
    outdated_count: int
    major_count: int
    security_issues: int
    score: int
    checked_at: str

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "path": self.path,
            "language": self.language,
            "framework": self.framework,
            "outdatedCount": self.outdated_count,
            "majorCount": self.major_count,
            "securityIssues": self.security_issues,
            "score": self.score,
            "checkedAt": self.checked_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            project=data.get("project", ""),
            path=data.get("path", ""),
            language=data.get("language", ""),
            framework=data.get("framework"),
            outdated_count=int(data.get("outdatedCount", 0)),
            major_count=int(data.get("majorCount", 0)),
            security_issues=int(data.get("securityIssues", 0)),
            score=int(data.get("score", 100)),
            checked_at=data.get("checkedAt", ""),
        )
