#!/usr/bin/env python3
import json
import logging
import sys

import click

from .changelog import SubprocessPackageLister, get_project_changelog
from .config import load_config
from .docs import PackageNotFoundError, RegistryClient, RawFileRepository, fetch_library_docs, search_package
from .migrate import detect_all_migrations, detect_migration
from .osv_scanner import OsvClient
from .project import discover_projects, resolve_project
from .report import CacheStore, ScanInProgressError
from .scanner import live_audit_all_projects, live_audit_project, run_check, scan_project, scan_projects

SEVERITY_COLORS = {"critical": "red", "high": "yellow", "moderate": "blue", "low": "green",
                   "breaking": "red", "deprecated": "yellow", "recommended": "blue"}
FORMAT_OPTION = click.option("--format", "output_format", type=click.Choice(['text', 'json'], case_sensitive=False),
                             default='text', show_default=True, help="Output format.")


class AppContext:
    """Config plus factories for the clients each command needs."""

    def __init__(self, config):
        self.config = config

    def projects(self, directory=None):
        return discover_projects(directory or self.config.projects_dir, self.config.scan_depth, self.config.exclude)

    def select(self, project, directory=None):
        projects = self.projects(directory)
        if not project:
            return projects
        found = resolve_project(project, projects)
        if found is None:
            raise click.ClickException(f"Project '{project}' not found.")
        return [found]

    def osv(self):
        return OsvClient(batch_size=self.config.osv_batch_size, timeout=self.config.osv_timeout,
                         hydrate=self.config.hydrate_advisories)

    def lister(self):
        return SubprocessPackageLister(timeout=self.config.outdated_timeout)

    def registry(self):
        return RegistryClient(timeout=self.config.fetch_timeout)


def _emit_json(data):
    click.echo(json.dumps(data, indent=2))


@click.group(context_settings=dict(help_option_names=['-h', '--help']))
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Path to a YAML config file.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.pass_context
def cli(ctx, config_path, verbose):
    """
    depradar: dependency health monitor.
    Finds outdated and vulnerable packages and upcoming migration work across your projects.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    ctx.obj = AppContext(load_config(config_path))


@cli.command("check")
@click.option("--directory", type=click.Path(file_okay=False), help="Root directory to scan.")
@click.pass_obj
def check(obj, directory):
    """Background scan: outdated counts for every project, written to the cache file."""
    projects = obj.projects(directory)
    if not projects:
        click.echo("No projects found. Set projects_dir in your config.")
        return
    try:
        summary = run_check(projects, obj.lister(), CacheStore(obj.config.cache_path))
    except ScanInProgressError as e:
        click.secho(f"Error: {e}", fg="red")
        sys.exit(1)
    for entry in summary.entries:
        status = "ok" if entry.outdated_count == 0 else f"{entry.outdated_count} outdated"
        click.echo(f"  {entry.project}: {status} (score {entry.score})")
    click.echo(f"Done in {summary.elapsed:.1f}s. {len(summary.entries)} projects, {len(summary.alerts)} need attention.")


@cli.command("status")
@FORMAT_OPTION
@click.pass_obj
def status(obj, output_format):
    """Show the last background scan from the cache file."""
    store = CacheStore(obj.config.cache_path)
    data = store.read()
    if output_format == 'json':
        _emit_json(data or {"projects": [], "updatedAt": None})
        return
    if not data:
        click.echo("No scan data yet. Run `depradar check` first.")
        return
    click.echo(f"Last scan: {data.get('updatedAt')}")
    for entry in sorted(store.entries(), key=lambda e: e.score):
        click.echo(f"  {entry.score:>3}  {entry.project:<30} {entry.outdated_count} outdated, {entry.major_count} major")


@cli.command("scan")
@click.argument("project", required=False)
@click.option("--directory", type=click.Path(file_okay=False), help="Root directory to scan.")
@FORMAT_OPTION
@click.pass_obj
def scan(obj, project, directory, output_format):
    """Full report: advisories, migration issues, outdated packages and score."""
    projects = obj.select(project, directory)
    if project:
        results = [scan_project(projects[0], obj.osv(), obj.lister(), obj.registry())]
    else:
        results = scan_projects(projects, obj.osv(), obj.lister(), obj.registry())
    if output_format == 'json':
        _emit_json([r.to_dict() for r in results])
        return
    if not results:
        click.echo("No vulnerabilities or migration issues found.")
    for result in results:
        click.secho(f"\n{result.project.name} (score {result.score})", bold=True)
        for vuln in result.vulnerabilities:
            click.secho(f"  [{vuln.severity}] {vuln.package} {vuln.id}: {vuln.summary}", fg=SEVERITY_COLORS[vuln.severity])
        for issue in result.issues:
            click.secho(f"  [{issue.severity}] {issue.file}:{issue.line} {issue.message}", fg=SEVERITY_COLORS[issue.severity])
        for entry in result.outdated:
            click.echo(f"  {entry.package}: {entry.current_version} -> {entry.latest_version} ({entry.update_type})")
        for error in result.errors:
            click.secho(f"  {error}", fg="red")


@cli.command("live-cve")
@click.argument("project", required=False)
@click.option("--directory", type=click.Path(file_okay=False), help="Root directory to scan.")
@FORMAT_OPTION
@click.pass_obj
def live_cve(obj, project, directory, output_format):
    """Real-time advisory scan via osv.dev."""
    projects = obj.select(project, directory)
    if project:
        results = [live_audit_project(projects[0], obj.osv())]
    else:
        results = live_audit_all_projects(projects, obj.osv())
    if output_format == 'json':
        _emit_json([r.to_dict() for r in results])
        return
    for result in results:
        click.secho(f"\n{result.project}: {len(result.vulnerabilities)} advisories "
                    f"({result.packages_queried} packages queried)", bold=True)
        for vuln in result.vulnerabilities:
            fix = f", fixed in {vuln.fixed_version}" if vuln.fixed_version else ""
            click.secho(f"  [{vuln.severity}] {vuln.package} {vuln.affected_range}: {vuln.id}{fix}",
                        fg=SEVERITY_COLORS[vuln.severity])
            click.echo(f"      {vuln.url}")


@cli.command("migrate")
@click.argument("project", required=False)
@click.option("--directory", type=click.Path(file_okay=False), help="Root directory to scan.")
@FORMAT_OPTION
@click.pass_obj
def migrate(obj, project, directory, output_format):
    """Framework migration detector (Svelte 4 -> 5, Next 14 -> 15, ...)."""
    projects = obj.select(project, directory)
    if project:
        info = projects[0]
        results = [detect_migration(info.path, info.name, info.framework or "")]
    else:
        results = detect_all_migrations(projects)
    if output_format == 'json':
        _emit_json([r.to_dict() for r in results])
        return
    if not results:
        click.echo("No migrations needed.")
    for result in results:
        target = f" -> {result.latest_major}" if result.latest_major else ""
        click.secho(f"\n{result.project}: {result.framework} {result.current_version}{target}", bold=True)
        if result.migration_guide_url:
            click.echo(f"  Guide: {result.migration_guide_url}")
        for issue in result.issues:
            click.secho(f"  [{issue.severity}] {issue.file}:{issue.line} {issue.message}", fg=SEVERITY_COLORS[issue.severity])
            click.echo(f"      {issue.migration}")


@cli.command("changelog")
@click.argument("project")
@FORMAT_OPTION
@click.pass_obj
def changelog(obj, project, output_format):
    """Outdated packages with changelog links, breaking updates first."""
    info = obj.select(project)[0]
    entries = get_project_changelog(info.path, info.language, obj.lister(), obj.registry())
    if output_format == 'json':
        _emit_json({"project": info.name, "entries": [e.to_dict() for e in entries]})
        return
    if not entries:
        click.echo(f"{info.name}: everything is up to date.")
    for entry in entries:
        color = "red" if entry.has_breaking_changes else None
        click.secho(f"  {entry.package}: {entry.current_version} -> {entry.latest_version} ({entry.update_type})", fg=color)
        if entry.changelog_url:
            click.echo(f"      {entry.changelog_url}")
        if entry.release_notes:
            click.echo(f"      {entry.release_notes}")


@cli.command("docs")
@click.argument("package")
@click.option("--query", help="Focus the docs on a topic (e.g. 'runes migration').")
@click.option("--sections", type=click.Choice(['all', 'readme', 'changelog', 'migration']), default='all', show_default=True)
@FORMAT_OPTION
@click.pass_obj
def docs(obj, package, query, sections, output_format):
    """Fetch README, changelog and migration guide for a package."""
    try:
        result = fetch_library_docs(package, query=query, sections=sections, registry=obj.registry(),
                                    repository=RawFileRepository(timeout=obj.config.fetch_timeout))
    except PackageNotFoundError as e:
        click.secho(f"Error: {e}", fg="red")
        sys.exit(1)
    if output_format == 'json':
        _emit_json(result.to_dict())
        return
    click.secho(f"{result.package}@{result.version}", bold=True)
    click.echo(result.description)
    if result.repository:
        click.echo(result.repository)
    for title, text in (("README", result.readme), ("CHANGELOG", result.changelog), ("MIGRATION GUIDE", result.migration_guide)):
        if text:
            click.secho(f"\n--- {title} ---", bold=True)
            click.echo(text)


@cli.command("search")
@click.argument("query")
@FORMAT_OPTION
@click.pass_obj
def search(obj, query, output_format):
    """Search the npm registry."""
    results = search_package(query, obj.registry())
    if output_format == 'json':
        _emit_json(results)
        return
    if not results:
        click.echo("No packages found.")
    for pkg in results:
        click.echo(f"  {pkg['name']}@{pkg['version']}  {pkg['description']}")


if __name__ == "__main__":
    cli()
