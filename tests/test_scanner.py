import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

# Add parent directory to path so we can import our modules
sys.path.append(str(Path(__file__).parent.parent))

from depradar.models import OutdatedPackage, ProjectInfo, Vulnerability
from depradar.parser import get_installed_packages
from depradar.report import CacheStore, ScanInProgressError, ScanState
from depradar.scanner import live_audit_all_projects, live_audit_project, run_check, scan_project, scan_projects


class FakeIndex:
    def __init__(self, vulnerable=(), fail=False):
        self.vulnerable = set(vulnerable)
        self.fail = fail
        self.calls = []

    def query(self, packages, ecosystem):
        self.calls.append((tuple(p.name for p in packages), ecosystem))
        if self.fail:
            raise RuntimeError("osv.dev unreachable")
        return [
            Vulnerability(id=f"GHSA-{p.name}", summary="bad", package=p.name, ecosystem=ecosystem,
                          affected_range=f"{p.version} (installed)", score=7.5)
            for p in packages if p.name in self.vulnerable
        ]


class FakeLister:
    def __init__(self, outdated=None, fail_for=()):
        self.outdated = outdated or {}
        self.fail_for = set(fail_for)

    def list_outdated(self, project_path, language):
        name = Path(project_path).name
        if name in self.fail_for:
            raise OSError("npm crashed")
        return list(self.outdated.get(name, []))


def make_node_project(root: Path, name: str, deps: dict, files: dict = None) -> ProjectInfo:
    path = root / name
    path.mkdir(parents=True)
    (path / "package.json").write_text(json.dumps({"dependencies": deps}), encoding="utf-8")
    for rel, text in (files or {}).items():
        target = path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    framework = "Svelte" if "svelte" in deps else None
    return ProjectInfo(name=name, path=str(path), language="node", framework=framework)


class TestLiveAudit(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_live_audit_project(self):
        project = make_node_project(self.root, "app", {"lodash": "4.17.20", "svelte": "^4.2.0"})
        index = FakeIndex(vulnerable={"lodash"})

        result = live_audit_project(project, index)

        self.assertEqual(result.project, "app")
        self.assertEqual(result.packages_queried, 2)
        self.assertEqual([v.id for v in result.vulnerabilities], ["GHSA-lodash"])
        self.assertEqual(result.source, "osv.dev")
        self.assertTrue(result.queried_at)
        self.assertEqual(index.calls, [(("lodash", "svelte"), "npm")])

    def test_unknown_language_queries_nothing(self):
        index = FakeIndex()
        project = ProjectInfo(name="legacy", path=str(self.root), language="cobol")
        result = live_audit_project(project, index)
        self.assertEqual(result.vulnerabilities, [])
        self.assertEqual(result.packages_queried, 0)
        self.assertEqual(index.calls, [])

    def test_all_projects_keeps_only_vulnerable(self):
        projects = [
            make_node_project(self.root, "clean", {"react": "18.2.0"}),
            make_node_project(self.root, "risky", {"lodash": "4.17.20"}),
        ]
        results = live_audit_all_projects(projects, FakeIndex(vulnerable={"lodash"}))
        self.assertEqual([r.project for r in results], ["risky"])

    def test_malformed_lockfile_does_not_stop_other_projects(self):
        php = self.root / "shop"
        php.mkdir()
        (php / "composer.lock").write_text("[]", encoding="utf-8")
        projects = [
            ProjectInfo(name="shop", path=str(php), language="php"),
            make_node_project(self.root, "risky", {"lodash": "4.17.20"}),
        ]
        results = live_audit_all_projects(projects, FakeIndex(vulnerable={"lodash"}))
        self.assertEqual([r.project for r in results], ["risky"])

    def test_failing_project_is_skipped(self):
        projects = [
            make_node_project(self.root, "first", {"lodash": "4.17.20"}),
            make_node_project(self.root, "second", {"lodash": "4.17.19"}),
        ]
        real = live_audit_project

        def audit(project, index):
            if project.name == "first":
                raise TypeError("unexpected manifest shape")
            return real(project, index)

        with mock.patch("depradar.scanner.live_audit_project", side_effect=audit):
            results = live_audit_all_projects(projects, FakeIndex(vulnerable={"lodash"}))
        self.assertEqual([r.project for r in results], ["second"])


class TestScanProject(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.project = make_node_project(
            self.root, "site", {"svelte": "^4.2.0", "lodash": "4.17.20"},
            files={"src/App.svelte": "<script>\n  export let name;\n</script>\n"},
        )

    def tearDown(self):
        self.tmp.cleanup()

    def test_all_stages_merged(self):
        lister = FakeLister({"site": [OutdatedPackage("svelte", "4.2.0", "4.2.0", "5.1.0"),
                                      OutdatedPackage("lodash", "4.17.20", "4.17.21", "4.17.21")]})

        result = scan_project(self.project, FakeIndex(vulnerable={"lodash"}), lister)

        self.assertEqual(result.errors, [])
        self.assertEqual([v.package for v in result.vulnerabilities], ["lodash"])
        self.assertEqual(len(result.issues), 1)
        self.assertEqual(result.current_version, "4.x")
        self.assertEqual(result.latest_major, "5.x")
        self.assertEqual([e.package for e in result.outdated], ["svelte", "lodash"])
        self.assertEqual(result.score, 100 - 6 - 10)
        self.assertEqual(len(result.packages), 2)

    def test_failing_stage_is_isolated(self):
        result = scan_project(self.project, FakeIndex(fail=True), FakeLister(fail_for={"site"}))

        self.assertEqual(result.vulnerabilities, [])
        self.assertEqual(result.outdated, [])
        self.assertEqual(len(result.issues), 1)
        self.assertEqual(sorted(result.errors), [
            "Error in outdated check: npm crashed",
            "Error in vulnerabilities check: osv.dev unreachable",
        ])
        self.assertEqual(result.score, 100)

    def test_scan_projects_filters_clean_projects(self):
        clean = make_node_project(self.root, "clean", {"react": "18.2.0"})
        results = scan_projects([clean, self.project], FakeIndex(), FakeLister())
        self.assertEqual([r.project.name for r in results], ["site"])

    @mock.patch("depradar.scanner.get_installed_packages")
    def test_failing_project_does_not_stop_scan(self, mock_inventory):
        broken = make_node_project(self.root, "broken", {"lodash": "4.17.20"})
        real = get_installed_packages

        def inventory(path, language):
            if Path(path).name == "broken":
                raise AttributeError("'list' object has no attribute 'get'")
            return real(path, language)

        mock_inventory.side_effect = inventory
        results = scan_projects([broken, self.project], FakeIndex(vulnerable={"lodash"}), FakeLister())
        self.assertEqual([r.project.name for r in results], ["site"])


class TestRunCheck(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.store = CacheStore(self.root / "cache.json")

    def tearDown(self):
        self.tmp.cleanup()

    def test_check_writes_all_projects(self):
        projects = [
            make_node_project(self.root, "a", {"svelte": "4.0.0"}),
            make_node_project(self.root, "b", {"react": "18.2.0"}),
        ]
        lister = FakeLister({"a": [OutdatedPackage("svelte", "4.0.0", "4.0.0", "5.0.0")]})

        summary = run_check(projects, lister, self.store)

        self.assertEqual([e.project for e in summary.entries], ["a", "b"])
        self.assertEqual([e.project for e in summary.alerts], ["a"])
        cached = {e.project: e for e in self.store.entries()}
        self.assertEqual(cached["a"].score, 87)
        self.assertEqual(cached["a"].major_count, 1)
        self.assertEqual(cached["b"].score, 100)

    def test_failing_project_is_skipped(self):
        projects = [
            make_node_project(self.root, "a", {"svelte": "4.0.0"}),
            make_node_project(self.root, "b", {"react": "18.2.0"}),
        ]
        summary = run_check(projects, FakeLister(fail_for={"a"}), self.store)
        self.assertEqual([e.project for e in summary.entries], ["b"])

    def test_concurrent_check_rejected(self):
        state = ScanState()
        with state.guard():
            with self.assertRaises(ScanInProgressError):
                run_check([], FakeLister(), self.store, state)
        self.assertIsNone(self.store.read())


if __name__ == "__main__":
    unittest.main()
