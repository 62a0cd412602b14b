import json
import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path so we can import our modules
sys.path.append(str(Path(__file__).parent.parent))

from depradar.migrate import (
    detect_all_migrations,
    detect_migration,
    get_framework_major,
    normalize_framework,
    scan_for_patterns,
    walk_files,
)
from depradar.migration_rules import MIGRATION_RULES, RULE_REGISTRY, _build_registry, get_rule
from depradar.models import MigrationPattern, MigrationRule, ProjectInfo


def write(path: Path, text: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestMigrationRules(unittest.TestCase):
    def test_registry_lookup(self):
        self.assertEqual(get_rule("svelte", 4).to_major, 5)
        self.assertEqual(get_rule("next", 14).to_major, 15)
        self.assertIsNone(get_rule("svelte", 5))
        self.assertEqual(len(RULE_REGISTRY), len(MIGRATION_RULES))

    def test_registry_is_read_only(self):
        with self.assertRaises(TypeError):
            RULE_REGISTRY[("svelte", 5)] = None

    def test_duplicate_rules_rejected(self):
        with self.assertRaises(ValueError):
            _build_registry(MIGRATION_RULES + (MIGRATION_RULES[0],))

    def test_unknown_pattern_severity_rejected(self):
        rule = MigrationRule(
            framework="svelte", from_major=3, to_major=4, guide_url="https://svelte.dev/docs/v4-migration-guide",
            patterns=(MigrationPattern(r"\$\$props", (".svelte",), "critical", "$$props", "Use $props()"),),
        )
        with self.assertRaises(ValueError):
            _build_registry((rule,))

    def test_framework_aliases(self):
        self.assertEqual(normalize_framework("SvelteKit"), "svelte")
        self.assertEqual(normalize_framework("Next.js"), "next")
        self.assertEqual(normalize_framework("tailwind"), "tailwindcss")


class TestSvelteMigration(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        write(self.root / "package.json", json.dumps({"devDependencies": {"svelte": "^4.2.0"}}))

    def tearDown(self):
        self.tmp.cleanup()

    def test_export_let_reports_one_breaking_issue(self):
        write(self.root / "src" / "Button.svelte", "<script>\n  export let foo;\n</script>\n")

        result = detect_migration(str(self.root), "app", "svelte")

        self.assertTrue(result.migration_needed)
        self.assertEqual(result.current_version, "4.x")
        self.assertEqual(result.latest_major, "5.x")
        self.assertEqual(result.migration_guide_url, "https://svelte.dev/docs/svelte/v5-migration-guide")
        self.assertEqual(len(result.issues), 1)
        issue = result.issues[0]
        self.assertEqual(issue.severity, "breaking")
        self.assertEqual(issue.file, "src/Button.svelte")
        self.assertEqual(issue.line, 2)
        self.assertIn("$props()", issue.migration)

    def test_installed_version_decides_major(self):
        write(self.root / "node_modules" / "svelte" / "package.json", json.dumps({"version": "5.1.0"}))
        write(self.root / "src" / "Button.svelte", "<script>\n  export let foo;\n</script>\n")

        self.assertEqual(get_framework_major(str(self.root), "svelte"), 5)
        result = detect_migration(str(self.root), "app", "svelte")
        self.assertFalse(result.migration_needed)
        self.assertEqual(result.issues, [])
        self.assertIsNone(result.latest_major)

    def test_repeated_match_on_one_line_counts_once(self):
        write(self.root / "src" / "Form.svelte", '<form on:submit={save}><button on:click={go}>x</button></form>\n')
        result = detect_migration(str(self.root), "app", "svelte")
        self.assertEqual([(i.file, i.line) for i in result.issues], [("src/Form.svelte", 1)])

    def test_skip_dirs_and_hidden_dirs_are_not_scanned(self):
        write(self.root / "node_modules" / "lib" / "Thing.svelte", "export let x;\n")
        write(self.root / ".svelte-kit" / "generated" / "Root.svelte", "export let x;\n")
        write(self.root / "build" / "Out.svelte", "export let x;\n")
        write(self.root / "src" / "Clean.svelte", "<script>\n  let { x } = $props();\n</script>\n")

        result = detect_migration(str(self.root), "app", "svelte")
        self.assertFalse(result.migration_needed)
        self.assertEqual(result.latest_major, "5.x")

    def test_scan_is_idempotent(self):
        write(self.root / "src" / "a.svelte", "export let a;\n$: b = a * 2;\n")
        write(self.root / "src" / "lib" / "store.js", "import { createEventDispatcher } from 'svelte';\n")
        write(self.root / "svelte.config.js", "import preprocess from 'svelte-preprocess';\n")

        first = detect_migration(str(self.root), "app", "svelte")
        second = detect_migration(str(self.root), "app", "svelte")

        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(len(first.issues), 4)
        self.assertEqual({i.severity for i in first.issues}, {"breaking", "deprecated"})

    def test_unreadable_file_is_skipped(self):
        (self.root / "src").mkdir()
        (self.root / "src" / "Bad.svelte").write_bytes(b"export let \xff\xfe;\n")
        write(self.root / "src" / "Good.svelte", "export let ok;\n")

        result = detect_migration(str(self.root), "app", "svelte")
        self.assertEqual([i.file for i in result.issues], ["src/Good.svelte"])


class TestNoRule(unittest.TestCase):
    def test_unknown_major_returns_without_scanning(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write(root / "package.json", json.dumps({"dependencies": {"next": "15.0.3"}}))
            write(root / "app" / "page.tsx", "export async function getServerSideProps() {}\n")
            result = detect_migration(tmp, "site", "Next.js")
        self.assertEqual(result.current_version, "15.x")
        self.assertFalse(result.migration_needed)
        self.assertIsNone(result.migration_guide_url)

    def test_unknown_version(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = detect_migration(tmp, "empty", "svelte")
        self.assertEqual(result.current_version, "unknown")
        self.assertFalse(result.migration_needed)

    def test_explicit_major_skips_manifest(self):
        with tempfile.TemporaryDirectory() as tmp:
            write(Path(tmp) / "app" / "page.tsx", "export async function getServerSideProps() {}\n")
            result = detect_migration(tmp, "site", "next", current_major=14)
        self.assertTrue(result.migration_needed)
        self.assertEqual(result.issues[0].severity, "deprecated")


class TestDetectAll(unittest.TestCase):
    def test_only_projects_needing_migration(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            old = root / "old"
            write(old / "package.json", json.dumps({"dependencies": {"svelte": "4.0.0"}}))
            write(old / "src" / "A.svelte", "export let a;\n")
            new = root / "new"
            write(new / "package.json", json.dumps({"dependencies": {"svelte": "5.0.0"}}))
            projects = [
                ProjectInfo(name="old", path=str(old), language="node", framework="Svelte"),
                ProjectInfo(name="new", path=str(new), language="node", framework="Svelte"),
                ProjectInfo(name="api", path=str(root), language="python"),
            ]
            results = detect_all_migrations(projects)
        self.assertEqual([r.project for r in results], ["old"])


class TestWalkFiles(unittest.TestCase):
    def test_depth_limit_and_order(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            write(root / "b.svelte", "")
            write(root / "a.svelte", "")
            write(root / "x.txt", "")
            deep = root.joinpath(*[f"d{i}" for i in range(7)])
            write(deep / "deep.svelte", "")
            files = walk_files(tmp, {".svelte"}, max_depth=5)
        self.assertEqual([Path(f).name for f in files], ["a.svelte", "b.svelte"])

    def test_patterns_respect_extensions(self):
        with tempfile.TemporaryDirectory() as tmp:
            write(Path(tmp) / "notes.md", "export let foo;\n")
            issues = scan_for_patterns(tmp, get_rule("svelte", 4))
        self.assertEqual(issues, [])


if __name__ == "__main__":
    unittest.main()
