import json
import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path so we can import our modules
sys.path.append(str(Path(__file__).parent.parent))

from depradar.project import detect_framework, detect_language, discover_projects, resolve_project


class TestProjectDiscovery(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def make(self, rel: str, filename: str, content: str = ""):
        path = self.root / rel
        path.mkdir(parents=True, exist_ok=True)
        (path / filename).write_text(content, encoding="utf-8")
        return path

    def test_discovery(self):
        self.make("site", "package.json", json.dumps({"dependencies": {"@sveltejs/kit": "^2.0.0", "svelte": "^4.0.0"}}))
        self.make("api", "requirements.txt", "fastapi==0.110.0\n")
        self.make("clients/cli", "Cargo.toml")
        self.make("site/packages/inner", "package.json", "{}")
        self.make(".hidden", "package.json", "{}")
        self.make("node_modules/dep", "package.json", "{}")
        self.make("a/b/too-deep", "go.mod")

        projects = discover_projects(str(self.root), max_depth=2)

        self.assertEqual([(p.name, p.language, p.framework) for p in projects], [
            ("api", "python", "FastAPI"),
            ("cli", "rust", None),
            ("site", "node", "SvelteKit"),
        ])

    def test_exclude(self):
        self.make("site", "package.json", "{}")
        self.make("scratch", "package.json", "{}")
        projects = discover_projects(str(self.root), exclude=["scratch"])
        self.assertEqual([p.name for p in projects], ["site"])

    def test_missing_root(self):
        self.assertEqual(discover_projects(str(self.root / "nope")), [])

    def test_language_marker_order(self):
        path = self.make("mixed", "package.json", "{}")
        (path / "requirements.txt").write_text("", encoding="utf-8")
        self.assertEqual(detect_language(path), "node")
        self.assertIsNone(detect_language(self.root))

    def test_framework_from_dev_dependencies(self):
        path = self.make("web", "package.json", json.dumps({"devDependencies": {"next": "14.1.0", "react": "18.2.0"}}))
        self.assertEqual(detect_framework(path, "node"), "Next.js")

    def test_dependencies_list_does_not_stop_discovery(self):
        self.make("broken", "package.json", json.dumps({"dependencies": ["svelte"]}))
        self.make("site", "package.json", json.dumps({"dependencies": {"svelte": "^4.0.0"}}))

        projects = discover_projects(str(self.root))

        self.assertEqual([(p.name, p.framework) for p in projects], [("broken", None), ("site", "Svelte")])

    def test_resolve_by_name_or_path(self):
        self.make("site", "package.json", "{}")
        projects = discover_projects(str(self.root))
        self.assertEqual(resolve_project("site", projects).name, "site")
        other = self.make("elsewhere/tool", "go.mod")
        resolved = resolve_project(str(other), projects)
        self.assertEqual((resolved.name, resolved.language), ("tool", "go"))
        self.assertIsNone(resolve_project("unknown", projects))


if __name__ == "__main__":
    unittest.main()
