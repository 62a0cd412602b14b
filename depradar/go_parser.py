"""
Go module inventory for depradar.
Reads go.sum (resolved module versions) and falls back to go.mod require blocks.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from .models import Package

logger = logging.getLogger(__name__)

GO_SUM_LINE = re.compile(r'^(\S+)\s+v(\S+)')
PSEUDO_VERSION = re.compile(r'\d+\.\d+\.\d+-(?:0\.)?\d{14}-[a-f0-9]{12}')


class GoModuleParser:
    """Parser for Go module files (go.sum preferred, go.mod as fallback)."""

    def __init__(self, project_path: str):
        self.go_mod_path = Path(project_path) / "go.mod"
        self.go_sum_path = Path(project_path) / "go.sum"
        self.packages: List[Package] = []
        self._seen = set()

    def parse(self) -> List[Package]:
        try:
            if self.go_sum_path.is_file():
                self._parse_go_sum()
            elif self.go_mod_path.is_file():
                self._parse_go_mod()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Error reading Go module files in {self.go_mod_path.parent}: {e}")
            return []
        return self.packages

    def _parse_go_sum(self):
        """Each module appears twice in go.sum (zip hash and /go.mod hash); first one wins."""
        with open(self.go_sum_path, 'r', encoding='utf-8') as f:
            for line in f:
                match = GO_SUM_LINE.match(line)
                if match:
                    version = match.group(2)
                    if version.endswith('/go.mod'):
                        version = version[:-len('/go.mod')]
                    self._add_module(match.group(1), version)

    def _parse_go_mod(self):
        with open(self.go_mod_path, 'r', encoding='utf-8') as f:
            content = f.read()

        # Single-line requires: require github.com/gin-gonic/gin v1.8.1
        for module_path, version in re.findall(r'^require\s+([^\s(]+)\s+v([^\s]+)', content, re.MULTILINE):
            self._add_module(module_path, version)

        for block in re.findall(r'require\s*\(\s*(.*?)\s*\)', content, re.DOTALL):
            for line in block.split('\n'):
                line = line.strip()
                if not line or line.startswith('//'):
                    continue
                parts = line.split()
                if len(parts) >= 2 and parts[1].startswith('v'):
                    self._add_module(parts[0], parts[1][1:])

    def _add_module(self, module_path: str, version: str):
        if module_path in self._seen:
            return
        self._seen.add(module_path)
        self.packages.append(Package(name=module_path, version=self._normalize_version(version), ecosystem="Go"))
        logger.debug(f"Added Go module: {module_path} {version}")

    @staticmethod
    def _normalize_version(version: str) -> str:
        # Pseudo-versions (0.0.0-20191109021931-daa7c04131f5) are kept as-is
        if PSEUDO_VERSION.match(version):
            return version
        if version.endswith('+incompatible'):
            version = version[:-len('+incompatible')]
        return version


def parse_go_packages(project_path: str, go_sum_path: Optional[str] = None) -> List[Package]:
    """
    Args:
        project_path: Directory holding go.mod / go.sum
        go_sum_path: Explicit go.sum location, if it lives elsewhere

    Returns:
        Go modules as Package objects, first occurrence per module
    """
    parser = GoModuleParser(project_path)
    if go_sum_path:
        parser.go_sum_path = Path(go_sum_path)
    return parser.parse()
