# codestream/dependency_collector.py
import logging
import re
from typing import Iterable, List

from codestream.events import ProgressReporter
from codestream.record_extractor import Record

logger = logging.getLogger("codestream")

# import x from 'pkg' / import { a, b } from "pkg" / import * as x from 'pkg' / import 'pkg'
IMPORT_RE = re.compile(
    r"import\s+(?:(?:\{[^}]*\}|\*\s+as\s+\w+|\w+)(?:\s*,\s*(?:\{[^}]*\}|\*\s+as\s+\w+|\w+))*\s+from\s+)?['\"]([^'\"]+)['\"]"
)
PACKAGE_LIST_SPLIT_RE = re.compile(r"[\n,]+")


def split_package_list(payload: str) -> List[str]:
    return [p.strip() for p in PACKAGE_LIST_SPLIT_RE.split(payload or "") if p.strip()]


def package_identity(import_path: str) -> str:
    """
    '@scope/name/sub' -> '@scope/name', 'name/sub' -> 'name'
    """
    parts = import_path.split("/")
    if import_path.startswith("@"):
        return "/".join(parts[:2])
    return parts[0]


def extract_import_packages(
    content: str,
    host_modules: Iterable[str] = ("react", "react-dom"),
    alias_prefixes: Iterable[str] = ("@/",),
) -> List[str]:
    host = set(host_modules)
    aliases = tuple(alias_prefixes)
    packages: List[str] = []

    for m in IMPORT_RE.finditer(content or ""):
        import_path = m.group(1).strip()
        if not import_path or import_path.startswith((".", "/")):
            continue
        if import_path in host:
            continue
        if aliases and import_path.startswith(aliases):
            continue
        name = package_identity(import_path)
        if name not in host and name not in packages:
            packages.append(name)
    return packages


class DependencyCollector:
    """
    De-duplicated set of external packages the generated code needs.

    Disabled for fresh generations: the initial build uses only the host runtime,
    so nothing is collected and no events are emitted.
    """

    def __init__(
        self,
        reporter: ProgressReporter | None = None,
        *,
        enabled: bool = True,
        host_modules: Iterable[str] = ("react", "react-dom"),
        alias_prefixes: Iterable[str] = ("@/",),
    ):
        self.reporter = reporter
        self.enabled = enabled
        self.host_modules = tuple(host_modules)
        self.alias_prefixes = tuple(alias_prefixes)
        self._packages: List[str] = []

    @property
    def packages(self) -> List[str]:
        return list(self._packages)

    def record_dependency(self, name: str, source: str = "directive") -> bool:
        name = (name or "").strip()
        if not self.enabled or not name or name in self._packages:
            return False

        self._packages.append(name)
        if source == "import":
            message = f"Package detected from imports: {name}"
        else:
            message = f"Package detected: {name}"
        logger.info(message)
        if self.reporter is not None:
            self.reporter.emit("package", name=name, message=message)
        return True

    def collect_from_record(self, record: Record) -> List[str]:
        """
        Route one extracted record: dependency directives are recorded as-is,
        file payloads are searched for import references.
        """
        if not self.enabled:
            return []

        if record.kind == "package":
            names = [record.payload]
            source = "directive"
        elif record.kind == "packages":
            names = split_package_list(record.payload)
            source = "directive"
        elif record.kind == "file":
            names = extract_import_packages(record.payload, self.host_modules, self.alias_prefixes)
            source = "import"
        else:
            return []

        return [n for n in names if self.record_dependency(n, source=source)]

    def collect_from_payload(self, payload: str) -> List[str]:
        if not self.enabled:
            return []
        names = extract_import_packages(payload, self.host_modules, self.alias_prefixes)
        return [n for n in names if self.record_dependency(n, source="import")]
