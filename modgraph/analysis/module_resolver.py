# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#      https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Module Resolver

Maps classes and files to the module that owns them, and classes back to
their source files. Ownership comes from PSR-4 autoload prefixes first
(longest prefix wins), then from the `Vendor\\Module` naming convention.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from modgraph.analysis import declarations
from modgraph.analysis.identity import (
    UNKNOWN_MODULE,
    file_id,
    module_id,
    module_id_from_class,
    module_id_from_path,
    normalize_fqcn,
)
from modgraph.analysis.models import Evidence, Module, ModuleKind
from modgraph.analysis.warnings import Extraction, WarningSink
from modgraph.utils.logging_config import get_logger

logger = get_logger(__name__)

_THEME_AREAS = ("frontend", "adminhtml")


class ModuleResolver:
    """Discovers modules under the scan roots and answers ownership queries."""

    def __init__(self, repo_root: Path, scopes: Iterable[str] = ()) -> None:
        """
        Initialize the resolver.

        Args:
            repo_root: Repository root
            scopes: Known scope names, used to record which overlays a module declares
        """
        self.repo_root = repo_root
        self.scopes = tuple(scopes)
        self.modules: dict[str, Module] = {}
        self._psr4_modules: list[tuple[str, str]] = []
        self._psr4_dirs: list[tuple[str, Path]] = []
        self._by_composer_name: dict[str, str] = {}
        self._class_cache: dict[str, str] = {}
        self.composer_manifests: dict[str, declarations.ComposerManifest] = {}
        self.sequence_evidence: dict[str, Evidence] = {}

    def build(self, scan_roots: Iterable[str]) -> Extraction[dict[str, Module]]:
        """
        Discover modules, packages and themes.

        Args:
            scan_roots: Repository-relative directories to scan

        Returns:
            Extraction of module ID -> Module
        """
        sink = WarningSink("module_resolver")
        roots = list(scan_roots)
        drafts: dict[str, dict] = {}
        self._psr4_modules = []
        self._psr4_dirs = []
        self._by_composer_name = {}
        self.composer_manifests = {}
        self.sequence_evidence = {}

        for path in declarations.find_files(self.repo_root, roots, "composer.json"):
            self._register_composer(path, drafts, sink)
        for path in declarations.find_files(self.repo_root, roots, "module.xml"):
            self._register_module_xml(path, drafts, sink)
        for path in declarations.find_files(self.repo_root, roots, "theme.xml"):
            self._register_theme(path, drafts, sink)

        self._psr4_modules.sort(key=lambda item: (-len(item[0]), item[0]))
        self._psr4_dirs.sort(key=lambda item: (-len(item[0]), item[0]))
        self._class_cache.clear()

        self.modules = {
            mid: Module(
                module_id=mid,
                kind=draft["kind"],
                path=draft["path"],
                sequence=tuple(draft["sequence"]),
                scopes=frozenset(self._declared_scopes(draft["path"])),
                composer_name=draft["composer_name"],
                namespaces=tuple(draft["namespaces"]),
            )
            for mid, draft in sorted(drafts.items())
        }
        logger.info(f"Discovered {len(self.modules)} modules")
        return sink.result(dict(self.modules))

    @staticmethod
    def _draft(drafts: dict[str, dict], mid: str, path: str, kind: ModuleKind) -> dict:
        if mid not in drafts:
            drafts[mid] = {
                "kind": kind,
                "path": path,
                "sequence": [],
                "composer_name": None,
                "namespaces": [],
            }
        return drafts[mid]

    def _register_composer(self, path: Path, drafts: dict[str, dict], sink: WarningSink) -> None:
        rel = file_id(path, self.repo_root)
        manifest = sink.absorb(declarations.parse_composer_json(path, rel))
        if manifest is None:
            return

        module_dir = path.parent
        for prefix, directory in manifest.psr4:
            self._psr4_dirs.append((prefix, module_dir / directory if directory else module_dir))

        rel_dir = rel.rsplit("/", 1)[0] if "/" in rel else ""
        mid = module_id_from_path(rel_dir + "/")
        kind = ModuleKind.MODULE
        if mid == UNKNOWN_MODULE and manifest.psr4:
            mid = module_id_from_class(manifest.psr4[0][0])
            kind = ModuleKind.PACKAGE
        if mid == UNKNOWN_MODULE:
            return

        draft = self._draft(drafts, mid, rel_dir, kind)
        draft["composer_name"] = manifest.name
        self.composer_manifests[mid] = manifest
        for prefix, _ in manifest.psr4:
            self._psr4_modules.append((prefix, mid))
            namespace = prefix.rstrip("\\")
            if namespace not in draft["namespaces"]:
                draft["namespaces"].append(namespace)
        if manifest.name:
            self._by_composer_name[manifest.name.lower()] = mid

    def _register_module_xml(self, path: Path, drafts: dict[str, dict], sink: WarningSink) -> None:
        # Only <module root>/etc/module.xml counts; scope overlays never hold one.
        if path.parent.name != "etc":
            return
        rel = file_id(path, self.repo_root)
        declaration = sink.absorb(declarations.parse_module_xml(path, rel))
        if declaration is None:
            return

        module_dir = rel.rsplit("/etc/", 1)[0]
        draft = self._draft(drafts, declaration.name, module_dir, ModuleKind.MODULE)
        draft["kind"] = ModuleKind.MODULE
        draft["path"] = module_dir
        draft["sequence"] = list(declaration.sequence)
        self.sequence_evidence[declaration.name] = declaration.evidence
        vendor_namespace = declaration.name.replace("_", "\\", 1)
        if vendor_namespace not in draft["namespaces"]:
            draft["namespaces"].append(vendor_namespace)

    def _register_theme(self, path: Path, drafts: dict[str, dict], sink: WarningSink) -> None:
        rel = file_id(path, self.repo_root)
        parts = rel.split("/")
        # app/design/<area>/<Vendor>/<theme>/theme.xml
        if len(parts) < 4 or parts[-4] not in _THEME_AREAS:
            return
        declaration = sink.absorb(declarations.parse_theme_xml(path, rel))
        if declaration is None:
            return

        mid = module_id(parts[-3], parts[-2])
        draft = self._draft(drafts, mid, "/".join(parts[:-1]), ModuleKind.THEME)
        if declaration.parent:
            vendor, _, name = declaration.parent.partition("/")
            if name:
                draft["sequence"] = [module_id(vendor, name)]
                self.sequence_evidence[mid] = declaration.evidence

    def _declared_scopes(self, module_path: str) -> list[str]:
        etc = self.repo_root / module_path / "etc"
        if not etc.is_dir():
            return []
        return [scope for scope in self.scopes if (etc / scope).is_dir()]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve_class(self, fqcn: str) -> str:
        """Module ID owning a class, or "unknown"."""
        normalized = normalize_fqcn(fqcn)
        cached = self._class_cache.get(normalized)
        if cached is not None:
            return cached

        result = None
        for prefix, mid in self._psr4_modules:
            if normalized.startswith(prefix):
                result = mid
                break
        if result is None:
            result = module_id_from_class(normalized)
        self._class_cache[normalized] = result
        return result

    def resolve_file(self, relative_path: str) -> str:
        """Module ID owning a repository-relative file, or "unknown"."""
        mid = module_id_from_path(relative_path)
        if mid != UNKNOWN_MODULE:
            return mid
        posix = relative_path.replace("\\", "/")
        best = None
        for module in self.modules.values():
            if module.path and posix.startswith(module.path.rstrip("/") + "/"):
                if best is None or len(module.path) > len(best.path):
                    best = module
        return best.module_id if best else UNKNOWN_MODULE

    def resolve_class_file(self, fqcn: str) -> Optional[Path]:
        """
        Locate a class's source file.

        Tries PSR-4 directories (longest prefix first), then the
        `app/code/Vendor/Module/...` convention.
        """
        normalized = normalize_fqcn(fqcn)
        for prefix, base_dir in self._psr4_dirs:
            if normalized.startswith(prefix):
                candidate = base_dir / (normalized[len(prefix):].replace("\\", "/") + ".php")
                if candidate.is_file():
                    return candidate
        candidate = self.repo_root / "app" / "code" / (normalized.replace("\\", "/") + ".php")
        if candidate.is_file():
            return candidate
        return None

    def module_for_package(self, composer_name: str) -> Optional[str]:
        return self._by_composer_name.get(composer_name.lower())

