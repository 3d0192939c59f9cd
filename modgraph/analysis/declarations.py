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
Declaration Parsers

Typed records for everything the analyzed application declares in its
configuration files, and the parsers that produce them. Records are
validated here, at the parse boundary, so downstream analyzers never
handle raw XML or JSON.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from defusedxml import DefusedXmlException, ElementTree

from modgraph.analysis.identity import UNKNOWN_MODULE, normalize_fqcn
from modgraph.analysis.models import Evidence, EvidenceKind
from modgraph.analysis.warnings import Extraction, WarningCategory, WarningSink

GLOBAL_SCOPE = "global"
EXCLUDED_DIRS = frozenset({"Test", "tests", "node_modules", ".git"})

_SCOPE_PATTERN = re.compile(r"/etc/([^/]+)/[^/]+$")
_GRAPHQL_RESOLVER = re.compile(r'@resolver\s*\(\s*class\s*:\s*"([^"]+)"')
_GRAPHQL_FIELD = re.compile(r"^\s*(\w+)\s*(?:\([^)]*\))?\s*:")


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class ModuleDeclaration:
    """`etc/module.xml`: a module's name and its load-order dependencies."""
    name: str
    sequence: tuple[str, ...]
    evidence: Evidence


@dataclass(frozen=True)
class ComposerManifest:
    name: Optional[str]
    requires: tuple[str, ...]
    psr4: tuple[tuple[str, str], ...]
    evidence: Evidence


@dataclass(frozen=True)
class ThemeDeclaration:
    title: str
    parent: Optional[str]
    evidence: Evidence


@dataclass(frozen=True)
class OverrideDeclaration:
    """A `<preference>` or `<virtualType>` binding in one scope."""
    target: str
    replacement: str
    scope: str
    module: str
    evidence: Evidence
    virtual: bool = False


@dataclass(frozen=True)
class PluginDeclaration:
    target: str
    plugin_class: str
    name: str
    sort_order: Optional[int]
    disabled: bool
    scope: str
    module: str
    evidence: Evidence


@dataclass(frozen=True)
class ObserverDeclaration:
    event: str
    name: str
    instance: str
    disabled: bool
    scope: str
    module: str
    evidence: Evidence


@dataclass(frozen=True)
class EntryPointDeclaration:
    """A request, job or resolver entry whose declared type gets resolved."""
    entry: str
    entry_kind: str
    declared_type: str
    method: Optional[str]
    scope: str
    module: str
    evidence: Evidence


@dataclass
class DiDeclarations:
    """Everything one `di.xml` declares."""
    preferences: list[OverrideDeclaration] = field(default_factory=list)
    virtual_types: list[OverrideDeclaration] = field(default_factory=list)
    plugins: list[PluginDeclaration] = field(default_factory=list)


# ============================================================================
# FILE DISCOVERY
# ============================================================================

def find_files(
    repo_root: Path,
    scan_roots: Iterable[str],
    pattern: str,
    exclude_dirs: frozenset[str] = EXCLUDED_DIRS
) -> list[Path]:
    """
    Enumerate files matching a glob pattern under every existing scan root.

    Args:
        repo_root: Repository root
        scan_roots: Repository-relative directories to search
        pattern: Filename glob, e.g. "di.xml" or "*.php"
        exclude_dirs: Directory names whose subtrees are skipped

    Returns:
        Sorted, de-duplicated list of absolute paths
    """
    found: set[Path] = set()
    for scan_root in scan_roots:
        base = repo_root / scan_root
        if not base.is_dir():
            continue
        for path in base.rglob(pattern):
            relative_parts = path.relative_to(base).parts[:-1]
            if any(part in exclude_dirs for part in relative_parts):
                continue
            if path.is_file():
                found.add(path)
    return sorted(found, key=lambda p: p.as_posix())


def detect_scope(relative_path: str, scopes: Iterable[str] = ()) -> str:
    """
    Scope a declaration file applies to.

    `etc/di.xml` is global; `etc/<scope>/di.xml` is an overlay for <scope>.
    Unknown overlay directories fall back to global when a scope list is given.
    """
    match = _SCOPE_PATTERN.search(relative_path.replace("\\", "/"))
    if not match:
        return GLOBAL_SCOPE
    scope = match.group(1)
    known = list(scopes)
    if known and scope not in known:
        return GLOBAL_SCOPE
    return scope


def _line_of(text: str, needle: str) -> Optional[int]:
    index = text.find(needle)
    if index < 0:
        return None
    return text.count("\n", 0, index) + 1


def _xml_evidence(source_file: str, text: str, needle: str, note: str) -> Evidence:
    line = _line_of(text, needle) if needle else None
    if line is None:
        return Evidence.from_xml(source_file, note=note)
    return Evidence(EvidenceKind.XML, source_file, line, line, note)


def _load_xml(path: Path, source_file: str, sink: WarningSink):
    """Parse an XML file; returns (root, text) or (None, "") after a warning."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
        root = ElementTree.fromstring(text)
    except (OSError, ElementTree.ParseError, DefusedXmlException) as e:
        sink.add(WarningCategory.INVALID_XML, f"Could not parse XML: {e}", source_file)
        return None, ""
    return root, text


def _parse_sort_order(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1")


# ============================================================================
# MODULE / PACKAGE / THEME MANIFESTS
# ============================================================================

def parse_module_xml(path: Path, source_file: str) -> Extraction[Optional[ModuleDeclaration]]:
    sink = WarningSink("module_xml")
    root, text = _load_xml(path, source_file, sink)
    if root is None:
        return sink.result(None)

    node = root.find("module")
    name = node.get("name", "").strip() if node is not None else ""
    if not name:
        sink.add(WarningCategory.INVALID_XML, "module.xml declares no <module name>", source_file)
        return sink.result(None)

    sequence = tuple(
        child.get("name", "").strip()
        for child in node.findall("sequence/module")
        if child.get("name", "").strip()
    )
    evidence = _xml_evidence(source_file, text, f'name="{name}"', f"module {name}")
    return sink.result(ModuleDeclaration(name, sequence, evidence))


def parse_composer_json(path: Path, source_file: str) -> Extraction[Optional[ComposerManifest]]:
    sink = WarningSink("composer_json")
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except (OSError, json.JSONDecodeError) as e:
        sink.add(WarningCategory.PARSE_FAILURE, f"Could not parse composer.json: {e}", source_file)
        return sink.result(None)
    if not isinstance(data, dict):
        sink.add(WarningCategory.PARSE_FAILURE, "composer.json is not an object", source_file)
        return sink.result(None)

    require = data.get("require") or {}
    requires = tuple(sorted(str(k) for k in require)) if isinstance(require, dict) else ()

    psr4: list[tuple[str, str]] = []
    autoload = (data.get("autoload") or {}).get("psr-4") or {}
    if isinstance(autoload, dict):
        for prefix, dirs in autoload.items():
            directory = dirs[0] if isinstance(dirs, list) and dirs else dirs
            if not isinstance(directory, str):
                directory = ""
            psr4.append((normalize_fqcn(prefix).rstrip("\\") + "\\", directory.rstrip("/")))

    name = data.get("name") if isinstance(data.get("name"), str) else None
    evidence = Evidence.from_composer(source_file, note=f"package {name}" if name else "")
    return sink.result(ComposerManifest(name, requires, tuple(psr4), evidence))


def parse_theme_xml(path: Path, source_file: str) -> Extraction[Optional[ThemeDeclaration]]:
    sink = WarningSink("theme_xml")
    root, text = _load_xml(path, source_file, sink)
    if root is None:
        return sink.result(None)

    title = (root.findtext("title") or "").strip()
    parent = (root.findtext("parent") or "").strip() or None
    evidence = _xml_evidence(source_file, text, "<parent>" if parent else "", f"theme {title}")
    return sink.result(ThemeDeclaration(title, parent, evidence))


# ============================================================================
# DI / EVENTS
# ============================================================================

def parse_di_xml(
    path: Path,
    source_file: str,
    scope: str,
    module: str
) -> Extraction[DiDeclarations]:
    """
    Parse preferences, virtual types and plugins from one `di.xml`.

    Elements missing a required attribute are skipped with a warning;
    the rest of the file is still used.
    """
    sink = WarningSink("di_xml")
    result = DiDeclarations()
    root, text = _load_xml(path, source_file, sink)
    if root is None:
        return sink.result(result)

    for node in root.iter("preference"):
        target = normalize_fqcn(node.get("for", ""))
        replacement = normalize_fqcn(node.get("type", ""))
        if not target or not replacement:
            sink.add(WarningCategory.INVALID_XML, "<preference> without for/type", source_file)
            continue
        result.preferences.append(OverrideDeclaration(
            target=target,
            replacement=replacement,
            scope=scope,
            module=module,
            evidence=_xml_evidence(
                source_file, text, f'for="{node.get("for", "")}"', f"preference {target} -> {replacement}"
            ),
        ))

    for node in root.iter("virtualType"):
        name = normalize_fqcn(node.get("name", ""))
        base = normalize_fqcn(node.get("type", ""))
        if not name or not base:
            sink.add(WarningCategory.INVALID_XML, "<virtualType> without name/type", source_file)
            continue
        result.virtual_types.append(OverrideDeclaration(
            target=name,
            replacement=base,
            scope=scope,
            module=module,
            evidence=_xml_evidence(
                source_file, text, f'name="{node.get("name", "")}"', f"virtualType {name} of {base}"
            ),
            virtual=True,
        ))

    for type_node in root.iter("type"):
        target = normalize_fqcn(type_node.get("name", ""))
        for node in type_node.findall("plugin"):
            plugin_name = node.get("name", "").strip()
            plugin_class = normalize_fqcn(node.get("type", ""))
            disabled = _is_true(node.get("disabled"))
            if not target or not plugin_name:
                sink.add(WarningCategory.INVALID_XML, "<plugin> without target or name", source_file)
                continue
            if not plugin_class and not disabled:
                sink.add(
                    WarningCategory.INVALID_XML,
                    f"plugin '{plugin_name}' on {target} has no type",
                    source_file,
                )
                continue
            result.plugins.append(PluginDeclaration(
                target=target,
                plugin_class=plugin_class,
                name=plugin_name,
                sort_order=_parse_sort_order(node.get("sortOrder")),
                disabled=disabled,
                scope=scope,
                module=module,
                evidence=_xml_evidence(
                    source_file, text, f'name="{plugin_name}"', f"plugin {plugin_name} on {target}"
                ),
            ))

    return sink.result(result)


def parse_events_xml(
    path: Path,
    source_file: str,
    scope: str,
    module: str
) -> Extraction[list[ObserverDeclaration]]:
    sink = WarningSink("events_xml")
    observers: list[ObserverDeclaration] = []
    root, text = _load_xml(path, source_file, sink)
    if root is None:
        return sink.result(observers)

    for event_node in root.iter("event"):
        event = event_node.get("name", "").strip()
        for node in event_node.findall("observer"):
            name = node.get("name", "").strip()
            instance = normalize_fqcn(node.get("instance", ""))
            disabled = _is_true(node.get("disabled"))
            if not event or not name or (not instance and not disabled):
                sink.add(WarningCategory.INVALID_XML, "<observer> missing name/instance", source_file)
                continue
            observers.append(ObserverDeclaration(
                event=event,
                name=name,
                instance=instance,
                disabled=disabled,
                scope=scope,
                module=module,
                evidence=_xml_evidence(
                    source_file, text, f'name="{name}"', f"observer {name} on {event}"
                ),
            ))

    return sink.result(observers)


# ============================================================================
# ENTRY POINTS
# ============================================================================

def parse_webapi_xml(path: Path, source_file: str, module: str) -> Extraction[list[EntryPointDeclaration]]:
    sink = WarningSink("webapi_xml")
    entries: list[EntryPointDeclaration] = []
    root, text = _load_xml(path, source_file, sink)
    if root is None:
        return sink.result(entries)

    for route in root.iter("route"):
        service = route.find("service")
        if service is None or not service.get("class"):
            continue
        declared = normalize_fqcn(service.get("class", ""))
        url = route.get("url", "")
        http_method = route.get("method", "GET").upper()
        entries.append(EntryPointDeclaration(
            entry=f"{http_method} {url}",
            entry_kind="webapi_route",
            declared_type=declared,
            method=service.get("method") or None,
            scope="webapi_rest",
            module=module,
            evidence=_xml_evidence(source_file, text, f'url="{url}"', f"route {http_method} {url}"),
        ))
    return sink.result(entries)


def parse_crontab_xml(path: Path, source_file: str, module: str) -> Extraction[list[EntryPointDeclaration]]:
    sink = WarningSink("crontab_xml")
    entries: list[EntryPointDeclaration] = []
    root, text = _load_xml(path, source_file, sink)
    if root is None:
        return sink.result(entries)

    for job in root.iter("job"):
        name = job.get("name", "").strip()
        instance = normalize_fqcn(job.get("instance", ""))
        if not name or not instance:
            continue
        entries.append(EntryPointDeclaration(
            entry=name,
            entry_kind="cron_job",
            declared_type=instance,
            method=job.get("method") or None,
            scope="crontab",
            module=module,
            evidence=_xml_evidence(source_file, text, f'name="{name}"', f"cron job {name}"),
        ))
    return sink.result(entries)


def parse_graphql_schema(path: Path, source_file: str, module: str) -> Extraction[list[EntryPointDeclaration]]:
    """Field resolvers from `@resolver(class: "...")` directives."""
    sink = WarningSink("graphql_schema")
    entries: list[EntryPointDeclaration] = []
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        sink.add(WarningCategory.PARSE_FAILURE, f"Could not read schema: {e}", source_file)
        return sink.result(entries)

    for line_no, line in enumerate(text.splitlines(), 1):
        match = _GRAPHQL_RESOLVER.search(line)
        if not match:
            continue
        declared = normalize_fqcn(match.group(1).replace("\\\\", "\\"))
        field_match = _GRAPHQL_FIELD.match(line)
        field_name = field_match.group(1) if field_match else declared
        entries.append(EntryPointDeclaration(
            entry=field_name,
            entry_kind="graphql_resolver",
            declared_type=declared,
            method="resolve",
            scope="graphql",
            module=module,
            evidence=Evidence(
                EvidenceKind.XML,
                source_file,
                line_no,
                line_no,
                f"resolver for {field_name}",
            ),
        ))
    return sink.result(entries)


# ============================================================================
# COLLECTION
# ============================================================================

@dataclass
class DeclarationIndex:
    """Every declaration found under the scan roots, in file order."""
    preferences: list[OverrideDeclaration] = field(default_factory=list)
    virtual_types: list[OverrideDeclaration] = field(default_factory=list)
    plugins: list[PluginDeclaration] = field(default_factory=list)
    observers: list[ObserverDeclaration] = field(default_factory=list)
    entry_points: list[EntryPointDeclaration] = field(default_factory=list)
    files_parsed: int = 0


def _controller_entry(relative_path: str, module: str) -> Optional[EntryPointDeclaration]:
    parts = relative_path.split("/")
    if len(parts) < 6 or parts[:2] != ["app", "code"] or parts[4] != "Controller":
        return None
    fqcn = "\\".join(parts[2:])[:-len(".php")]
    scope = "adminhtml" if len(parts) > 6 and parts[5] == "Adminhtml" else "frontend"
    return EntryPointDeclaration(
        entry="/".join(parts[5:])[:-len(".php")],
        entry_kind="controller",
        declared_type=fqcn,
        method="execute",
        scope=scope,
        module=module,
        evidence=Evidence.from_filesystem(relative_path, note=f"controller {fqcn}"),
    )


def collect_declarations(
    repo_root: Path,
    scan_roots: Iterable[str],
    module_of_file: Callable[[str], str],
    scopes: Iterable[str] = ()
) -> Extraction[DeclarationIndex]:
    """
    Parse every declaration file under the scan roots.

    Args:
        repo_root: Repository root
        scan_roots: Repository-relative directories to scan
        module_of_file: Maps a repository-relative path to its owning module ID
        scopes: Known scope names for overlay detection

    Returns:
        Extraction of the DeclarationIndex
    """
    sink = WarningSink("declarations")
    index = DeclarationIndex()
    roots = list(scan_roots)
    known_scopes = list(scopes)

    def owned(path: Path) -> Optional[tuple[str, str]]:
        rel = path.relative_to(repo_root).as_posix()
        module = module_of_file(rel)
        if module == UNKNOWN_MODULE:
            sink.add(WarningCategory.UNRESOLVED_FILE, "Declaration file outside any module", rel)
            return None
        return rel, module

    for path in find_files(repo_root, roots, "di.xml"):
        located = owned(path)
        if located is None:
            continue
        rel, module = located
        di = sink.absorb(parse_di_xml(path, rel, detect_scope(rel, known_scopes), module))
        index.preferences.extend(di.preferences)
        index.virtual_types.extend(di.virtual_types)
        index.plugins.extend(di.plugins)
        index.files_parsed += 1

    for path in find_files(repo_root, roots, "events.xml"):
        located = owned(path)
        if located is None:
            continue
        rel, module = located
        index.observers.extend(
            sink.absorb(parse_events_xml(path, rel, detect_scope(rel, known_scopes), module))
        )
        index.files_parsed += 1

    entry_parsers = (
        ("webapi.xml", parse_webapi_xml),
        ("crontab.xml", parse_crontab_xml),
        ("schema.graphqls", parse_graphql_schema),
    )
    for pattern, parser in entry_parsers:
        for path in find_files(repo_root, roots, pattern):
            located = owned(path)
            if located is None:
                continue
            rel, module = located
            index.entry_points.extend(sink.absorb(parser(path, rel, module)))
            index.files_parsed += 1

    for path in find_files(repo_root, roots, "*.php"):
        rel = path.relative_to(repo_root).as_posix()
        if "/Controller/" not in rel:
            continue
        module = module_of_file(rel)
        entry = _controller_entry(rel, module) if module != UNKNOWN_MODULE else None
        if entry is not None:
            index.entry_points.append(entry)

    return sink.result(index)
