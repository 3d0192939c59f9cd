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
Plugin Seam Analyzer

Reconstructs the nested before/around/after execution order of every
intercepted method, flags risky hook bodies through pluggable
side-effect detectors, and scores each seam.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from modgraph.analysis.declarations import PluginDeclaration
from modgraph.analysis.identity import UNKNOWN_MODULE, class_id, file_id
from modgraph.analysis.models import (
    Evidence,
    ExecutionPhase,
    ExecutionStep,
    HookType,
    PluginEntry,
    PluginSeam,
    RiskLevel,
    Severity,
    SideEffect,
    SideEffectType,
)
from modgraph.analysis.module_resolver import ModuleResolver
from modgraph.analysis.resolution import ResolutionMap
from modgraph.analysis.source_scanner import MethodSource, SourceParseError, extract_methods
from modgraph.analysis.warnings import Extraction, WarningCategory, WarningSink
from modgraph.utils.logging_config import get_logger

logger = get_logger(__name__)

HOOK_NAME_PATTERN = r"(?:before|around|after)[A-Z_]\w*"
HEURISTIC_CONFIDENCE = 0.7
DEEP_CHAIN_THRESHOLD = 5

_STATE_MUTATION = re.compile(r"->\s*(save|delete|setData|setState|setStatus|addData|unsetData)\s*\(")
_RETURN = re.compile(r"\breturn\b\s*([^;]*);")
_HOOK_PREFIX = re.compile(r"^(before|around|after)(\w+)$")


@dataclass(frozen=True)
class HookMethod:
    """One interceptor method on a plugin class."""
    hook_type: HookType
    target_method: str
    source: MethodSource
    source_file: str

    @property
    def name(self) -> str:
        return self.source.name

    def param(self, index: int) -> Optional[str]:
        params = self.source.parameters
        return params[index] if len(params) > index else None

    def evidence(self, note: str) -> Evidence:
        return Evidence.from_php_ast(
            self.source_file, self.source.line, note=note, confidence=HEURISTIC_CONFIDENCE
        )


def discover_hooks(source: str, source_file: str) -> list[HookMethod]:
    """
    Find interceptor methods in a plugin class.

    `aroundSave` intercepts `save`: the hook suffix with its first letter
    lowercased names the target method.

    Raises:
        SourceParseError: If the source cannot be stripped of comments and strings
    """
    hooks: list[HookMethod] = []
    for method in extract_methods(source, HOOK_NAME_PATTERN):
        match = _HOOK_PREFIX.match(method.name)
        if not match:
            continue
        suffix = match.group(2)
        hooks.append(HookMethod(
            hook_type=HookType(match.group(1)),
            target_method=suffix[:1].lower() + suffix[1:],
            source=method,
            source_file=source_file,
        ))
    return hooks


def _split_args(text: str) -> list[str]:
    args: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        args.append(tail)
    return ["".join(arg.split()) for arg in args]


def _calls(body: str, variable: str) -> list[list[str]]:
    """Argument lists of every `$var(...)` call in a body."""
    calls: list[list[str]] = []
    for match in re.finditer(re.escape(variable) + r"\s*\(", body):
        depth = 0
        start = match.end()
        for j in range(match.end() - 1, len(body)):
            if body[j] == "(":
                depth += 1
            elif body[j] == ")":
                depth -= 1
                if depth == 0:
                    calls.append(_split_args(body[start:j]))
                    break
    return calls


def _mentions(body: str, variable: str) -> bool:
    return re.search(re.escape(variable) + r"(?!\w)", body) is not None


# ============================================================================
# SIDE-EFFECT DETECTORS
# ============================================================================

class SideEffectDetector(ABC):
    """One heuristic over hook bodies."""

    applies_to: frozenset[HookType] = frozenset()

    @abstractmethod
    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        ...

    def _effect(
        self,
        hook: HookMethod,
        plugin_class: str,
        effect_type: SideEffectType,
        severity: Severity,
        message: str
    ) -> SideEffect:
        return SideEffect(
            effect_type=effect_type,
            severity=severity,
            message=message,
            plugin_class=plugin_class,
            hook_type=hook.hook_type,
            target_method=hook.target_method,
            evidence=hook.evidence(f"{effect_type.value} in {hook.name}"),
        )


class SkipsWrappedCallDetector(SideEffectDetector):
    applies_to = frozenset({HookType.AROUND})

    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        proceed = hook.param(1)
        if proceed is not None and _mentions(hook.source.body, proceed):
            return []
        return [self._effect(
            hook, plugin_class, SideEffectType.SKIPS_WRAPPED_CALL, Severity.CRITICAL,
            f"Around plugin {hook.name} does NOT call $proceed; the original method is completely replaced",
        )]


class AroundArgumentRewriteDetector(SideEffectDetector):
    applies_to = frozenset({HookType.AROUND})

    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        proceed = hook.param(1)
        if proceed is None:
            return []
        forwarded = [
            "..." + name if spread else name
            for name, spread in zip(hook.source.parameters[2:], hook.source.variadic[2:])
        ]
        for args in _calls(hook.source.body, proceed):
            if args == forwarded:
                continue
            if args and all(arg.startswith("...$") for arg in args):
                continue
            return [self._effect(
                hook, plugin_class, SideEffectType.MODIFIES_ARGUMENTS, Severity.HIGH,
                f"Around plugin {hook.name} may pass different arguments to $proceed",
            )]
        return []


class BeforeArgumentRewriteDetector(SideEffectDetector):
    applies_to = frozenset({HookType.BEFORE})

    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        for expression in _RETURN.findall(hook.source.body):
            compact = "".join(expression.split()).lower()
            if compact.startswith("[") or compact.startswith("array("):
                return [self._effect(
                    hook, plugin_class, SideEffectType.MODIFIES_ARGUMENTS, Severity.MEDIUM,
                    f"Before plugin {hook.name} modifies method arguments",
                )]
        return []


class StateMutationDetector(SideEffectDetector):
    applies_to = frozenset({HookType.BEFORE, HookType.AROUND})

    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        if not _STATE_MUTATION.search(hook.source.body):
            return []
        if hook.hook_type == HookType.BEFORE:
            message = f"Before plugin {hook.name} performs state mutations before the original method"
        else:
            message = f"Around plugin {hook.name} performs state mutations (save/setData/etc.)"
        return [self._effect(hook, plugin_class, SideEffectType.MUTATES_STATE, Severity.HIGH, message)]


class AroundReturnRewriteDetector(SideEffectDetector):
    applies_to = frozenset({HookType.AROUND})

    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        proceed = hook.param(1)
        if proceed is None:
            return []
        body = hook.source.body
        results = set(re.findall(r"(\$\w+)\s*=\s*" + re.escape(proceed) + r"\s*\(", body))
        for expression in _RETURN.findall(body):
            compact = "".join(expression.split())
            if not compact or compact in results or compact.startswith(proceed + "("):
                continue
            return [self._effect(
                hook, plugin_class, SideEffectType.MODIFIES_RETURN, Severity.MEDIUM,
                f"Around plugin {hook.name} may modify the return value from $proceed",
            )]
        return []


class AfterReturnRewriteDetector(SideEffectDetector):
    applies_to = frozenset({HookType.AFTER})

    def detect(self, hook: HookMethod, plugin_class: str) -> list[SideEffect]:
        result = hook.param(1)
        for expression in _RETURN.findall(hook.source.body):
            if "".join(expression.split()) != result:
                return [self._effect(
                    hook, plugin_class, SideEffectType.MODIFIES_RETURN, Severity.MEDIUM,
                    f"After plugin {hook.name} modifies the return value",
                )]
        return []


DEFAULT_DETECTORS: tuple[SideEffectDetector, ...] = (
    SkipsWrappedCallDetector(),
    AroundArgumentRewriteDetector(),
    AroundReturnRewriteDetector(),
    StateMutationDetector(),
    BeforeArgumentRewriteDetector(),
    AfterReturnRewriteDetector(),
)


# ============================================================================
# ORDERING AND RISK
# ============================================================================

def build_execution_sequence(seam: PluginSeam) -> list[ExecutionStep]:
    """
    Nested execution order of one seam.

    Before hooks run in priority order; around hooks wrap the original
    call with the lowest sort order outermost, so their post-proceed code
    unwinds in reverse; after hooks run last.
    """
    steps: list[ExecutionStep] = []

    def add(phase: ExecutionPhase, entry: Optional[PluginEntry], note: str) -> None:
        steps.append(ExecutionStep(
            step=len(steps) + 1,
            phase=phase,
            plugin=entry.plugin_class if entry else None,
            sort_order=entry.sort_order if entry else None,
            note=note,
        ))

    for entry in seam.before:
        add(ExecutionPhase.BEFORE, entry, "Executes before the original method. Can modify arguments.")

    if seam.around:
        for index, entry in enumerate(seam.around):
            note = (
                "Outermost around plugin. Code before $proceed() runs first."
                if index == 0 else "Inner around plugin. Wrapped by lower sort-order plugins."
            )
            add(ExecutionPhase.AROUND_BEFORE_PROCEED, entry, note)
        add(ExecutionPhase.ORIGINAL_METHOD, None, "Original method executes (if all around plugins call $proceed).")
        for entry in reversed(seam.around):
            add(ExecutionPhase.AROUND_AFTER_PROCEED, entry, "Code after $proceed() in around plugin.")
    else:
        add(ExecutionPhase.ORIGINAL_METHOD, None, "Original method executes (no around plugins).")

    for entry in seam.after:
        add(ExecutionPhase.AFTER, entry, "Executes after the original method. Can modify return value.")
    return steps


def score_seam(seam: PluginSeam) -> tuple[float, RiskLevel, list[dict[str, str]]]:
    """Risk score, level and recommendations for one seam."""
    score = 0.0
    recommendations: list[dict[str, str]] = []
    effects = seam.side_effects

    if len(seam.around) > 1:
        score += 0.4
        recommendations.append({
            "type": "warning",
            "message": "Multiple around plugins on this method. The execution order depends on sort_order. "
                       "Prefer before/after plugins when possible to avoid $proceed chain complexity.",
        })
    if seam.around:
        score += 0.2
        recommendations.append({
            "type": "caution",
            "message": "Around plugin(s) present. New plugins should use before/after hooks "
                       "unless you need to conditionally prevent the original method from executing.",
        })

    critical = [e for e in effects if e.severity == Severity.CRITICAL]
    if critical:
        score += 0.3
        recommendations.extend({"type": "critical", "message": e.message} for e in critical)

    score += 0.1 * sum(1 for e in effects if e.severity == Severity.HIGH)

    if seam.total_plugins > DEEP_CHAIN_THRESHOLD:
        score += 0.2
        recommendations.append({
            "type": "warning",
            "message": f"Deep plugin chain ({seam.total_plugins} plugins). "
                       "Consider whether a preference override would be simpler and safer.",
        })

    if seam.around:
        recommendations.append({
            "type": "recommendation",
            "message": "Around plugin(s) already present. A before-plugin is safest for pre-processing. "
                       "An after-plugin works for post-processing but receives the around-modified return value.",
        })
    else:
        recommendations.append({
            "type": "recommendation",
            "message": "No around plugins present. Safe to add before/after plugins. "
                       "Use before to modify arguments, after to modify return value.",
        })

    score = round(max(0.0, min(1.0, score)), 3)
    if score >= 0.6:
        level = RiskLevel.HIGH
    elif score >= 0.3:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return score, level, recommendations


# ============================================================================
# ANALYZER
# ============================================================================

@dataclass
class PluginSeamReport:
    seams: list[PluginSeam] = field(default_factory=list)
    declarations: list[PluginDeclaration] = field(default_factory=list)
    hooks_by_plugin: dict[str, list[HookMethod]] = field(default_factory=dict)

    @property
    def high_risk_seams(self) -> list[PluginSeam]:
        risky = [s for s in self.seams if s.risk_level != RiskLevel.LOW]
        return sorted(risky, key=lambda s: (-s.risk_score, s.seam_id))

    def _plugins_with(self, hook_type: HookType) -> int:
        return sum(
            1 for hooks in self.hooks_by_plugin.values()
            if any(h.hook_type == hook_type for h in hooks)
        )

    def to_dict(self) -> dict[str, Any]:
        enabled = [d for d in self.declarations if not d.disabled]
        by_module: dict[str, int] = defaultdict(int)
        for declaration in enabled:
            by_module[declaration.module] += 1
        return {
            "seams": [s.to_dict() for s in self.seams],
            "high_risk_seams": [
                {
                    "seam_id": s.seam_id,
                    "risk_score": s.risk_score,
                    "risk_level": s.risk_level.value,
                    "total_plugins": s.total_plugins,
                }
                for s in self.high_risk_seams
            ],
            "summary": {
                "total_seams": len(self.seams),
                "total_plugin_declarations": len(enabled),
                "disabled_plugins": len(self.declarations) - len(enabled),
                "plugins_with_around": self._plugins_with(HookType.AROUND),
                "plugins_with_before": self._plugins_with(HookType.BEFORE),
                "plugins_with_after": self._plugins_with(HookType.AFTER),
                "high_risk_seams": len(self.high_risk_seams),
                "by_module": dict(sorted(by_module.items())),
            },
        }


class PluginSeamAnalyzer:
    """Groups plugin hooks into seams and scores them."""

    def __init__(
        self,
        repo_root: Path,
        resolver: ModuleResolver,
        resolution_map: Optional[ResolutionMap] = None,
        global_scope: str = "global",
        detectors: Sequence[SideEffectDetector] = DEFAULT_DETECTORS,
        virtual_types: Optional[ResolutionMap] = None
    ) -> None:
        self.repo_root = repo_root
        self.resolver = resolver
        self.resolution_map = resolution_map
        self.virtual_types = virtual_types
        self.global_scope = global_scope
        self.detectors = tuple(detectors)

    def resolve_target(self, target: str, scope: str) -> str:
        """
        Declared plugin target followed through the scope's overrides.

        Preferences are checked before virtual types, the declaring scope
        before the global baseline.
        """
        maps = [m for m in (self.resolution_map, self.virtual_types) if m is not None]
        for lookup_scope in (scope, self.global_scope):
            for resolution_map in maps:
                final = resolution_map.final_type(target, lookup_scope)
                if final:
                    return final
        return target

    def load_hooks(self, plugin_class: str, sink: WarningSink) -> list[HookMethod]:
        path = self.resolver.resolve_class_file(plugin_class)
        if path is None:
            sink.add(WarningCategory.UNRESOLVED_CLASS, f"Plugin class {plugin_class} has no source file", plugin_class)
            return []
        rel = file_id(path, self.repo_root)
        try:
            return discover_hooks(path.read_text(encoding="utf-8", errors="replace"), rel)
        except (OSError, SourceParseError) as e:
            sink.add(WarningCategory.PARSE_FAILURE, f"Could not read plugin {plugin_class}: {e}", rel)
            return []

    def analyze(self, declarations: Iterable[PluginDeclaration]) -> Extraction[PluginSeamReport]:
        """
        Build seams from plugin declarations.

        Args:
            declarations: Every plugin declaration, disabled ones included

        Returns:
            Extraction of the PluginSeamReport, seams sorted by seam id
        """
        sink = WarningSink("plugin_seams")
        report = PluginSeamReport(declarations=list(declarations))
        seams: dict[tuple[str, str], PluginSeam] = {}

        for declaration in report.declarations:
            if declaration.disabled:
                continue
            key = class_id(declaration.plugin_class)
            if key not in report.hooks_by_plugin:
                report.hooks_by_plugin[key] = self.load_hooks(declaration.plugin_class, sink)
            hooks = report.hooks_by_plugin[key]

            resolved = self.resolve_target(declaration.target, declaration.scope)
            target_module = self.resolver.resolve_class(resolved)
            cross_module = target_module not in (UNKNOWN_MODULE, declaration.module)

            for hook in hooks:
                effects = tuple(
                    effect
                    for detector in self.detectors
                    if hook.hook_type in detector.applies_to
                    for effect in detector.detect(hook, declaration.plugin_class)
                )
                entry = PluginEntry(
                    plugin_class=declaration.plugin_class,
                    plugin_name=declaration.name,
                    hook_type=hook.hook_type,
                    method=hook.name,
                    sort_order=declaration.sort_order,
                    scope=declaration.scope,
                    module=declaration.module,
                    declared_target=declaration.target,
                    cross_module=cross_module,
                    side_effects=effects,
                    evidence=(declaration.evidence, hook.evidence(f"{hook.hook_type.value} hook {hook.name}")),
                )
                seam_key = (class_id(resolved), hook.target_method)
                seam = seams.get(seam_key)
                if seam is None:
                    seam = seams[seam_key] = PluginSeam(target_class=resolved, target_method=hook.target_method)
                getattr(seam, hook.hook_type.value).append(entry)
                if declaration.target not in seam.declared_targets:
                    seam.declared_targets.append(declaration.target)

        for seam in seams.values():
            seam.before.sort(key=lambda e: e.priority_key)
            seam.around.sort(key=lambda e: e.priority_key)
            seam.after.sort(key=lambda e: e.priority_key)
            seam.declared_targets.sort()
            seam.execution_sequence = build_execution_sequence(seam)
            seam.risk_score, seam.risk_level, seam.recommendations = score_seam(seam)

        report.seams = sorted(seams.values(), key=lambda s: s.seam_id)
        logger.info(f"Analyzed {len(report.seams)} plugin seams")
        return sink.result(report)
