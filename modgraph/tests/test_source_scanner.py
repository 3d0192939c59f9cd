"""
Tests for the PHP source scanner and the usage visitor.
"""

import pytest

from modgraph.analysis.source_scanner import (
    SourceParseError,
    UsageKind,
    UsageNode,
    UsageVisitor,
    extract_methods,
    scan_source,
    strip_comments_and_strings,
)


SAMPLE = """<?php
namespace Acme\\Sales\\Model;

use Acme\\Core\\Api\\OrderInterface;
use Acme\\Core\\Model\\{Repository, Logger as Log};
use function Acme\\Core\\helper;

/**
 * new \\Acme\\Ignored\\InDocblock()
 */
class Order extends AbstractOrder implements OrderInterface
{
    use \\Acme\\Core\\Traits\\Timestamps;

    private Repository $repository;

    public function __construct(Log $log, ?Repository $repository = null)
    {
        $label = "new \\Acme\\Ignored\\InString()";
    }

    public function place(): OrderInterface
    {
        try {
            $total = \\Acme\\Pricing\\Calculator::total($this);
            $result = new Repository();
        } catch (\\Acme\\Core\\Exception\\PlaceException $e) {
            return $this;
        }
        if ($result instanceof OrderInterface) {
            return $result;
        }
        throw new \\RuntimeException('failed');
    }
}
"""


class TestScanSource:
    """Tests for usage extraction."""

    @pytest.fixture
    def usages(self) -> list[UsageNode]:
        return list(scan_source(SAMPLE).usages)

    def _names(self, usages: list[UsageNode], kind: UsageKind) -> list[str]:
        return [u.name for u in usages if u.kind == kind]

    def test_namespace_and_declared_class(self) -> None:
        scan = scan_source(SAMPLE)
        assert scan.namespace == "Acme\\Sales\\Model"
        assert scan.declared_classes == ("Acme\\Sales\\Model\\Order",)

    def test_inheritance_resolves_through_namespace_and_imports(self, usages) -> None:
        assert self._names(usages, UsageKind.EXTENDS) == ["Acme\\Sales\\Model\\AbstractOrder"]
        assert self._names(usages, UsageKind.IMPLEMENTS) == ["Acme\\Core\\Api\\OrderInterface"]

    def test_group_and_aliased_imports(self, usages) -> None:
        assert "Acme\\Core\\Model\\Logger" in self._names(usages, UsageKind.PARAM_TYPE)
        assert "Acme\\Core\\Model\\Repository" in self._names(usages, UsageKind.PARAM_TYPE)
        assert self._names(usages, UsageKind.NEW) == ["Acme\\Core\\Model\\Repository"]

    def test_trait_property_return_catch_static_instanceof(self, usages) -> None:
        assert self._names(usages, UsageKind.TRAIT_USE) == ["Acme\\Core\\Traits\\Timestamps"]
        assert self._names(usages, UsageKind.PROPERTY_TYPE) == ["Acme\\Core\\Model\\Repository"]
        assert self._names(usages, UsageKind.RETURN_TYPE) == ["Acme\\Core\\Api\\OrderInterface"]
        assert self._names(usages, UsageKind.CATCH) == ["Acme\\Core\\Exception\\PlaceException"]
        assert self._names(usages, UsageKind.STATIC_ACCESS) == ["Acme\\Pricing\\Calculator"]
        assert self._names(usages, UsageKind.INSTANCEOF) == ["Acme\\Core\\Api\\OrderInterface"]

    def test_imports_alone_are_not_usages(self, usages) -> None:
        names = {u.name for u in usages}
        assert "Acme\\Core\\helper" not in names

    def test_comments_and_strings_are_ignored(self, usages) -> None:
        assert not any("Ignored" in u.name for u in usages)

    def test_builtins_are_ignored(self, usages) -> None:
        assert not any(u.name.lower().endswith("runtimeexception") for u in usages)

    def test_line_numbers_survive_stripping(self, usages) -> None:
        new_node = next(u for u in usages if u.kind == UsageKind.NEW)
        assert SAMPLE.splitlines()[new_node.line - 1].strip() == "$result = new Repository();"

    def test_unbalanced_braces_raise(self) -> None:
        with pytest.raises(SourceParseError):
            scan_source("<?php class A { public function b() { }")

    def test_unterminated_string_raises(self) -> None:
        with pytest.raises(SourceParseError):
            strip_comments_and_strings("<?php $a = 'open;")

    def test_inline_html_after_close_tag_is_skipped(self) -> None:
        """A quote in trailing template markup is not a string literal."""
        source = "<?php namespace A\\B; class Bar extends \\A\\Base {} ?>\n<p>Don't panic</p>\n"
        scan = scan_source(source)
        assert [u.name for u in scan.usages if u.kind == UsageKind.EXTENDS] == ["A\\Base"]

    def test_inline_html_between_tags_keeps_line_numbers(self) -> None:
        source = (
            "<?php namespace A;\n"
            "?>\n"
            "<div class=\"it's\">\n"
            "<?php // heading ?><h1>Title</h1>\n"
            "<?= 'x' ?>\n"
            "<?php $item = new \\A\\Widget(); ?>\n"
        )
        stripped = strip_comments_and_strings(source)
        assert stripped.count("\n") == source.count("\n")
        new_node = next(u for u in scan_source(source).usages if u.kind == UsageKind.NEW)
        assert new_node.name == "A\\Widget"
        assert new_node.line == 6


class TestExtractMethods:
    """Tests for method body extraction."""

    def test_bodies_and_parameters(self) -> None:
        methods = extract_methods(SAMPLE, r"__construct|place")
        assert [m.name for m in methods] == ["__construct", "place"]
        assert methods[0].parameters == ("$log", "$repository")
        assert "Calculator" in methods[1].body

    def test_abstract_methods_are_skipped(self) -> None:
        source = "<?php abstract class A { abstract public function run(); public function go() { return 1; } }"
        assert [m.name for m in extract_methods(source)] == ["go"]

    def test_variadic_flags(self) -> None:
        source = "<?php class P { public function aroundRun($s, $proceed, ...$args) { return $proceed(...$args); } }"
        method = extract_methods(source)[0]
        assert method.parameters == ("$s", "$proceed", "$args")
        assert method.variadic == (False, False, True)


class TestUsageVisitor:
    """Tests for visitor exhaustiveness."""

    def test_missing_handler_fails_at_class_creation(self) -> None:
        with pytest.raises(TypeError, match="does not handle"):
            class Partial(UsageVisitor):
                def visit_new(self, node: UsageNode) -> None:
                    pass

    def test_complete_visitor_dispatches_by_kind(self) -> None:
        namespace = {
            f"visit_{kind.value}": (lambda self, node, k=kind: self.seen.append(k))
            for kind in UsageKind
        }
        Recorder = type("Recorder", (UsageVisitor,), namespace)
        recorder = Recorder()
        recorder.seen = []
        recorder.walk([UsageNode(UsageKind.NEW, "A\\B", 1), UsageNode(UsageKind.CATCH, "A\\C", 2)])
        assert recorder.seen == [UsageKind.NEW, UsageKind.CATCH]
