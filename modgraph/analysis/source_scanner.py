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
PHP Source Scanner

Walks PHP source and reports where other classes are actually used:
instantiation, static access, inheritance, trait use, type declarations,
catch clauses and instanceof checks. `use` import statements only feed
name resolution and never produce usages on their own.

The scanner works on a token stream with comments and string literals
removed; it does not build a full syntax tree.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class SourceParseError(ValueError):
    """Source could not be tokenized (unterminated literal or unbalanced braces)."""


class UsageKind(str, Enum):
    NEW = "new"
    STATIC_ACCESS = "static_access"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"
    INTERFACE_EXTENDS = "interface_extends"
    TRAIT_USE = "trait_use"
    PARAM_TYPE = "param_type"
    RETURN_TYPE = "return_type"
    PROPERTY_TYPE = "property_type"
    CATCH = "catch"
    INSTANCEOF = "instanceof"


@dataclass(frozen=True)
class UsageNode:
    kind: UsageKind
    name: str
    line: int


@dataclass(frozen=True)
class SourceScan:
    """Result of scanning one file."""
    namespace: str
    declared_classes: tuple[str, ...]
    usages: tuple[UsageNode, ...]


@dataclass(frozen=True)
class MethodSource:
    name: str
    parameters: tuple[str, ...]
    variadic: tuple[bool, ...]
    body: str
    line: int


# Names that never denote a project class
BUILTIN_NAMES = frozenset({
    "self", "static", "parent",
    "int", "integer", "float", "double", "string", "bool", "boolean",
    "array", "callable", "iterable", "object", "mixed", "void", "null",
    "never", "false", "true", "resource",
    "closure", "generator", "exception", "throwable", "error", "stdclass",
    "traversable", "iterator", "iteratoraggregate", "arrayaccess", "countable",
    "datetime", "datetimeimmutable", "datetimeinterface", "jsonserializable",
    "stringable", "arrayobject", "arrayiterator", "invalidargumentexception",
    "runtimeexception", "logicexception", "typeerror", "valueerror",
})

_MODIFIERS = frozenset({
    "public", "protected", "private", "var", "static", "readonly", "abstract", "final",
})

_TOKEN = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<var>\$[A-Za-z_\x80-\uffff][\w\x80-\uffff]*)
    |(?P<name>\\?[A-Za-z_\x80-\uffff][\w\x80-\uffff]*(?:\\[A-Za-z_\x80-\uffff][\w\x80-\uffff]*)*\\?)
    |(?P<str>''|"")
    |(?P<num>\d[\w.]*)
    |(?P<op>\?->|::|->|=>|\.\.\.|\?\?=?|[{}()\[\];,:?|&=<>!+\-*/%.@^~])
    |(?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_HEREDOC = re.compile(r"<<<[ \t]*([\"']?)([A-Za-z_]\w*)\1\r?\n")
_OPEN_TAG = re.compile(r"<\?(?:php\b|=)", re.IGNORECASE)


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int


# ============================================================================
# LEXING
# ============================================================================

def strip_comments_and_strings(source: str) -> str:
    """
    Blank out comments and string literals, keeping every newline.

    String literals become an empty `''` placeholder followed by the
    newlines they contained, so line numbers survive.

    Raises:
        SourceParseError: On an unterminated comment or string
    """
    out: list[str] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "*":
            end = source.find("*/", i + 2)
            if end < 0:
                raise SourceParseError("unterminated block comment")
            out.append("\n" * source.count("\n", i, end))
            i = end + 2
            continue

        # `#[` opens an attribute, not a comment
        if (ch == "/" and nxt == "/") or (ch == "#" and nxt != "["):
            end = source.find("\n", i)
            # a close tag ends a line comment too
            close_tag = source.find("?>", i, end if end >= 0 else n)
            if close_tag >= 0:
                i = close_tag
                continue
            if end < 0:
                break
            i = end
            continue

        if ch == "?" and nxt == ">":
            reopen = _OPEN_TAG.search(source, i + 2)
            end = reopen.end() if reopen else n
            # inline HTML acts as a statement terminator
            out.append(";" + "\n" * source.count("\n", i, end))
            i = end
            continue

        if ch in ("'", '"'):
            j = i + 1
            while j < n and source[j] != ch:
                j += 2 if source[j] == "\\" else 1
            if j >= n:
                raise SourceParseError("unterminated string literal")
            out.append("''" + "\n" * source.count("\n", i, j))
            i = j + 1
            continue

        if ch == "<" and source.startswith("<<<", i):
            match = _HEREDOC.match(source, i)
            if match:
                closing = re.compile(r"^[ \t]*" + re.escape(match.group(2)) + r"\b", re.MULTILINE)
                end = closing.search(source, match.end())
                if end is None:
                    raise SourceParseError("unterminated heredoc")
                out.append("''" + "\n" * source.count("\n", i, end.end()))
                i = end.end()
                continue

        out.append(ch)
        i += 1
    return "".join(out)


def tokenize(stripped: str) -> list[Token]:
    """Tokenize comment- and string-free PHP source."""
    tokens: list[Token] = []
    line = 1
    for match in _TOKEN.finditer(stripped):
        kind = match.lastgroup
        value = match.group()
        if kind == "ws":
            line += value.count("\n")
            continue
        if kind == "other":
            continue
        tokens.append(Token(kind, value, line))
    return tokens


# ============================================================================
# USAGE WALKER
# ============================================================================

class _Walker:
    """Single pass over the token stream tracking namespace, imports and nesting."""

    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.namespace = ""
        self.imports: dict[str, str] = {}
        self.declared: list[str] = []
        self.usages: list[UsageNode] = []
        self.depth = 0
        self.class_depths: list[int] = []
        self.header_kind: Optional[str] = None

    def _tok(self, i: int) -> Optional[Token]:
        if 0 <= i < len(self.tokens):
            return self.tokens[i]
        return None

    def _val(self, i: int) -> str:
        tok = self._tok(i)
        return tok.value if tok else ""

    def _lower(self, i: int) -> str:
        tok = self._tok(i)
        return tok.value.lower() if tok and tok.kind == "name" else ""

    def resolve(self, raw: str) -> str:
        if raw.startswith("\\"):
            return raw[1:]
        first, sep, rest = raw.partition("\\")
        imported = self.imports.get(first.lower())
        if imported:
            return imported + (sep + rest if rest else "")
        if self.namespace:
            return f"{self.namespace}\\{raw}"
        return raw

    def emit(self, kind: UsageKind, raw: str, line: int) -> None:
        if raw.lstrip("\\").lower() in BUILTIN_NAMES:
            return
        resolved = self.resolve(raw.rstrip("\\"))
        if "\\" not in resolved:
            return
        self.usages.append(UsageNode(kind, resolved, line))

    @property
    def in_class_body(self) -> bool:
        return bool(self.class_depths) and self.depth == self.class_depths[-1]

    def walk(self) -> None:
        i = 0
        while i < len(self.tokens):
            i = self._step(i)
        if self.depth != 0:
            raise SourceParseError(f"unbalanced braces (depth {self.depth} at end of file)")

    def _step(self, i: int) -> int:
        tok = self.tokens[i]
        prev = self._val(i - 1)

        if tok.kind == "op":
            if tok.value == "{":
                self.depth += 1
                if self.header_kind is not None:
                    self.class_depths.append(self.depth)
                    self.header_kind = None
            elif tok.value == "}":
                self.depth -= 1
                if self.depth < 0:
                    raise SourceParseError(f"unexpected '}}' on line {tok.line}")
                while self.class_depths and self.depth < self.class_depths[-1]:
                    self.class_depths.pop()
            elif tok.value == "::" and self._tok(i - 1) and self.tokens[i - 1].kind == "name":
                if self._val(i - 2) not in ("->", "?->", "::", "function", "const"):
                    self.emit(UsageKind.STATIC_ACCESS, self.tokens[i - 1].value, self.tokens[i - 1].line)
            return i + 1

        if tok.kind != "name" or prev in ("->", "?->", "::"):
            return i + 1

        word = tok.value.lower()
        if word == "namespace" and self._val(i + 1) != "(":
            return self._namespace(i)
        if word == "use":
            return self._use(i, prev)
        if word in ("class", "interface", "trait", "enum"):
            return self._class_header(i, word, prev)
        if word in ("extends", "implements") and self.header_kind is not None:
            return self._inheritance(i, word)
        if word == "new":
            nxt = self._tok(i + 1)
            if nxt and nxt.kind == "name" and nxt.value.lower() != "class":
                self.emit(UsageKind.NEW, nxt.value, nxt.line)
            return i + 1
        if word == "instanceof":
            nxt = self._tok(i + 1)
            if nxt and nxt.kind == "name":
                self.emit(UsageKind.INSTANCEOF, nxt.value, nxt.line)
            return i + 1
        if word == "catch" and self._val(i + 1) == "(":
            return self._catch(i)
        if word in ("function", "fn"):
            self._signature(i)
            return i + 1
        if word in _MODIFIERS and self.in_class_body and prev in (";", "{", "}", "]", ""):
            return self._property(i)
        return i + 1

    def _namespace(self, i: int) -> int:
        nxt = self._tok(i + 1)
        self.namespace = nxt.value.strip("\\") if nxt and nxt.kind == "name" else ""
        self.imports = {}
        return i + 1

    def _use(self, i: int, prev: str) -> int:
        if prev == ")":
            return i + 1
        if self.class_depths:
            if not self.in_class_body:
                return i + 1
            j = i + 1
            while j < len(self.tokens) and self._val(j) not in (";", "{"):
                tok = self.tokens[j]
                if tok.kind == "name":
                    self.emit(UsageKind.TRAIT_USE, tok.value, tok.line)
                j += 1
            return j
        return self._import(i)

    def _import(self, i: int) -> int:
        j = i + 1
        if self._lower(j) in ("function", "const"):
            while j < len(self.tokens) and self._val(j) != ";":
                j += 1
            return j + 1

        while j < len(self.tokens) and self._val(j) != ";":
            tok = self.tokens[j]
            if tok.kind == "name" and tok.value.endswith("\\") and self._val(j + 1) == "{":
                prefix = tok.value.strip("\\")
                j += 2
                while j < len(self.tokens) and self._val(j) != "}":
                    if self._lower(j) in ("function", "const"):
                        while j < len(self.tokens) and self._val(j) not in (",", "}"):
                            j += 1
                        continue
                    if self.tokens[j].kind == "name":
                        j = self._import_item(j, prefix)
                        continue
                    j += 1
                continue
            if tok.kind == "name":
                j = self._import_item(j, "")
                continue
            j += 1
        return j + 1

    def _import_item(self, j: int, prefix: str) -> int:
        name = self.tokens[j].value.strip("\\")
        full = f"{prefix}\\{name}" if prefix else name
        alias = full.rsplit("\\", 1)[-1]
        j += 1
        if self._lower(j) == "as" and self._tok(j + 1):
            alias = self.tokens[j + 1].value
            j += 2
        self.imports[alias.lower()] = full
        return j

    def _class_header(self, i: int, word: str, prev: str) -> int:
        nxt = self._tok(i + 1)
        anonymous = word == "class" and prev.lower() == "new"
        if not anonymous and (nxt is None or nxt.kind != "name"):
            return i + 1
        self.header_kind = word
        if nxt and nxt.kind == "name" and nxt.value.lower() not in ("extends", "implements"):
            name = nxt.value
            self.declared.append(f"{self.namespace}\\{name}" if self.namespace else name)
            return i + 2
        return i + 1

    def _inheritance(self, i: int, word: str) -> int:
        if word == "implements":
            kind = UsageKind.IMPLEMENTS
        elif self.header_kind == "interface":
            kind = UsageKind.INTERFACE_EXTENDS
        else:
            kind = UsageKind.EXTENDS
        j = i + 1
        while j < len(self.tokens):
            tok = self.tokens[j]
            if tok.kind == "name" and tok.value.lower() in ("extends", "implements"):
                break
            if tok.kind == "op" and tok.value not in (",",):
                break
            if tok.kind == "name":
                self.emit(kind, tok.value, tok.line)
            j += 1
        return j

    def _catch(self, i: int) -> int:
        j = i + 2
        while j < len(self.tokens) and self._val(j) != ")":
            tok = self.tokens[j]
            if tok.kind == "name":
                self.emit(UsageKind.CATCH, tok.value, tok.line)
            j += 1
        return j

    def _signature(self, i: int) -> None:
        j = i + 1
        if self._val(j) == "&":
            j += 1
        if self._tok(j) and self.tokens[j].kind == "name":
            j += 1
        if self._val(j) != "(":
            return

        close = _matching(self.tokens, j, "(", ")")
        for param in _split_params(self.tokens, j + 1, close):
            for tok in param:
                if tok.kind == "var" or tok.value in ("=", "..."):
                    break
                if tok.kind == "name" and tok.value.lower() not in _MODIFIERS:
                    self.emit(UsageKind.PARAM_TYPE, tok.value, tok.line)

        j = close + 1
        if self._lower(j) == "use" and self._val(j + 1) == "(":
            j = _matching(self.tokens, j + 1, "(", ")") + 1
        if self._val(j) != ":":
            return
        j += 1
        while j < len(self.tokens):
            tok = self.tokens[j]
            if tok.kind == "name":
                self.emit(UsageKind.RETURN_TYPE, tok.value, tok.line)
            elif tok.value not in ("?", "|", "&", "(", ")"):
                break
            j += 1

    def _property(self, i: int) -> int:
        j = i
        while self._lower(j) in _MODIFIERS:
            j += 1
        if self._lower(j) in ("function", "const", "fn"):
            return j
        types: list[Token] = []
        while j < len(self.tokens):
            tok = self.tokens[j]
            if tok.kind == "var":
                for type_tok in types:
                    self.emit(UsageKind.PROPERTY_TYPE, type_tok.value, type_tok.line)
                return j + 1
            if tok.kind == "name":
                types.append(tok)
            elif tok.value not in ("?", "|", "&", "(", ")"):
                return j
            j += 1
        return j


def _matching(tokens: list[Token], start: int, open_: str, close: str) -> int:
    depth = 0
    for j in range(start, len(tokens)):
        if tokens[j].value == open_:
            depth += 1
        elif tokens[j].value == close:
            depth -= 1
            if depth == 0:
                return j
    raise SourceParseError(f"unbalanced '{open_}' on line {tokens[start].line}")


def _split_params(tokens: list[Token], start: int, end: int) -> list[list[Token]]:
    params: list[list[Token]] = [[]]
    depth = 0
    for tok in tokens[start:end]:
        if tok.value in ("(", "[", "{"):
            depth += 1
        elif tok.value in (")", "]", "}"):
            depth -= 1
        elif tok.value == "," and depth == 0:
            params.append([])
            continue
        params[-1].append(tok)
    return [p for p in params if p]


def scan_source(source: str) -> SourceScan:
    """
    Scan PHP source for class usages.

    Args:
        source: Raw file content

    Returns:
        SourceScan with namespace, declared classes and usage nodes in source order

    Raises:
        SourceParseError: If the source cannot be tokenized
    """
    walker = _Walker(tokenize(strip_comments_and_strings(source)))
    walker.walk()
    return SourceScan(walker.namespace, tuple(walker.declared), tuple(walker.usages))


# ============================================================================
# METHOD EXTRACTION
# ============================================================================

def extract_methods(source: str, name_pattern: str = r"\w+") -> list[MethodSource]:
    """
    Extract method bodies whose names match a pattern.

    Bodies come from the comment- and string-stripped text, so braces
    inside literals never unbalance the match. Abstract and interface
    methods (no body) are skipped.
    """
    stripped = strip_comments_and_strings(source)
    pattern = re.compile(r"\bfunction\s+&?\s*(" + name_pattern + r")\s*\(")
    methods: list[MethodSource] = []
    for match in pattern.finditer(stripped):
        open_paren = match.end() - 1
        close_paren = _match_text(stripped, open_paren, "(", ")")
        if close_paren < 0:
            continue
        params, variadic = _parameter_names(stripped[open_paren + 1:close_paren])

        k = close_paren + 1
        while k < len(stripped) and stripped[k] not in "{;":
            k += 1
        if k >= len(stripped) or stripped[k] == ";":
            continue
        close_brace = _match_text(stripped, k, "{", "}")
        if close_brace < 0:
            continue
        methods.append(MethodSource(
            name=match.group(1),
            parameters=params,
            variadic=variadic,
            body=stripped[k + 1:close_brace],
            line=stripped.count("\n", 0, match.start()) + 1,
        ))
    return methods


def _match_text(text: str, start: int, open_: str, close: str) -> int:
    depth = 0
    for j in range(start, len(text)):
        if text[j] == open_:
            depth += 1
        elif text[j] == close:
            depth -= 1
            if depth == 0:
                return j
    return -1


def _parameter_names(param_text: str) -> tuple[tuple[str, ...], tuple[bool, ...]]:
    names: list[str] = []
    variadic: list[bool] = []
    tokens = tokenize(param_text)
    for param in _split_params(tokens, 0, len(tokens)):
        for index, tok in enumerate(param):
            if tok.kind == "var":
                names.append(tok.value)
                variadic.append(any(t.value == "..." for t in param[:index]))
                break
    return tuple(names), tuple(variadic)


# ============================================================================
# VISITOR
# ============================================================================

class UsageVisitor:
    """
    Base class for consumers of usage nodes.

    Subclasses must define `visit_<kind>` for every UsageKind; a missing
    handler is a TypeError when the subclass is created.
    """

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        missing = [
            kind.value for kind in UsageKind
            if not callable(getattr(cls, f"visit_{kind.value}", None))
        ]
        if missing:
            raise TypeError(
                f"{cls.__name__} does not handle usage kinds: {', '.join(missing)}"
            )

    def visit(self, node: UsageNode) -> None:
        getattr(self, f"visit_{node.kind.value}")(node)

    def walk(self, nodes: Iterable[UsageNode]) -> None:
        for node in nodes:
            self.visit(node)
