"""Template parser for Gorgon.

This module splits a unit of markup into literal text spans and component
invocation nodes. Invocation targets are recorded but never resolved here: the
component registry is consulted lazily at render time, so components may be
registered after the content that uses them has been parsed.

Syntax:
    <x-card title="Hi">
      <slot name="header">@{title}</slot>
      Body text
    </x-card>
    <x-ui/button label="Go" />

Inside a template, ``@{name}`` references a parameter, ``@{yield}`` the default
slot, ``@{yield name}`` a named slot and ``@{var("key")}`` a site variable.

Key objects:
- Text / Invocation: The node variants produced by the parser.
- ParseResult: Nodes plus the invocation targets and placeholders found.
- parse_template: Parse markup, raising ParseError on malformed invocations.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from .errors import ParseError

INVOCATION_PREFIX = "x-"

_ID = r"[A-Za-z_][\w\-]*(?:/[A-Za-z_][\w\-]*)*"
OPEN_TAG_RE = re.compile(r"<x-(" + _ID + r")(?=[\s/>]|$)")
CLOSE_TAG_RE = re.compile(r"</x-(" + _ID + r")\s*>")
SLOT_OPEN_RE = re.compile(r"<slot(?=[\s/>])", re.IGNORECASE)
SLOT_CLOSE_RE = re.compile(r"</slot\s*>", re.IGNORECASE)
RAW_TEXT_RE = re.compile(r"<(script|style)(?=[\s>])", re.IGNORECASE)
ATTRIBUTE_RE = re.compile(
    r"""([A-Za-z_:@][\w\-.:@]*)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?"""
)
TAG_END_RE = re.compile(r"\s*(/?)>")
WHITESPACE_RE = re.compile(r"\s+")

PLACEHOLDER_RE = re.compile(
    r"@\{\s*(?:"
    r"yield(?:\s+(?P<slot>[A-Za-z_][\w\-]*))?"
    r"|var\(\s*[\"'](?P<var>[^\"']+)[\"']\s*\)"
    r"|(?P<param>[A-Za-z_][\w\-]*)"
    r")\s*\}"
)

DEFAULT_SLOT = ""


@dataclass(frozen=True)
class Text:
    """A literal span of markup, passed through verbatim (apart from placeholders)."""

    value: str


@dataclass(frozen=True)
class Invocation:
    """A reference to another unit to expand at this point.

    Attributes:
        target_id: Component identifier, resolved at render time.
        attributes: String parameters given by the caller.
        slots: Named slot blocks, keyed by slot name.
        default_slot: Everything inside the invocation that is not a named slot.
        line: Line of the opening tag in the source.
    """

    target_id: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    slots: Mapping[str, tuple[Node, ...]] = field(default_factory=dict)
    default_slot: tuple[Node, ...] = ()
    line: int = 0


Node = Text | Invocation


@dataclass(frozen=True)
class ParseResult:
    """Output of parse_template.

    Attributes:
        nodes: Top-level node sequence.
        targets: Every component identifier invoked, at any nesting level.
        params: Parameter names referenced through ``@{name}``.
        slot_refs: Slot names referenced through ``@{yield ...}`` (default slot is "").
        variables: Site variable keys referenced through ``@{var("key")}``.
    """

    nodes: tuple[Node, ...]
    targets: frozenset[str]
    params: frozenset[str]
    slot_refs: frozenset[str]
    variables: frozenset[str]


@dataclass
class _Frame:
    kind: str  # "root" | "invocation" | "slot"
    name: str
    pos: int
    attributes: dict[str, str] = field(default_factory=dict)
    nodes: list[Node] = field(default_factory=list)
    text: list[str] = field(default_factory=list)
    slots: dict[str, tuple[Node, ...]] = field(default_factory=dict)
    literal_slots: int = 0

    def add_text(self, value: str) -> None:
        if value:
            self.text.append(value)

    def add_node(self, node: Node) -> None:
        self.flush()
        self.nodes.append(node)

    def flush(self) -> None:
        if self.text:
            self.nodes.append(Text("".join(self.text)))
            self.text = []

    def finish(self) -> tuple[Node, ...]:
        self.flush()
        return tuple(self.nodes)


class _Parser:
    def __init__(self, source: str, unit_id: str):
        self.source = source
        self.unit_id = unit_id
        self.stack: list[_Frame] = [_Frame("root", "", 0)]

    def error(self, message: str, pos: int) -> ParseError:
        line = self.source.count("\n", 0, pos) + 1
        column = pos - (self.source.rfind("\n", 0, pos) + 1) + 1
        return ParseError(self.unit_id, message, line, column)

    def line_of(self, pos: int) -> int:
        return self.source.count("\n", 0, pos) + 1

    @property
    def top(self) -> _Frame:
        return self.stack[-1]

    def parse(self) -> tuple[Node, ...]:
        source = self.source
        pos = 0
        length = len(source)
        while pos < length:
            lt = source.find("<", pos)
            if lt < 0:
                self.top.add_text(source[pos:])
                break
            self.top.add_text(source[pos:lt])
            pos = self._dispatch(lt)

        if len(self.stack) > 1:
            frame = self.top
            tag = f"<x-{frame.name}>" if frame.kind == "invocation" else "<slot>"
            raise self.error(f"unterminated {tag}", frame.pos)
        return self.stack[0].finish()

    def _dispatch(self, lt: int) -> int:
        source = self.source
        if source.startswith("<!--", lt):
            end = source.find("-->", lt + 4)
            stop = len(source) if end < 0 else end + 3
            self.top.add_text(source[lt:stop])
            return stop

        raw = RAW_TEXT_RE.match(source, lt)
        if raw:
            closing = re.compile(r"</" + raw.group(1) + r"\s*>", re.IGNORECASE)
            end = closing.search(source, raw.end())
            stop = len(source) if end is None else end.end()
            self.top.add_text(source[lt:stop])
            return stop

        if source.startswith("</x-", lt):
            return self._close_invocation(lt)

        opened = OPEN_TAG_RE.match(source, lt)
        if opened:
            return self._open_invocation(lt, opened)

        frame = self.top
        if frame.kind == "invocation" and SLOT_OPEN_RE.match(source, lt):
            return self._open_slot(lt)
        if frame.kind == "slot":
            if SLOT_CLOSE_RE.match(source, lt):
                if frame.literal_slots:
                    frame.literal_slots -= 1
                else:
                    return self._close_slot(lt)
            elif SLOT_OPEN_RE.match(source, lt):
                frame.literal_slots += 1

        frame.add_text("<")
        return lt + 1

    def _read_attributes(self, start: int, tag: str) -> tuple[dict[str, str], bool, int]:
        source = self.source
        attributes: dict[str, str] = {}
        pos = start
        while True:
            end = TAG_END_RE.match(source, pos)
            if end:
                return attributes, bool(end.group(1)), end.end()
            ws = WHITESPACE_RE.match(source, pos)
            if not ws:
                break
            pos = ws.end()
            attr = ATTRIBUTE_RE.match(source, pos)
            if not attr:
                break
            name = attr.group(1)
            value = next((g for g in attr.group(2, 3, 4) if g is not None), "")
            attributes.setdefault(name, value)
            pos = attr.end()
        if source.find(">", start) < 0:
            raise self.error(f"unterminated tag {tag}", start)
        raise self.error(f"malformed attributes in tag {tag}", pos)

    def _open_invocation(self, lt: int, opened: re.Match) -> int:
        target_id = opened.group(1)
        attributes, self_closing, end = self._read_attributes(
            opened.end(), f"<x-{target_id}>"
        )
        if self_closing:
            self.top.add_node(
                Invocation(target_id, attributes, {}, (), line=self.line_of(lt))
            )
        else:
            self.stack.append(_Frame("invocation", target_id, lt, attributes))
        return end

    def _close_invocation(self, lt: int) -> int:
        closed = CLOSE_TAG_RE.match(self.source, lt)
        if not closed:
            raise self.error("malformed closing tag", lt)
        target_id = closed.group(1)
        frame = self.top
        if frame.kind == "slot":
            raise self.error(
                f"</x-{target_id}> closes an invocation while slot "
                f"'{frame.name}' is still open",
                lt,
            )
        if frame.kind != "invocation":
            raise self.error(f"unexpected closing tag </x-{target_id}>", lt)
        if frame.name != target_id:
            raise self.error(
                f"mismatched closing tag </x-{target_id}>, expected </x-{frame.name}>",
                lt,
            )
        self.stack.pop()
        self.top.add_node(
            Invocation(
                frame.name,
                frame.attributes,
                dict(frame.slots),
                frame.finish(),
                line=self.line_of(frame.pos),
            )
        )
        return closed.end()

    def _open_slot(self, lt: int) -> int:
        start = SLOT_OPEN_RE.match(self.source, lt).end()
        attributes, self_closing, end = self._read_attributes(start, "<slot>")
        name = attributes.get("name", "").strip()
        if not name:
            raise self.error("slot block requires a name attribute", lt)
        invocation = self.top
        if name in invocation.slots:
            raise self.error(f"duplicate slot '{name}' in <x-{invocation.name}>", lt)
        if self_closing:
            invocation.slots[name] = ()
        else:
            self.stack.append(_Frame("slot", name, lt))
        return end

    def _close_slot(self, lt: int) -> int:
        frame = self.stack.pop()
        self.top.slots[frame.name] = frame.finish()
        return SLOT_CLOSE_RE.match(self.source, lt).end()


def iter_invocations(nodes: Sequence[Node]) -> Iterator[Invocation]:
    """Yield every invocation in a node sequence, depth first, including slot content."""
    for node in nodes:
        if isinstance(node, Invocation):
            yield node
            for slot_nodes in node.slots.values():
                yield from iter_invocations(slot_nodes)
            yield from iter_invocations(node.default_slot)


def scan_placeholders(source: str) -> tuple[frozenset[str], frozenset[str], frozenset[str]]:
    """Collect parameter names, slot names and variable keys referenced in source."""
    params: set[str] = set()
    slots: set[str] = set()
    variables: set[str] = set()
    for match in PLACEHOLDER_RE.finditer(source):
        if match.group("param") is not None:
            params.add(match.group("param"))
        elif match.group("var") is not None:
            variables.add(match.group("var"))
        else:
            slots.add(match.group("slot") or DEFAULT_SLOT)
    return frozenset(params), frozenset(slots), frozenset(variables)


def parse_template(source: str, unit_id: str = "<string>") -> ParseResult:
    """Parse markup into nodes without resolving invocation targets.

    Args:
        source: Raw markup text.
        unit_id: Identifier of the unit being parsed, used in error messages.

    Returns:
        ParseResult with the node sequence and everything it references.

    Raises:
        ParseError: If an invocation or slot block is malformed.
    """
    nodes = _Parser(source, unit_id).parse()
    targets = frozenset(inv.target_id for inv in iter_invocations(nodes))
    params, slot_refs, variables = scan_placeholders(source)
    return ParseResult(nodes, targets, params, slot_refs, variables)
