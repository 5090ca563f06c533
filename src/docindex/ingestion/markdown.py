"""Markdown/MDX segmentation for search indexing.

A document is parsed into its top-level block sequence with markdown-it-py,
MDX-only blocks (ESM imports/exports, JSX elements, flow expressions) are
filtered out, and the remaining blocks are partitioned into sections that
each start at a heading.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import yaml
from markdown_it import MarkdownIt

from docindex.errors import ParseError
from docindex.models import DocumentSection, Meta, ProcessedDocument
from docindex.utils.files import compute_checksum
from docindex.utils.text import Slugger

LOGGER = logging.getLogger(__name__)

# Node kinds removed before splitting
MDX_NODE_KINDS = frozenset({"esm", "expression", "jsx"})

_BLOCK_KINDS = {
    "heading_open": "heading",
    "paragraph_open": "paragraph",
    "bullet_list_open": "list",
    "ordered_list_open": "list",
    "blockquote_open": "blockquote",
    "table_open": "table",
    "fence": "code",
    "code_block": "code",
    "html_block": "jsx",
    "hr": "hr",
}

_FRONTMATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_ESM_START = re.compile(r"^(import|export)\b")
_META_EXPORT = re.compile(r"^export\s+(?:const|let|var)\s+meta\s*=\s*", re.MULTILINE)

_JSX_NAME = r"[A-Za-z][\w.:-]*"
_JSX_SELF_CLOSING = re.compile(rf"<{_JSX_NAME}(?:\s[^<>]*)?/>")
_JSX_ELEMENT = re.compile(rf"<({_JSX_NAME})(?:\s[^<>]*)?>[\s\S]*?</\1\s*>")
_JSX_STRAY_TAG = re.compile(rf"</?[A-Z][\w.:-]*(?:\s[^<>]*)?>")
_JSX_OPEN_TAG = re.compile(rf"^<({_JSX_NAME})(?:\s[^<>]*)?>\s*$")
_JSX_CLOSE_TAG = re.compile(rf"</({_JSX_NAME})\s*>\s*$")
_EXPRESSION = re.compile(r"\{[^{}]*\}")
_CODE_SPAN = re.compile(r"(`+)[\s\S]*?\1")
_FENCE = re.compile(r"^\s*(`{3,}|~{3,})")

_INTEGER = re.compile(r"^[+-]?\d+$")
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")


@dataclass(slots=True)
class MarkdownNode:
    """One top-level block of a parsed document."""

    kind: str
    text: str
    heading: Optional[str] = None


def _build_parser() -> MarkdownIt:
    return MarkdownIt("commonmark").enable("table")


_PARSER = _build_parser()


def _scan(code: str) -> Iterator[Tuple[int, str, str]]:
    """Yield ``(index, char, state)`` for each character of a JS snippet.

    ``state`` is ``"code"``, ``"string"`` (quotes included) or ``"comment"``
    for ``//`` and ``/* */`` comments.
    """
    quote: Optional[str] = None
    comment: Optional[str] = None
    escaped = False
    index = 0
    while index < len(code):
        char = code[index]
        if comment == "//":
            if char == "\n":
                comment = None
                yield index, char, "code"
            else:
                yield index, char, "comment"
        elif comment == "/*":
            if code.startswith("*/", index):
                comment = None
                yield index, char, "comment"
                yield index + 1, "/", "comment"
                index += 1
            else:
                yield index, char, "comment"
        elif quote:
            yield index, char, "string"
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif code.startswith("//", index) or code.startswith("/*", index):
            comment = code[index : index + 2]
            yield index, char, "comment"
            yield index + 1, code[index + 1], "comment"
            index += 1
        else:
            if char in "'\"`":
                quote = char
                yield index, char, "string"
            else:
                yield index, char, "code"
        index += 1


def _brace_depth(text: str) -> int:
    """Net count of unclosed ``{`` in ``text``, ignoring strings and comments."""
    depth = 0
    for _, char, state in _scan(text):
        if state != "code":
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
    return depth


def _matching_brace(text: str, start: int) -> Optional[int]:
    """Index of the ``}`` that closes the ``{`` at ``start``, if any."""
    depth = 0
    for index, char, state in _scan(text[start:]):
        if state != "code":
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return start + index
    return None


def _is_flow_expression(text: str) -> bool:
    """True when ``text`` is a single ``{...}`` expression, possibly unclosed."""
    if not text.startswith("{"):
        return False
    end = _matching_brace(text, 0)
    return end is None or end == len(text) - 1


def _split_frontmatter(content: str) -> tuple[Optional[dict], str]:
    """Separate a leading YAML mapping from the document body.

    A ``---`` block that does not hold a YAML mapping is a thematic break, not
    frontmatter, and stays in the body.
    """
    match = _FRONTMATTER.match(content)
    if not match:
        return None, content
    try:
        raw = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        LOGGER.debug("Leading '---' block is not YAML frontmatter: %s", exc)
        return None, content
    if not isinstance(raw, dict):
        return None, content
    return raw, content[match.end() :]


def _strip_inline_segment(text: str) -> str:
    pieces: List[str] = []
    last = 0
    for match in _CODE_SPAN.finditer(text):
        pieces.append(_strip_inline_prose(text[last : match.start()]))
        pieces.append(match.group(0))
        last = match.end()
    pieces.append(_strip_inline_prose(text[last:]))
    return "".join(pieces)


def _strip_inline_prose(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = _JSX_SELF_CLOSING.sub("", text)
        text = _JSX_ELEMENT.sub("", text)
        text = _EXPRESSION.sub("", text)
    return _JSX_STRAY_TAG.sub("", text)


def strip_inline_mdx(text: str) -> str:
    """Remove inline JSX elements and ``{...}`` expressions from prose.

    Code spans and fenced code blocks are left untouched.
    """
    output: List[str] = []
    prose: List[str] = []
    fence: Optional[str] = None

    def flush() -> None:
        if prose:
            output.extend(_strip_inline_segment("\n".join(prose)).split("\n"))
            prose.clear()

    for line in text.split("\n"):
        match = _FENCE.match(line)
        if fence is None and match:
            flush()
            fence = match.group(1)[0] * len(match.group(1))
            output.append(line)
        elif fence is not None:
            output.append(line)
            if line.strip().startswith(fence):
                fence = None
        else:
            prose.append(line)
    flush()
    return "\n".join(line.rstrip() for line in output).strip("\n")


def _plain_text(markdown: str) -> str:
    """Render inline markdown to plain text, the way a heading reads."""
    parts: List[str] = []
    for token in _PARSER.parseInline(markdown):
        for child in token.children or []:
            if child.type in ("text", "code_inline"):
                parts.append(child.content)
            elif child.type in ("softbreak", "hardbreak"):
                parts.append(" ")
    return "".join(parts).strip()


def parse_nodes(content: str) -> List[MarkdownNode]:
    """Parse markdown into its ordered sequence of top-level nodes.

    ESM statements and flow expressions whose braces span several blocks are
    merged back into a single node.
    """
    lines = content.split("\n")
    tokens = _PARSER.parse(content)
    nodes: List[MarkdownNode] = []

    for index, token in enumerate(tokens):
        if token.level != 0 or token.nesting == -1 or token.map is None:
            continue
        kind = _BLOCK_KINDS.get(token.type)
        if kind is None:
            continue
        start, end = token.map
        text = "\n".join(lines[start:end]).rstrip()

        heading = None
        if kind == "paragraph":
            inline = tokens[index + 1].content.strip()
            if _ESM_START.match(inline):
                kind = "esm"
            elif _is_flow_expression(inline):
                kind = "expression"
        elif kind == "heading":
            heading = tokens[index + 1].content

        nodes.append(MarkdownNode(kind=kind, text=text, heading=heading))

    return _merge_braced_nodes(nodes)


def _merge_braced_nodes(nodes: Sequence[MarkdownNode]) -> List[MarkdownNode]:
    merged: List[MarkdownNode] = []
    pending: Optional[MarkdownNode] = None

    for node in nodes:
        if pending is not None:
            pending.text = f"{pending.text}\n\n{node.text}"
            if _brace_depth(pending.text) <= 0:
                merged.append(pending)
                pending = None
            continue
        if node.kind in ("esm", "expression") and _brace_depth(node.text) > 0:
            pending = node
            continue
        merged.append(node)

    if pending is not None:
        kind = "export" if pending.kind == "esm" else "expression"
        raise ParseError(f"Unterminated {kind} starting with {pending.text[:40]!r}")
    return merged


def _parse_literal(raw: str) -> tuple[bool, object]:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"`":
        body = value[1:-1]
        if value[0] == "`" and "${" in body:
            return False, None
        return True, re.sub(r"\\(.)", r"\1", body)
    if value == "true":
        return True, True
    if value == "false":
        return True, False
    if _INTEGER.match(value):
        return True, int(value)
    if _NUMBER.match(value):
        return True, float(value)
    return False, None


def _split_properties(body: str) -> List[str]:
    """Split an object literal body on top-level commas, dropping comments."""
    properties: List[str] = []
    depth = 0
    current: List[str] = []
    for _, char, state in _scan(body):
        if state == "comment":
            continue
        if state == "code":
            if char in "{[(":
                depth += 1
            elif char in "}])":
                depth -= 1
            elif char == "," and depth == 0:
                properties.append("".join(current))
                current = []
                continue
        current.append(char)
    properties.append("".join(current))
    return [prop.strip() for prop in properties if prop.strip()]


def _object_literal(statement: str) -> str:
    """Return the text between the outer braces of the first object literal."""
    start = next(
        (index for index, char, state in _scan(statement) if state == "code" and char == "{"),
        None,
    )
    if start is None:
        return ""
    end = _matching_brace(statement, start)
    if end is None:
        raise ParseError(f"Unterminated meta object literal in {statement[:40]!r}")
    return statement[start + 1 : end]


def extract_meta_export(nodes: Iterable[MarkdownNode]) -> Optional[Meta]:
    """Extract the literal properties of ``export const meta = {...}``.

    Only string, number and boolean literals are kept; computed values are
    dropped.
    """
    for node in nodes:
        if node.kind != "esm":
            continue
        match = _META_EXPORT.search(node.text)
        if not match:
            continue
        statement = node.text[match.end() :]
        if not statement.lstrip().startswith("{"):
            return None

        meta: Meta = {}
        for prop in _split_properties(_object_literal(statement)):
            key, sep, value = prop.partition(":")
            if not sep:
                continue
            key = key.strip()
            if len(key) >= 2 and key[0] == key[-1] and key[0] in "'\"":
                key = key[1:-1]
            elif not _IDENTIFIER.match(key):
                continue
            ok, literal = _parse_literal(value)
            if ok:
                meta[key] = literal  # type: ignore[assignment]
        return meta
    return None


def extract_frontmatter_meta(frontmatter: str) -> Optional[Meta]:
    """Scalar values of a YAML frontmatter block."""
    try:
        raw = yaml.safe_load(frontmatter)
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid YAML frontmatter: {exc}") from exc
    if not isinstance(raw, dict):
        return None
    return _scalar_meta(raw)


def _scalar_meta(raw: dict) -> Meta:
    meta: Meta = {}
    for key, value in raw.items():
        if isinstance(value, (str, int, float, bool)):
            meta[str(key)] = value
        elif isinstance(value, date):
            meta[str(key)] = value.isoformat()
    return meta


def strip_mdx_nodes(nodes: Iterable[MarkdownNode]) -> List[MarkdownNode]:
    """Drop MDX-only nodes and strip inline JSX/expressions from the rest.

    A JSX flow element that opens on its own line removes every node up to
    its matching closing tag.
    """
    kept: List[MarkdownNode] = []
    open_elements: List[str] = []

    for node in nodes:
        if node.kind == "jsx":
            opening = _JSX_OPEN_TAG.match(node.text)
            closing = _JSX_CLOSE_TAG.search(node.text)
            if opening and not node.text.rstrip().endswith("/>"):
                name = opening.group(1)
                if not (closing and closing.group(1) == name):
                    open_elements.append(name)
            elif closing and open_elements and closing.group(1) == open_elements[-1]:
                open_elements.pop()
            continue
        if open_elements or node.kind in MDX_NODE_KINDS:
            continue

        if node.kind == "code":
            kept.append(node)
            continue

        text = strip_inline_mdx(node.text)
        if node.kind == "heading":
            heading = _plain_text(strip_inline_mdx(node.heading or ""))
            kept.append(MarkdownNode(kind="heading", text=text, heading=heading or None))
        elif text.strip():
            kept.append(MarkdownNode(kind=node.kind, text=text))

    if open_elements:
        raise ParseError(f"Unclosed JSX element <{open_elements[-1]}>")
    return kept


def split_nodes_by(
    nodes: Iterable[MarkdownNode], predicate: Callable[[MarkdownNode], bool]
) -> List[List[MarkdownNode]]:
    """Partition nodes into groups, starting a new group at every match.

    The matching node is the first element of its group; nodes before the
    first match form a leading group of their own.
    """
    groups: List[List[MarkdownNode]] = []
    for node in nodes:
        if not groups or predicate(node):
            groups.append([node])
        else:
            groups[-1].append(node)
    return groups


def process_markdown(content: str) -> ProcessedDocument:
    """Process Markdown/MDX content for search indexing.

    Extracts metadata, strips all MDX syntax and splits the document into
    heading-delimited sections.
    """
    checksum = compute_checksum(content)
    frontmatter, body = _split_frontmatter(content)

    nodes = parse_nodes(body)
    meta = extract_meta_export(nodes)
    if meta is None and frontmatter is not None:
        meta = _scalar_meta(frontmatter)

    slugger = Slugger()
    sections: List[DocumentSection] = []
    for group in split_nodes_by(strip_mdx_nodes(nodes), lambda node: node.kind == "heading"):
        first = group[0]
        heading = first.heading if first.kind == "heading" else None
        sections.append(
            DocumentSection(
                content="\n\n".join(node.text for node in group) + "\n",
                heading=heading,
                slug=slugger.slug(heading) if heading else None,
            )
        )

    LOGGER.debug("Segmented document into %d sections", len(sections))
    return ProcessedDocument(checksum=checksum, meta=meta, sections=sections)
