"""Conversion between note HTML and Notion blocks.

Both directions go through a flat list of ContentBlock values: HTML is parsed
into an element tree and each block-level element becomes one block; Notion
blocks map one-to-one onto ContentBlock kinds. Inline formatting, nesting
depth and non-text content are dropped. Text is kept, so that

    strip_markup(decode(to_notion(encode(html)))) == strip_markup(html)
"""

import html
import logging
import re
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional, Sequence, Union

from shared.models import BlockKind, ContentBlock

logger = logging.getLogger(__name__)

# Notion rejects rich_text items whose content exceeds 2000 characters
RICH_TEXT_LIMIT = 2000

HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 3, "h5": 3, "h6": 3}
LIST_KINDS = {"ul": BlockKind.BULLETED_ITEM, "ol": BlockKind.NUMBERED_ITEM}
CONTAINER_TAGS = {
    "#root", "html", "body", "div", "section", "article", "main", "header",
    "footer", "nav", "aside", "figure", "details", "form", "center",
}
INLINE_TAGS = {
    "a", "abbr", "b", "bdi", "bdo", "big", "br", "cite", "code", "data", "del",
    "dfn", "em", "font", "i", "img", "ins", "kbd", "label", "mark", "q", "s",
    "samp", "small", "span", "strike", "strong", "sub", "sup", "time", "tt",
    "u", "var", "wbr",
}
VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta",
    "param", "source", "track", "wbr",
}
SKIPPED_TAGS = {"head", "script", "style", "template", "title"}

NOTION_HEADINGS = {"heading_1": 1, "heading_2": 2, "heading_3": 3}
NOTION_TYPES = {
    BlockKind.PARAGRAPH: "paragraph",
    BlockKind.BULLETED_ITEM: "bulleted_list_item",
    BlockKind.NUMBERED_ITEM: "numbered_list_item",
    BlockKind.QUOTE: "quote",
    BlockKind.CODE: "code",
}
KINDS_BY_NOTION_TYPE = {notion_type: kind for kind, notion_type in NOTION_TYPES.items()}

_WHITESPACE_RE = re.compile(r"\s+")

Node = Union[str, "_Element"]


class _Element:
    __slots__ = ("tag", "children", "parent")

    def __init__(self, tag: str, parent: Optional["_Element"] = None):
        self.tag = tag
        self.children: List[Node] = []
        self.parent = parent


class _TreeBuilder(HTMLParser):
    """Builds an element tree, tolerating unclosed and stray tags."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = _Element("#root")
        self._current = self.root
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in SKIPPED_TAGS:
            self._skip_depth += 1
            return
        if self._skip_depth:
            return

        # A <p> ends at the next block-level tag, an <li> at the next <li>
        if self._current.tag == "p" and tag not in INLINE_TAGS:
            self._current = self._current.parent
        elif self._current.tag == "li" and tag == "li":
            self._current = self._current.parent

        element = _Element(tag, self._current)
        self._current.children.append(element)
        if tag not in VOID_TAGS:
            self._current = element

    def handle_endtag(self, tag):
        if tag in SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if self._skip_depth:
            return

        node = self._current
        while node is not self.root and node.tag != tag:
            node = node.parent
        if node is not self.root:
            self._current = node.parent

    def handle_data(self, data):
        if not self._skip_depth:
            self._current.children.append(data)


def parse_html(markup: str) -> _Element:
    builder = _TreeBuilder()
    builder.feed(markup or "")
    builder.close()
    return builder.root


def _inline_text(nodes: Sequence[Node]) -> str:
    """Text of inline content; "\\n" marks line breaks and block boundaries."""
    parts = []
    for node in nodes:
        if isinstance(node, str):
            parts.append(_WHITESPACE_RE.sub(" ", node))
        elif node.tag == "br":
            parts.append("\n")
        elif node.tag in INLINE_TAGS:
            parts.append(_inline_text(node.children))
        else:
            parts.append("\n" + _inline_text(node.children) + "\n")
    return "".join(parts)


def _raw_text(nodes: Sequence[Node]) -> str:
    """Text with whitespace preserved, for code."""
    parts = []
    for node in nodes:
        if isinstance(node, str):
            parts.append(node)
        elif node.tag == "br":
            parts.append("\n")
        else:
            parts.append(_raw_text(node.children))
    return "".join(parts)


def _normalize(text: str) -> str:
    lines = (line.strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def _plain_text(node: Node) -> str:
    if isinstance(node, str):
        return node
    inner = "".join(_plain_text(child) for child in node.children)
    if node.tag in INLINE_TAGS and node.tag != "br":
        return inner
    return f" {inner} "


def strip_markup(markup: str) -> str:
    """
    Text content of an HTML fragment.

    Tags are removed, block boundaries and line breaks count as whitespace and
    whitespace runs are collapsed to a single space.
    """
    return _WHITESPACE_RE.sub(" ", _plain_text(parse_html(markup))).strip()


class _BlockCollector:
    """Walks an element tree and emits ContentBlocks in document order."""

    def __init__(self):
        self.blocks: List[ContentBlock] = []

    def add(self, kind: BlockKind, text: str, level: Optional[int] = None):
        if kind is BlockKind.CODE:
            text = text.strip("\n")
            if not text.strip():
                return
        else:
            text = _normalize(text)
            if not text:
                return
        self.blocks.append(ContentBlock(kind, text, level))

    def walk_container(self, element: _Element):
        run: List[Node] = []
        for child in element.children:
            if isinstance(child, str) or child.tag in INLINE_TAGS:
                run.append(child)
            else:
                self.flush_run(run)
                run = []
                self.visit_block(child)
        self.flush_run(run)

    def flush_run(self, run: List[Node]):
        if not run:
            return
        # A run made only of <code> elements is a code block
        has_code = False
        for node in run:
            if isinstance(node, str):
                if node.strip():
                    break
            elif node.tag != "code":
                break
            else:
                has_code = True
        else:
            if has_code:
                self.add(BlockKind.CODE, _raw_text(run))
                return
        self.add(BlockKind.PARAGRAPH, _inline_text(run))

    def visit_block(self, element: _Element):
        tag = element.tag
        if tag in HEADING_LEVELS:
            self.add(BlockKind.HEADING, _inline_text(element.children), HEADING_LEVELS[tag])
        elif tag == "p":
            self.add(BlockKind.PARAGRAPH, _inline_text(element.children))
        elif tag in LIST_KINDS:
            self.visit_list(element, LIST_KINDS[tag])
        elif tag == "li":
            self.visit_list_item(element, BlockKind.BULLETED_ITEM)
        elif tag == "blockquote":
            self.add(BlockKind.QUOTE, _inline_text(element.children))
        elif tag == "pre":
            self.add(BlockKind.CODE, _raw_text(element.children))
        elif tag in CONTAINER_TAGS:
            self.walk_container(element)
        elif tag in VOID_TAGS:
            return
        else:
            logger.debug(f"Converting unsupported <{tag}> element to a paragraph")
            self.add(BlockKind.PARAGRAPH, _inline_text(element.children))

    def visit_list(self, element: _Element, kind: BlockKind):
        for child in element.children:
            if isinstance(child, str):
                self.add(kind, _inline_text([child]))
            elif child.tag == "li":
                self.visit_list_item(child, kind)
            elif child.tag in LIST_KINDS:
                self.visit_list(child, LIST_KINDS[child.tag])
            elif child.tag in INLINE_TAGS:
                self.add(kind, _inline_text([child]))
            else:
                self.visit_block(child)

    def visit_list_item(self, element: _Element, kind: BlockKind):
        # Nested lists are flattened: text before and after them stays in order
        pieces: List[Node] = []
        for child in element.children:
            if isinstance(child, _Element) and child.tag in LIST_KINDS:
                self.add(kind, _inline_text(pieces))
                pieces = []
                self.visit_list(child, LIST_KINDS[child.tag])
            else:
                pieces.append(child)
        self.add(kind, _inline_text(pieces))


def read_plain_text(rich_text: Optional[List[Dict[str, Any]]]) -> str:
    """Concatenate the text of a Notion rich_text array."""
    parts = []
    for item in rich_text or []:
        text = item.get("plain_text")
        if text is None:
            text = (item.get("text") or {}).get("content", "")
        if not text and item.get("type") == "equation":
            text = (item.get("equation") or {}).get("expression", "")
        parts.append(text or "")
    return "".join(parts)


def to_rich_text(text: str) -> List[Dict[str, Any]]:
    """Plain-text rich_text array, split below the Notion content limit."""
    return [
        {"type": "text", "text": {"content": text[start:start + RICH_TEXT_LIMIT]}}
        for start in range(0, len(text), RICH_TEXT_LIMIT)
    ]


class ContentCodec:
    """Stateless transcoder between note HTML and Notion block payloads."""

    def encode(self, markup: str) -> List[ContentBlock]:
        """
        Split an HTML note body into canonical blocks.

        Args:
            markup: HTML content of a note

        Returns:
            Blocks in document order. Never raises: unrecognized markup
            becomes paragraphs.
        """
        collector = _BlockCollector()
        collector.walk_container(parse_html(markup))
        return collector.blocks

    def to_notion(self, blocks: Sequence[ContentBlock]) -> List[Dict[str, Any]]:
        """Build Notion block objects for pages.create / blocks.children.append."""
        return [self._notion_block(block) for block in blocks]

    def from_notion(self, notion_blocks: Sequence[Dict[str, Any]]) -> List[ContentBlock]:
        """
        Map Notion blocks onto canonical blocks.

        Other block types that carry rich text become paragraphs; blocks
        without text (images, dividers, empty paragraphs) are skipped.
        """
        blocks = []
        for notion_block in notion_blocks:
            block_type = notion_block.get("type")
            body = notion_block.get(block_type) or {}
            text = read_plain_text(body.get("rich_text"))
            if not text.strip():
                continue

            if block_type in NOTION_HEADINGS:
                blocks.append(ContentBlock.heading(NOTION_HEADINGS[block_type], text))
            elif block_type in KINDS_BY_NOTION_TYPE:
                blocks.append(ContentBlock(KINDS_BY_NOTION_TYPE[block_type], text))
            else:
                logger.debug(f"Converting unsupported Notion block type {block_type} to a paragraph")
                blocks.append(ContentBlock.paragraph(text))
        return blocks

    def to_html(self, blocks: Sequence[ContentBlock]) -> str:
        """Render canonical blocks as minimal HTML, one element per line."""
        parts: List[str] = []
        open_list: Optional[str] = None
        items: List[str] = []

        def close_list():
            if open_list:
                parts.append(f"<{open_list}>{''.join(items)}</{open_list}>")
            items.clear()

        for block in blocks:
            list_tag = {BlockKind.BULLETED_ITEM: "ul", BlockKind.NUMBERED_ITEM: "ol"}.get(block.kind)
            if list_tag != open_list:
                close_list()
                open_list = list_tag
            if list_tag:
                items.append(f"<li>{_escape_lines(block.text)}</li>")
            elif block.kind is BlockKind.HEADING:
                parts.append(f"<h{block.level}>{_escape_lines(block.text)}</h{block.level}>")
            elif block.kind is BlockKind.QUOTE:
                parts.append(f"<blockquote>{_escape_lines(block.text)}</blockquote>")
            elif block.kind is BlockKind.CODE:
                parts.append(f"<pre><code>{html.escape(block.text, quote=False)}</code></pre>")
            else:
                parts.append(f"<p>{_escape_lines(block.text)}</p>")
        close_list()

        return "\n".join(parts)

    def decode(self, notion_blocks: Sequence[Dict[str, Any]]) -> str:
        """
        Render Notion blocks as note HTML.

        Args:
            notion_blocks: Block objects as returned by blocks.children.list

        Returns:
            HTML body for the local note
        """
        return self.to_html(self.from_notion(notion_blocks))

    @staticmethod
    def strip_markup(markup: str) -> str:
        return strip_markup(markup)

    @staticmethod
    def _notion_block(block: ContentBlock) -> Dict[str, Any]:
        if block.kind is BlockKind.HEADING:
            block_type = f"heading_{block.level}"
        else:
            block_type = NOTION_TYPES[block.kind]

        body: Dict[str, Any] = {"rich_text": to_rich_text(block.text)}
        if block.kind is BlockKind.CODE:
            body["language"] = "plain text"

        return {"object": "block", "type": block_type, block_type: body}


def _escape_lines(text: str) -> str:
    return "<br>".join(html.escape(line, quote=False) for line in text.split("\n"))
