"""Small selectolax helpers shared by the extractors."""

import logging
from typing import Iterator, List, Optional, Sequence
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

logger = logging.getLogger(__name__)


def parse_html(html: str) -> HTMLParser:
    """Parse markup into a selectolax tree."""
    return HTMLParser(html or "")


def safe_css(root, selector: str) -> List[Node]:
    """Run a CSS query, returning [] when the selector is not supported."""
    try:
        return root.css(selector)
    except Exception as e:
        logger.debug(f"Selector error: {selector[:50]}... - {e}")
        return []


def safe_css_first(root, selector: str) -> Optional[Node]:
    """Run a CSS query for the first match, None when unsupported or absent."""
    nodes = safe_css(root, selector)
    return nodes[0] if nodes else None


def node_text(node: Optional[Node]) -> str:
    """Whitespace-collapsed text of a node (empty string for None)."""
    if node is None:
        return ""
    return " ".join(node.text(separator=" ").split())


def attr(node: Optional[Node], name: str) -> Optional[str]:
    """Attribute value, None when the node or attribute is missing or blank."""
    if node is None:
        return None
    value = node.attributes.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def class_and_id(node: Optional[Node]) -> str:
    """Concatenated id and class attribute of a node, for pattern tests."""
    if node is None:
        return ""
    return f"{node.attributes.get('id') or ''} {node.attributes.get('class') or ''}"


def ancestors(node: Node, limit: int = 25) -> Iterator[Node]:
    """Yield the node's parents, nearest first."""
    current = node.parent
    depth = 0
    while current is not None and depth < limit:
        if current.tag in ("-undef", "html"):
            break
        yield current
        current = current.parent
        depth += 1


def closest(node: Node, predicate) -> Optional[Node]:
    """Nearest ancestor matching the predicate."""
    for parent in ancestors(node):
        if predicate(parent):
            return parent
    return None


def first_text(root, selectors: Sequence[str], max_length: int = 500) -> Optional[str]:
    """Text of the first selector that yields a non-empty, reasonably short string."""
    for selector in selectors:
        text = node_text(safe_css_first(root, selector))
        if text and len(text) < max_length:
            return text
    return None


def first_attr(root, selectors: Sequence[str], names: Sequence[str] = ("src",)) -> Optional[str]:
    """First non-empty attribute out of `names` on the first matching node per selector."""
    for selector in selectors:
        node = safe_css_first(root, selector)
        if node is None:
            continue
        for name in names:
            value = attr(node, name)
            if value:
                return value
    return None


def absolute_url(src: Optional[str], base_url: str) -> Optional[str]:
    """Resolve a possibly relative URL against the page URL."""
    if not src:
        return None
    try:
        return urljoin(base_url, src)
    except ValueError:
        return src
