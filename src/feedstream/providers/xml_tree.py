"""Secure XML parsing into a small attributed node tree.

Feed documents are loosely structured: the same tag can show up once (a
scalar), several times (a list), or carry attributes (``<link href=...>``,
``<guid isPermaLink=...>``). The tree keeps those shapes explicit instead of
guessing, and callers normalize with :func:`as_list` before iterating.

Namespace prefixes are kept verbatim (``content:encoded``, ``yt:videoId``),
DTDs are never loaded and entities are never expanded.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from lxml import etree

from ..errors import UnparsableContent

XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"

# Text fields where publishers sometimes embed raw (unescaped) HTML.
MARKUP_FIELDS = frozenset(
    {
        "title",
        "subtitle",
        "description",
        "summary",
        "content",
        "content:encoded",
        "itunes:summary",
        "media:description",
    }
)


@dataclass(frozen=True, slots=True)
class TextNode:
    text: str


@dataclass(frozen=True, slots=True)
class ElementNode:
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    children: dict[str, Node] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NodeList:
    items: tuple[Node, ...]


Node = TextNode | ElementNode | NodeList


def _secure_parser(encoding: str | None = None) -> etree.XMLParser:
    return etree.XMLParser(
        encoding=encoding,
        resolve_entities=False,
        load_dtd=False,
        dtd_validation=False,
        no_network=True,
        huge_tree=False,
        recover=True,
        remove_comments=True,
        remove_pis=True,
    )


def _prefixed(el: etree._Element, namespace: str | None, localname: str) -> str:
    if not namespace:
        return localname
    if namespace == XML_NAMESPACE:
        return f"xml:{localname}"
    for prefix, uri in (el.nsmap or {}).items():
        if uri == namespace and prefix:
            return f"{prefix}:{localname}"
    return localname


def _tag_name(el: etree._Element) -> str:
    qname = etree.QName(el)
    if el.prefix:
        return f"{el.prefix}:{qname.localname}"
    return qname.localname


def _own_text(el: etree._Element) -> str:
    # Text directly inside the element, including the tails of its children.
    # Unexpanded entity references contribute only their tail.
    parts = [el.text or ""]
    for child in el:
        parts.append(child.tail or "")
    return "".join(parts).strip()


def _inner_markup(el: etree._Element) -> str:
    parts = [el.text or ""]
    for child in el:
        if isinstance(child.tag, str):
            parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
        else:
            parts.append(child.tail or "")
    return "".join(parts).strip()


def _convert(el: etree._Element) -> Node:
    attributes: dict[str, str] = {}
    for key, value in el.attrib.items():
        qname = etree.QName(key)
        attributes[_prefixed(el, qname.namespace, qname.localname)] = value

    element_children = [child for child in el if isinstance(child.tag, str)]
    own_text = _own_text(el)

    is_markup = attributes.get("type") == "xhtml" or (
        element_children and (own_text or _tag_name(el) in MARKUP_FIELDS)
    )
    if is_markup:
        # Inline XHTML or unescaped HTML: keep the markup as the text value.
        return ElementNode(text=_inner_markup(el), attributes=attributes)

    if not element_children and not attributes:
        return TextNode(own_text)

    grouped: dict[str, list[Node]] = {}
    for child in element_children:
        grouped.setdefault(_tag_name(child), []).append(_convert(child))

    children: dict[str, Node] = {}
    for name, nodes in grouped.items():
        children[name] = nodes[0] if len(nodes) == 1 else NodeList(tuple(nodes))

    return ElementNode(text=own_text, attributes=attributes, children=children)


def parse_document(raw: bytes | str) -> tuple[str, Node]:
    """Parse ``raw`` and return ``(root tag, root node)``.

    Raises :class:`UnparsableContent` when no element tree can be recovered.
    """

    if isinstance(raw, str):
        data = raw.strip().encode("utf-8")
        parser = _secure_parser(encoding="utf-8")
    else:
        data = raw.strip()
        parser = _secure_parser()

    if not data:
        raise UnparsableContent("empty document")

    try:
        root = etree.fromstring(data, parser=parser)
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise UnparsableContent(f"not an XML document: {exc}") from exc

    if root is None or not isinstance(root.tag, str):
        raise UnparsableContent("not an XML document")

    return _tag_name(root), _convert(root)


def as_list(node: Node | None) -> list[Node]:
    if node is None:
        return []
    if isinstance(node, NodeList):
        return list(node.items)
    return [node]


def first(node: Node | None) -> Node | None:
    items = as_list(node)
    return items[0] if items else None


def child(node: Node | None, name: str) -> Node | None:
    head = first(node)
    if isinstance(head, ElementNode):
        return head.children.get(name)
    return None


def text_of(node: Node | None) -> str:
    for item in as_list(node):
        if isinstance(item, TextNode) and item.text:
            return item.text
        if isinstance(item, ElementNode) and item.text:
            return item.text
    return ""


def attr(node: Node | None, name: str) -> str | None:
    for item in as_list(node):
        if isinstance(item, ElementNode):
            value = (item.attributes.get(name) or "").strip()
            if value:
                return value
    return None
