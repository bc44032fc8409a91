# titlequote/adapters/lvis_xml/tree.py
"""
Namespace-agnostic helpers over lxml trees.

LVIS responses are inconsistent about prefixes (MISMO nodes show up both
namespaced and bare), so lookups here go by local name only.
"""
from __future__ import annotations

from typing import Iterator

from lxml import etree

from ...domain.errors import MalformedUpstreamResponse

LVIS_NS = "http://services.firstam.com/lvis/v2.0"
MISMO_NS = "http://www.mismo.org/residential/2009/schemas"
XLINK_NS = "http://www.w3.org/1999/xlink"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

XLINK_LABEL = f"{{{XLINK_NS}}}label"

# No DTDs, no entity expansion, no network: the payload comes from a third party.
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=False, huge_tree=False)


def parse_xml(raw: bytes | str) -> etree._Element:
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if not raw or not raw.strip():
        raise MalformedUpstreamResponse("empty_response")
    try:
        return etree.fromstring(raw, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise MalformedUpstreamResponse("invalid_xml", details=str(e)) from e


def to_xml(el: etree._Element) -> str:
    # tail text belongs to the parent, not to the fragment
    return etree.tostring(el, encoding="unicode", with_tail=False)


def local(el: etree._Element) -> str:
    if not isinstance(el.tag, str):  # comments / processing instructions
        return ""
    return etree.QName(el).localname


def children(el: etree._Element | None, name: str) -> list[etree._Element]:
    if el is None:
        return []
    return [c for c in el if local(c) == name]


def child(el: etree._Element | None, name: str) -> etree._Element | None:
    if el is None:
        return None
    for c in el:
        if local(c) == name:
            return c
    return None


def find_path(el: etree._Element | None, *names: str) -> etree._Element | None:
    cur = el
    for name in names:
        cur = child(cur, name)
        if cur is None:
            return None
    return cur


def require_path(el: etree._Element, *names: str) -> etree._Element:
    found = find_path(el, *names)
    if found is None:
        raise MalformedUpstreamResponse("missing_node", details="/".join(names))
    return found


def iter_named(el: etree._Element, name: str) -> Iterator[etree._Element]:
    for node in el.iter():
        if local(node) == name:
            yield node


def first_named(el: etree._Element | None, name: str) -> etree._Element | None:
    if el is None:
        return None
    return next(iter_named(el, name), None)


def text_of(el: etree._Element | None, name: str, default: str = "") -> str:
    node = child(el, name)
    if node is None or node.text is None:
        return default
    return node.text.strip()


def has_text(el: etree._Element | None, name: str) -> bool:
    node = child(el, name)
    return node is not None and bool((node.text or "").strip())


def xlink_label(el: etree._Element) -> str:
    # Some responses drop the xlink prefix binding; fall back to a bare attribute.
    return el.get(XLINK_LABEL) or el.get("label") or ""
