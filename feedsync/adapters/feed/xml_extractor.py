# feedsync/adapters/feed/xml_extractor.py
from __future__ import annotations

from typing import Any, Union

from lxml import etree

from ...domain.parsing import decode_unicode_escapes
from ...errors import EmptyFeedError, FeedParseError

ITEM_TAG = "property"

# Leaves with attributes that carry a taxonomy term: <type id="3">Office</type>
TAXONOMY_TAGS = frozenset({"type", "availability", "property_type", "submarket"})

ElementValue = Union[str, dict[str, Any], list[Any]]
ElementMap = dict[str, ElementValue]

RawFeedItem = etree._Element

MSG_INVALID_XML = "Invalid XML format."
MSG_NO_ITEMS = "No properties found in XML feed. Please check the feed format."


def _parser() -> etree.XMLParser:
    # feed is untrusted: no DTD entities, no network lookups
    return etree.XMLParser(resolve_entities=False, no_network=True, recover=False, huge_tree=True)


def parse_document(body: bytes) -> etree._Element:
    if not body or not body.strip():
        raise FeedParseError(MSG_INVALID_XML)
    try:
        return etree.fromstring(body, parser=_parser())
    except etree.XMLSyntaxError as e:
        raise FeedParseError(MSG_INVALID_XML) from e


def _local_name(el: etree._Element) -> str:
    return etree.QName(el).localname


def _text(el: etree._Element) -> str:
    return (el.text or "").strip()


def item_external_id(item: RawFeedItem) -> str:
    for child in item:
        if isinstance(child.tag, str) and _local_name(child) == "id":
            return _text(child)
    return ""


def parse_feed(body: bytes) -> list[RawFeedItem]:
    """
    Parse the feed body and return the <property> items that carry an id, in feed order.

    Raises FeedParseError for unparseable input and EmptyFeedError (a FeedParseError)
    when the document parses but holds no usable items.
    """
    root = parse_document(body)
    items = [
        child
        for child in root
        if isinstance(child.tag, str) and _local_name(child) == ITEM_TAG and item_external_id(child)
    ]
    if not items:
        raise EmptyFeedError(MSG_NO_ITEMS)
    return items


def _leaf_value(el: etree._Element) -> ElementValue:
    name = _local_name(el)
    content = decode_unicode_escapes(_text(el))

    if not el.attrib:
        return content

    if name in TAXONOMY_TAGS:
        return {"name": content, "id": el.attrib.get("id", "")}

    out: dict[str, Any] = {}
    if content:
        out["url"] = content
    for attr_name, attr_value in el.attrib.items():
        out[etree.QName(attr_name).localname] = decode_unicode_escapes(attr_value)
    return out


def _element_value(el: etree._Element) -> ElementValue:
    if any(isinstance(c.tag, str) for c in el):
        return extract_element_map(el)
    return _leaf_value(el)


def extract_element_map(node: etree._Element) -> ElementMap:
    """
    Transcribe one element's children into a nested mapping.

    Siblings sharing a tag become an ordered list under that tag; singletons stay
    scalar (or nested mapping). Comments and processing instructions are ignored.
    """
    grouped: dict[str, list[etree._Element]] = {}
    for child in node:
        if not isinstance(child.tag, str):
            continue
        grouped.setdefault(_local_name(child), []).append(child)

    out: ElementMap = {}
    for name, children in grouped.items():
        if len(children) == 1:
            out[name] = _element_value(children[0])
        else:
            out[name] = [_element_value(c) for c in children]
    return out


def as_list(value: Any) -> list[Any]:
    """
    The one place where "single item or list of items" gets decided.
    None / "" -> [], list -> itself, anything else -> [value].
    """
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def child_list(value: Any, child: str) -> list[Any]:
    """Items under a wrapper element: <images><image/>...</images> -> list of image values."""
    if not isinstance(value, dict):
        return []
    return as_list(value.get(child))
