import pytest

from feedsync.adapters.feed.xml_extractor import (
    MSG_INVALID_XML,
    MSG_NO_ITEMS,
    as_list,
    child_list,
    extract_element_map,
    item_external_id,
    parse_feed,
)
from feedsync.errors import EmptyFeedError, FeedParseError

FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<properties>
  <property>
    <id>1001</id>
    <name>Tower \\u00a3 House</name>
    <types><type id="3">Office</type><type id="7">Retail</type></types>
    <availabilities><type id="1">To Let</type></availabilities>
    <images><image>https://img.example.com/a.jpg</image></images>
    <files><file type="11" name="Brochure">https://cdn.example.com/b.pdf</file></files>
    <!-- comment -->
  </property>
  <property>
    <name>no id here</name>
  </property>
  <property>
    <id>1002</id>
  </property>
</properties>
"""


def test_parse_feed_keeps_items_with_ids_in_order():
    items = parse_feed(FEED)
    assert [item_external_id(i) for i in items] == ["1001", "1002"]


def test_element_map_groups_repeated_siblings():
    item = parse_feed(FEED)[0]
    m = extract_element_map(item)

    assert m["id"] == "1001"
    assert m["name"] == "Tower £ House"
    assert m["types"] == {"type": [{"name": "Office", "id": "3"}, {"name": "Retail", "id": "7"}]}
    # single child stays scalar
    assert m["availabilities"] == {"type": {"name": "To Let", "id": "1"}}
    assert m["images"] == {"image": "https://img.example.com/a.jpg"}


def test_attribute_leaves_become_mappings():
    m = extract_element_map(parse_feed(FEED)[0])
    assert m["files"]["file"] == {"url": "https://cdn.example.com/b.pdf", "type": "11", "name": "Brochure"}


def test_invalid_xml_raises_parse_error():
    with pytest.raises(FeedParseError) as exc:
        parse_feed(b"<properties><property>")
    assert str(exc.value) == MSG_INVALID_XML

    with pytest.raises(FeedParseError):
        parse_feed(b"   ")


def test_document_without_items_is_empty_feed():
    with pytest.raises(EmptyFeedError) as exc:
        parse_feed(b"<properties><property><name>x</name></property></properties>")
    assert str(exc.value) == MSG_NO_ITEMS


def test_as_list_and_child_list():
    assert as_list(None) == []
    assert as_list("") == []
    assert as_list("a") == ["a"]
    assert as_list(["a", "b"]) == ["a", "b"]

    assert child_list({"image": "x"}, "image") == ["x"]
    assert child_list({"image": ["x", "y"]}, "image") == ["x", "y"]
    assert child_list("", "image") == []
