import pytest
from hypothesis import given, settings, strategies as st

from pageflow.document import (
    BlockNode,
    Document,
    assign_node_ids,
    bullet_list,
    document_from_dict,
    document_to_dict,
    empty_document,
    has_actual_content,
    heading,
    is_really_empty,
    node_ids,
    paragraph,
    resolve,
    top_level_offsets,
)


def test_node_sizes() -> None:
    assert paragraph("abc").size == 5
    assert paragraph().size == 2
    assert BlockNode("horizontalRule").size == 1
    assert bullet_list(["a", "b"]).size == 12
    assert Document((paragraph("abc"), paragraph())).size == 7


def test_top_level_offsets() -> None:
    doc = Document((paragraph("ab"), heading("x"), paragraph()))
    assert top_level_offsets(doc) == [0, 4, 7, 9]


def test_resolve_returns_nesting_chain() -> None:
    doc = Document((paragraph("x"), bullet_list(["a"])))
    assert [n.type for n, _ in resolve(doc, 6)] == ["bulletList", "listItem", "paragraph"]
    assert resolve(doc, 3) == []


@pytest.mark.parametrize(
    "doc, expected",
    [
        (Document(()), True),
        (empty_document(), True),
        (Document((paragraph("   "),)), False),
        (Document((paragraph(), paragraph())), False),
        (Document((BlockNode("horizontalRule"),)), False),
        (Document((paragraph("a"),)), False),
    ],
)
def test_is_really_empty(doc: Document, expected: bool) -> None:
    assert is_really_empty(doc) is expected


def test_whitespace_is_not_content() -> None:
    assert not has_actual_content(Document((paragraph("  \n"),)))
    assert has_actual_content(Document((paragraph(" a "),)))


def test_assign_ids_fills_nested_blocks() -> None:
    ticks = iter(range(100))
    doc = assign_node_ids(
        Document((bullet_list(["a"]),)), lambda: f"id{next(ticks)}"
    )
    outer = doc.content[0]
    assert outer.id == "id2"
    assert outer.content[0].id == "id1"
    assert outer.content[0].content[0].id == "id0"
    assert outer.content[0].content[0].content[0].id is None


@given(st.lists(st.one_of(st.none(), st.text(min_size=1, max_size=6)), max_size=20))
@settings(deadline=None)
def test_assign_ids_never_replaces_existing(ids: list) -> None:
    doc = Document(tuple(paragraph("t", node_id=i) for i in ids))
    stamped = assign_node_ids(doc)
    assert all(
        new == old for old, new in zip(ids, node_ids(stamped.content)) if old
    )
    assert all(node_ids(stamped.content))


def test_serialization_roundtrip() -> None:
    doc = Document((heading("Title", 2, node_id="h"), bullet_list(["a"], node_id="l")))
    data = document_to_dict(doc)
    assert data["type"] == "doc"
    assert data["content"][0] == {
        "type": "heading",
        "attrs": {"level": 2, "id": "h"},
        "content": [{"type": "text", "text": "Title"}],
    }
    assert document_from_dict(data) == doc


def test_document_from_bare_list() -> None:
    doc = document_from_dict([{"type": "paragraph", "attrs": {"id": "a"}}])
    assert node_ids(doc.content) == ["a"]


@pytest.mark.parametrize("data", [{"type": "page"}, [{"text": "no type"}], ["oops"]])
def test_document_from_dict_rejects_garbage(data) -> None:
    with pytest.raises(ValueError):
        document_from_dict(data)
