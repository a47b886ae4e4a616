import pytest

from policyfold.core.errors import StructuralError
from policyfold.core.tree import parse_document


def test_pretty_print_round_trip_keeps_namespaces_and_attribute_order():
    text = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<x:Root xmlns:x="urn:example" Version="2" Alpha="1">'
        '<x:Child Id="c1">  hello  </x:Child>'
        "<x:Empty/>"
        "</x:Root>"
    )

    pretty = parse_document(text).to_pretty_string()

    assert pretty == (
        '<x:Root xmlns:x="urn:example" Version="2" Alpha="1">\n'
        '  <x:Child Id="c1">  hello  </x:Child>\n'
        "  <x:Empty/>\n"
        "</x:Root>\n"
    )
    # idempotent
    assert parse_document(pretty).to_pretty_string() == pretty


def test_default_namespace_elements_stay_unprefixed():
    tree = parse_document('<Root xmlns="urn:default"><Item Key="k">v</Item></Root>')

    assert tree.to_string() == '<Root xmlns="urn:default"><Item Key="k">v</Item></Root>'
    assert tree.find_all("Item") == [tree.element_children(tree.root)[0]]


def test_whitespace_only_text_is_dropped_and_size_is_compact():
    tree = parse_document("<a>\n  <b>é</b>\n</a>")

    assert tree.to_string() == "<a><b>é</b></a>"
    assert tree.byte_size() == len("<a><b>é</b></a>".encode("utf-8"))


def test_escaping_survives_round_trip():
    text = '<a note="x &amp; &quot;y&quot;">1 &lt; 2</a>'
    tree = parse_document(text)

    assert tree.get(tree.root, "note") == 'x & "y"'
    assert tree.text(tree.root) == "1 < 2"
    assert tree.to_string() == text


def test_mixed_content_and_comments_pretty_print_on_their_own_lines():
    tree = parse_document("<a>lead<!-- note --><b/>tail</a>")

    assert tree.to_pretty_string() == "<a>\n  lead\n  <!-- note -->\n  <b/>\n  tail\n</a>\n"


def test_detach_and_insert_move_subtrees():
    tree = parse_document("<r><p1><x/></p1><p2/></r>")
    p1, p2 = tree.element_children(tree.root)
    (x,) = tree.element_children(p1)

    old_parent, position = tree.detach(x)
    assert (old_parent, position) == (p1, 0)
    assert not tree.is_attached(x)

    tree.append(p2, x)
    assert tree.to_string() == "<r><p1/><p2><x/></p2></r>"

    tree.insert(old_parent, position, x)
    assert tree.to_string() == "<r><p1><x/></p1><p2/></r>"


def test_shallow_clone_keeps_tag_and_attributes_only():
    tree = parse_document('<r><p Id="1"><c/>text</p></r>')
    (p,) = tree.element_children(tree.root)

    shell = tree.clone(p, deep=False)
    deep = tree.clone(p)

    assert tree.to_string(shell) == '<p Id="1"/>'
    assert tree.to_string(deep) == '<p Id="1"><c/>text</p>'
    assert not tree.is_attached(shell)


def test_insert_after_places_node_next_to_sibling():
    tree = parse_document("<r><a/><c/></r>")
    a, _ = tree.element_children(tree.root)

    tree.insert_after(a, tree.new_element("b"))

    assert tree.to_string() == "<r><a/><b/><c/></r>"


def test_set_text_replaces_existing_text():
    tree = parse_document("<r><id>old</id></r>")
    (id_element,) = tree.element_children(tree.root)

    tree.set_text(id_element, "new")

    assert tree.to_string() == "<r><id>new</id></r>"


def test_malformed_xml_raises_structural_error():
    with pytest.raises(StructuralError):
        parse_document("<a><b></a>")


def test_entity_declarations_are_rejected():
    text = '<!DOCTYPE a [<!ENTITY e "boom">]><a>&e;</a>'

    with pytest.raises(StructuralError):
        parse_document(text)
