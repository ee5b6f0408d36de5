import pytest

from gorgon.errors import ParseError
from gorgon.parser import (
    DEFAULT_SLOT,
    Invocation,
    Text,
    iter_invocations,
    parse_template,
    scan_placeholders,
)


def test_plain_markup_is_one_text_node():
    result = parse_template("<p>Hello <em>world</em></p>")
    assert result.nodes == (Text("<p>Hello <em>world</em></p>"),)
    assert result.targets == frozenset()


def test_self_closing_invocation_with_nested_identifier():
    result = parse_template('<div><x-ui/button label="Go" /></div>')
    assert result.nodes[0] == Text("<div>")
    node = result.nodes[1]
    assert isinstance(node, Invocation)
    assert node.target_id == "ui/button"
    assert node.attributes == {"label": "Go"}
    assert node.default_slot == ()
    assert result.nodes[2] == Text("</div>")
    assert result.targets == {"ui/button"}


def test_self_closing_without_space():
    node = parse_template("<x-card/>").nodes[0]
    assert node.target_id == "card"


def test_named_slot_and_default_slot():
    source = '<x-card><slot name="header">@{title}</slot>Body text</x-card>'
    node = parse_template(source).nodes[0]
    assert node.slots == {"header": (Text("@{title}"),)}
    assert node.default_slot == (Text("Body text"),)


def test_attribute_forms():
    node = parse_template("<x-btn a='one' b=two disabled c=\"\" />").nodes[0]
    assert node.attributes == {"a": "one", "b": "two", "disabled": "", "c": ""}


def test_duplicate_attribute_keeps_first():
    node = parse_template('<x-btn a="1" a="2"/>').nodes[0]
    assert node.attributes == {"a": "1"}


def test_targets_include_nested_invocations():
    source = '<x-a><slot name="s"><x-b/></slot><x-c><x-d/></x-c></x-a>'
    result = parse_template(source)
    assert result.targets == {"a", "b", "c", "d"}
    assert [inv.target_id for inv in iter_invocations(result.nodes)] == ["a", "b", "c", "d"]


def test_line_number_is_recorded():
    node = parse_template("<p>\n\n<x-footer/>").nodes[1]
    assert node.line == 3


def test_comments_are_not_scanned():
    source = "<!-- <x-card> is documented here -->"
    result = parse_template(source)
    assert result.nodes == (Text(source),)
    assert not result.targets


def test_script_and_style_bodies_are_not_scanned():
    source = '<script>const s = "<x-card>";</script><style>x-card{}</style>'
    result = parse_template(source)
    assert result.targets == frozenset()
    assert "".join(n.value for n in result.nodes) == source


def test_invalid_identifier_is_plain_text():
    result = parse_template("<x-1>")
    assert result.nodes == (Text("<x-1>"),)


def test_literal_slot_tags_inside_slot_block():
    source = '<x-a><slot name="s"><slot>inner</slot></slot></x-a>'
    node = parse_template(source).nodes[0]
    assert node.slots["s"] == (Text("<slot>inner</slot>"),)


def test_unterminated_invocation_reports_position():
    with pytest.raises(ParseError) as exc:
        parse_template("ok\n  <x-card>unclosed", "/about/")
    error = exc.value
    assert error.unit_id == "/about/"
    assert error.message == "unterminated <x-card>"
    assert (error.line, error.column) == (2, 3)
    assert "line 2, column 3" in str(error)


def test_mismatched_closing_tag():
    with pytest.raises(ParseError, match="mismatched closing tag </x-b>"):
        parse_template("<x-a></x-b>")


def test_unexpected_closing_tag():
    with pytest.raises(ParseError, match="unexpected closing tag"):
        parse_template("text</x-a>")


def test_unterminated_open_tag():
    with pytest.raises(ParseError, match="unterminated tag <x-card>"):
        parse_template('<x-card title="x"')


def test_malformed_attributes():
    with pytest.raises(ParseError, match="malformed attributes"):
        parse_template('<x-card "oops">')


def test_slot_requires_name():
    with pytest.raises(ParseError, match="requires a name"):
        parse_template("<x-card><slot>x</slot></x-card>")


def test_duplicate_slot_names():
    with pytest.raises(ParseError, match="duplicate slot 'a'"):
        parse_template('<x-c><slot name="a">1</slot><slot name="a">2</slot></x-c>')


def test_invocation_closed_inside_open_slot():
    with pytest.raises(ParseError, match="still open"):
        parse_template('<x-a><slot name="s"></x-a>')


def test_placeholders_are_collected():
    result = parse_template('@{title} @{yield} @{yield footer} @{var("site.name")} @{ title }')
    assert result.params == {"title"}
    assert result.slot_refs == {DEFAULT_SLOT, "footer"}
    assert result.variables == {"site.name"}


def test_scan_placeholders_single_quoted_var():
    params, slots, variables = scan_placeholders("@{var('base_url')}")
    assert params == frozenset()
    assert slots == frozenset()
    assert variables == {"base_url"}
