"""Tests for ormgraph.expression parsing: grammar, rendering and syntax errors."""

import pytest

from ormgraph.errors import RelationExpressionError, ValidationError
from ormgraph.expression import RelationExpression
from ormgraph.expression.lexer import RelationExpressionLexer


def parse(text):
    return RelationExpression.parse(text)


class TestLexer:

    def test_tokens(self):
        lexer = RelationExpressionLexer()
        lexer.build()
        tokens = lexer.tokenize("a.[b(c, d)^2, +e, *]")
        assert [token.type for token in tokens] == [
            "IDENTIFIER", "DOT", "LBRACKET", "IDENTIFIER", "LPAREN", "IDENTIFIER", "COMMA",
            "IDENTIFIER", "RPAREN", "CARET", "INTEGER", "COMMA", "PLUS", "IDENTIFIER", "COMMA",
            "STAR", "RBRACKET",
        ]
        assert tokens[10].value == 2

    def test_illegal_character(self):
        lexer = RelationExpressionLexer()
        lexer.build()
        with pytest.raises(RelationExpressionError, match="illegal character '#' at position 1"):
            lexer.tokenize("a#")


class TestParse:

    def test_empty(self):
        for text in ("", "   ", None):
            expression = parse(text)
            assert expression.name == ""
            assert expression.is_empty

    def test_single_relation(self):
        expression = parse("pets")
        assert list(expression.children) == ["pets"]
        pets = expression.children["pets"]
        assert pets.name == "pets"
        assert pets.args == []
        assert not pets.recursive

    def test_nested_and_grouped(self):
        expression = parse("children.[pets(dogs), movies]")
        children = expression.children["children"]
        assert list(children.children) == ["pets", "movies"]
        assert children.children["pets"].args == ["dogs"]

    def test_top_level_list(self):
        assert list(parse("pets, movies.actors").children) == ["pets", "movies"]
        assert list(parse("[pets, movies]").children) == ["pets", "movies"]

    def test_filters(self):
        assert parse("pets(dogs, orderByName)").children["pets"].args == ["dogs", "orderByName"]
        assert parse("pets()").children["pets"].args == []

    def test_recursion(self):
        unbounded = parse("children^").children["children"]
        assert unbounded.recursive and unbounded.max_depth is None
        bounded = parse("children^3").children["children"]
        assert bounded.recursive and bounded.max_depth == 3

    def test_plus_is_unbounded_recursion(self):
        assert parse("+children") == parse("children^")
        assert parse("+children(adults)").children["children"].args == ["adults"]

    def test_wildcard(self):
        expression = parse("*.pets")
        assert list(expression.children) == ["*"]
        assert list(expression.children["*"].children) == ["pets"]

    def test_repeated_paths_are_merged(self):
        expression = parse("children.pets, children(adults).movies")
        children = expression.children["children"]
        assert children.args == ["adults"]
        assert list(children.children) == ["pets", "movies"]

    def test_whitespace_is_ignored(self):
        assert parse(" children . [ pets ( dogs ) ,movies ] ") == parse("children.[pets(dogs), movies]")

    def test_nodes_share_the_filter_registry(self):
        expression = parse("children.pets")
        assert expression.children["children"].children["pets"].filters is expression.filters

    def test_parse_expression_returns_clone(self):
        expression = parse("pets")
        copy = RelationExpression.parse(expression)
        assert copy == expression
        assert copy is not expression
        copy.add_child(RelationExpression(name="movies"))
        assert list(expression.children) == ["pets"]


class TestParseErrors:

    @pytest.mark.parametrize("text, message", [
        ("pets.", "unexpected end of relation expression"),
        ("pets(", "unexpected end of relation expression"),
        ("[pets", "unexpected end of relation expression"),
        ("pets..movies", r"syntax error at '\.' \(position 5\)"),
        ("pets movies", r"syntax error at 'movies' \(position 5\)"),
        ("pets)", r"syntax error at '\)'"),
        ("pets.^", r"syntax error at '\^'"),
        ("pets%", "illegal character '%'"),
        ("children^0", "recursion depth must be at least 1, got 0"),
    ])
    def test_malformed(self, text, message):
        with pytest.raises(RelationExpressionError, match=message):
            parse(text)

    def test_error_is_a_validation_error(self):
        with pytest.raises(ValidationError) as error:
            parse("pets.")
        assert error.value.data == {"expression": "unexpected end of relation expression"}

    def test_non_string(self):
        with pytest.raises(RelationExpressionError, match="must be a string, got int"):
            parse(42)


class TestToString:

    @pytest.mark.parametrize("text, rendered", [
        ("pets", "pets"),
        ("pets, movies", "pets, movies"),
        ("children.[pets(dogs), movies]", "children.[pets(dogs), movies]"),
        ("children.[pets]", "children.pets"),
        ("a.b.c", "a.b.c"),
        ("parent^3", "parent^3"),
        ("+parent", "parent^"),
        ("pets()", "pets"),
        ("*", "*"),
        ("*(dogs).owner", "*(dogs).owner"),
        ("children^.pets(dogs, orderByName)", "children^.pets(dogs, orderByName)"),
    ])
    def test_rendering(self, text, rendered):
        assert parse(text).to_string() == rendered
        assert str(parse(text)) == rendered

    @pytest.mark.parametrize("text", [
        "pets",
        "children.[pets(dogs), movies.actors^2]",
        "[a, b(x, y).[c, d^], e]",
        "*.children^",
        "+parent(adults).pets",
    ])
    def test_round_trip(self, text):
        expression = parse(text)
        assert parse(expression.to_string()) == expression
