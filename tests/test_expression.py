"""Unit tests for the boolean tag expression lexer, parser and tree."""

import pytest
from media_index.errors import (
    ExpressionError,
    InvalidExpressionArityError,
    MismatchedParenthesesError,
)
from media_index.expression import (
    And,
    Expression,
    ExpressionLexer,
    Not,
    Operator,
    Or,
    ShuntingYardParser,
    Tag,
    TokenType,
    build_tree,
)


def lex(text):
    return [t.value for t in ExpressionLexer(text)]


class TestLexer:
    def test_symbols_and_punctuation(self):
        assert lex("a & (b | !c)") == ["a", "&", "(", "b", "|", "!", "c", ")"]

    def test_lower_cases_and_trims(self):
        assert lex("  Foo-Bar&BAZ  ") == ["foo-bar", "&", "baz"]

    def test_whitespace_separates_symbols(self):
        assert lex("daft punk") == ["daft", "punk"]

    def test_token_types(self):
        tokens = ExpressionLexer("!a").tokenize()
        assert tokens[0].type == TokenType.PUNCTUATION
        assert tokens[1].type == TokenType.SYMBOL

    def test_empty_input(self):
        assert lex("") == []
        assert lex("   ") == []

    def test_lex_returns_none_at_end(self):
        lexer = ExpressionLexer("a")
        assert lexer.lex().value == "a"
        assert lexer.lex() is None
        assert lexer.lex() is None

    def test_odd_characters_stay_in_symbols(self):
        assert lex("c++ & *") == ["c++", "&", "*"]


class TestShuntingYard:
    def test_reference_expression(self):
        tokens = lex("a & (b | !c)")
        assert ShuntingYardParser().parse(tokens) == ["a", "b", "c", "!", "|", "&"]

    def test_not_binds_tighter_than_and(self):
        assert ShuntingYardParser().parse(lex("!a & b")) == ["a", "!", "b", "&"]

    def test_equal_precedence_is_left_associative(self):
        assert ShuntingYardParser().parse(lex("a | b & c")) == ["a", "b", "|", "c", "&"]

    def test_right_associative_operator(self):
        table = {"^": Operator(precedence=1, associativity="right")}
        assert ShuntingYardParser(table).parse(["a", "^", "b", "^", "c"]) == [
            "a", "b", "c", "^", "^",
        ]

    def test_unclosed_parenthesis(self):
        with pytest.raises(MismatchedParenthesesError):
            ShuntingYardParser().parse(lex("(a & b"))

    def test_unopened_parenthesis(self):
        with pytest.raises(MismatchedParenthesesError):
            ShuntingYardParser().parse(lex("a & b)"))


class TestBuildTree:
    def test_shape(self):
        tree = build_tree(["a", "b", "c", "!", "|", "&"])
        assert tree == And(Tag("a"), Or(Tag("b"), Not(Tag("c"))))

    def test_missing_operand(self):
        with pytest.raises(InvalidExpressionArityError, match="Invalid number of arguments"):
            build_tree(["a", "&"])

    def test_dangling_not(self):
        with pytest.raises(InvalidExpressionArityError):
            build_tree(["!"])

    def test_leftover_operands(self):
        with pytest.raises(InvalidExpressionArityError):
            build_tree(["a", "b"])

    def test_empty(self):
        with pytest.raises(InvalidExpressionArityError):
            build_tree([])


class TestExpressionMatch:
    def test_and_or_not(self):
        expr = Expression("cat & (outdoor | !indoor)")
        assert expr.match(["cat", "outdoor"])
        assert expr.match(["cat"])
        assert not expr.match(["cat", "indoor"])
        assert not expr.match(["dog", "outdoor"])

    def test_case_insensitive(self):
        assert Expression("CAT").match(["Cat"])

    def test_list_haystack_is_membership(self):
        expr = Expression("foo")
        assert expr.match(["foo", "bar"])
        assert not expr.match(["foo-bar"])

    def test_multi_word_list_entries(self):
        assert Expression("jane & doe").match(["Jane Doe"])

    def test_string_haystack_is_containment(self):
        expr = Expression("holiday & !work")
        assert expr.match("/library/holiday/2019/beach.jpg")
        assert not expr.match("/library/work/holiday.jpg")

    def test_wildcard_matches_everything(self):
        expr = Expression("*")
        assert expr.match([])
        assert expr.match("")
        assert expr.match(["anything"])

    def test_wildcard_inside_expression(self):
        assert Expression("* & !nsfw").match([])
        assert not Expression("* & !nsfw").match(["nsfw"])

    @pytest.mark.parametrize("haystack", [[], ["a"], ["b"], ["a", "b"], ["c"]])
    def test_de_morgan(self, haystack):
        lhs = Expression("!(a & b)").match(haystack)
        rhs = Expression("!a | !b").match(haystack)
        assert lhs == rhs

    def test_deterministic(self):
        expr = Expression("a | b")
        assert expr.match(["b"]) == expr.match(["b"])

    def test_to_string(self):
        assert str(Expression("a & !b")) == "AND(a, NOT(b))"

    def test_invalid_expressions_raise_expression_error(self):
        for text in ["(a", "a &", "a b", "&", ""]:
            with pytest.raises(ExpressionError):
                Expression(text)
