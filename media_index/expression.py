"""
Boolean Tag Expressions

Compiles expressions such as ``cat & (outdoor | !indoor)`` and evaluates them
against a haystack, either a list of tokens (tags, search tokens) or a single
text field (artist, album, title, path).

Pipeline:
    ExpressionLexer      raw text → SYMBOL / PUNCTUATION tokens
    ShuntingYardParser   infix tokens → Reverse Polish order
    build_tree           RPN → And / Or / Not / Tag nodes
    evaluate             node + haystack → bool

Operators:
    !   NOT   precedence 2, left-associative (prefix)
    &   AND   precedence 1, left-associative
    |   OR    precedence 1, left-associative

``*`` is a wildcard symbol that matches any haystack, including an empty one.

Usage:
    expr = Expression("cat & !dog")
    expr.match(["cat", "outdoor"])   # True
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, List, Union

from .errors import InvalidExpressionArityError, MismatchedParenthesesError

PUNCTUATION = frozenset("()!&|")
WILDCARD = "*"


class TokenType(Enum):
    SYMBOL = auto()
    PUNCTUATION = auto()


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str


# ---------------------------------------------------------------------------
# Lexer
# ---------------------------------------------------------------------------

class ExpressionLexer:
    """
    Split an expression into lower-cased tokens.

    Whitespace separates symbols and is discarded.  Unknown characters are
    never an error here; they simply become part of a symbol.
    """

    def __init__(self, text: str) -> None:
        self._text = text.strip().lower()
        self._pos = 0

    def __iter__(self):
        return self

    def __next__(self) -> Token:
        token = self.lex()
        if token is None:
            raise StopIteration
        return token

    def lex(self) -> Token | None:
        """Return the next token, or None at end of input."""
        text = self._text
        while self._pos < len(text) and text[self._pos].isspace():
            self._pos += 1
        if self._pos >= len(text):
            return None

        ch = text[self._pos]
        if ch in PUNCTUATION:
            self._pos += 1
            return Token(TokenType.PUNCTUATION, ch)

        start = self._pos
        while (
            self._pos < len(text)
            and text[self._pos] not in PUNCTUATION
            and not text[self._pos].isspace()
        ):
            self._pos += 1
        return Token(TokenType.SYMBOL, text[start:self._pos])

    def tokenize(self) -> List[Token]:
        return list(self)


# ---------------------------------------------------------------------------
# Shunting-yard
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Operator:
    precedence: int
    associativity: str  # "left" | "right"


OPERATORS: Dict[str, Operator] = {
    "!": Operator(precedence=2, associativity="left"),
    "&": Operator(precedence=1, associativity="left"),
    "|": Operator(precedence=1, associativity="left"),
}


class ShuntingYardParser:
    """Convert an infix token list to Reverse Polish order."""

    def __init__(self, table: Dict[str, Operator] = OPERATORS) -> None:
        self.table = table

    def parse(self, tokens: Iterable[str]) -> List[str]:
        output: List[str] = []
        stack: List[str] = []

        for token in tokens:
            if token == "(":
                stack.append(token)
            elif token == ")":
                while stack and stack[-1] != "(":
                    output.append(stack.pop())
                if not stack:
                    raise MismatchedParenthesesError()
                stack.pop()  # discard "("
            elif token in self.table:
                operator = self.table[token]
                while stack and stack[-1] != "(":
                    top = self.table[stack[-1]]
                    if operator.precedence > top.precedence:
                        break
                    if (operator.precedence == top.precedence
                            and operator.associativity == "right"):
                        break
                    output.append(stack.pop())
                stack.append(token)
            else:
                output.append(token)

        while stack:
            token = stack.pop()
            if token == "(":
                raise MismatchedParenthesesError()
            output.append(token)

        return output


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class And:
    left: "Node"
    right: "Node"

    def __str__(self) -> str:
        return f"AND({self.left}, {self.right})"


@dataclass(frozen=True)
class Or:
    left: "Node"
    right: "Node"

    def __str__(self) -> str:
        return f"OR({self.left}, {self.right})"


@dataclass(frozen=True)
class Not:
    operand: "Node"

    def __str__(self) -> str:
        return f"NOT({self.operand})"


@dataclass(frozen=True)
class Tag:
    name: str

    def __str__(self) -> str:
        return self.name


Node = Union[And, Or, Not, Tag]


class Haystack:
    """
    Lower-cased content an expression is evaluated against.

    A list is a token set (membership); a string is free text (containment).
    """

    __slots__ = ("tokens", "text")

    def __init__(self, value: Union[List[str], str]) -> None:
        if isinstance(value, str):
            self.tokens = None
            self.text = value.lower()
        else:
            self.tokens = set()
            for item in value:
                item = str(item).lower()
                self.tokens.add(item)
                # multi-word entries ("jane doe") also match word by word
                self.tokens.update(item.split())
            self.text = " ".join(self.tokens)

    def __contains__(self, name: str) -> bool:
        if self.tokens is not None:
            return name in self.tokens
        return name in self.text


def build_tree(polish: List[str]) -> Node:
    """Build an expression tree from RPN tokens, validating operator arity."""
    stack: List[Node] = []
    for token in polish:
        if token in ("&", "|"):
            if len(stack) < 2:
                raise InvalidExpressionArityError()
            right = stack.pop()
            left = stack.pop()
            stack.append(And(left, right) if token == "&" else Or(left, right))
        elif token == "!":
            if not stack:
                raise InvalidExpressionArityError()
            stack.append(Not(stack.pop()))
        else:
            stack.append(Tag(token.lower()))

    if len(stack) != 1:
        raise InvalidExpressionArityError()
    return stack[0]


def evaluate(node: Node, haystack: Haystack) -> bool:
    if isinstance(node, Tag):
        return node.name == WILDCARD or node.name in haystack
    if isinstance(node, And):
        left = evaluate(node.left, haystack)
        right = evaluate(node.right, haystack)
        return left and right
    if isinstance(node, Or):
        left = evaluate(node.left, haystack)
        right = evaluate(node.right, haystack)
        return left or right
    if isinstance(node, Not):
        return not evaluate(node.operand, haystack)
    raise TypeError(f"Unknown expression node: {type(node)}")


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class Expression:
    """A compiled boolean expression."""

    def __init__(self, text: str) -> None:
        self.text = text
        tokens = [t.value for t in ExpressionLexer(text)]
        self.polish = ShuntingYardParser().parse(tokens)
        self.tree = build_tree(self.polish)

    def match(self, haystack: Union[List[str], str]) -> bool:
        return evaluate(self.tree, Haystack(haystack))

    def __str__(self) -> str:
        return str(self.tree)

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"
