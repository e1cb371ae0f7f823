"""
Exceptions raised by the media index.

Vocabulary refusals (unregistered or filtered tags) are not errors; those
calls return False.  Everything here propagates to the caller unchanged.
"""


class MediaIndexError(Exception):
    """Base class for all index-layer errors."""


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

class ExpressionError(MediaIndexError):
    """A boolean tag expression could not be compiled."""


class ExpressionSyntaxError(ExpressionError):
    """Malformed punctuation or operator use."""


class MismatchedParenthesesError(ExpressionSyntaxError):
    def __init__(self) -> None:
        super().__init__("Mismatched parentheses.")


class InvalidExpressionArityError(ExpressionError):
    def __init__(self) -> None:
        super().__init__("Invalid number of arguments detected")


class ExpressionFilterError(ExpressionError):
    """Raised by MediaStore.subset() when a constraint expression fails to compile."""

    def __init__(self, expression: str, detail: str) -> None:
        self.expression = expression
        self.detail = detail
        super().__init__(f"Failed to parse expression: {expression} - {detail}")


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TokenizationError(MediaIndexError):
    def __init__(self, message: str = "Failed to tokenize input string.") -> None:
        super().__init__(message)
