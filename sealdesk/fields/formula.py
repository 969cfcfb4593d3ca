# sealdesk/fields/formula.py

"""
Arithmetic formulas for calculated fields.

A formula references other fields as ``{fieldId}``. References are
substituted with the field's numeric value (0 when missing, empty or not
a number), whitespace is stripped and the result is parsed by a small
recursive-descent parser:

    expression := term (('+' | '-') term)*
    term       := factor (('*' | '/') factor)*
    factor     := number | '(' expression ')' | '-' factor

Evaluation is total. Division by zero yields 0 and any malformed input
yields 0; nothing is ever raised to the caller and ``eval`` is never used.
"""

import math
import re
from typing import Any, Mapping, Optional

from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)

REFERENCE_PATTERN = re.compile(r"\{([^{}]+)\}")


class FormulaSyntaxError(ValueError):
    """Raised internally when the parser meets unexpected input"""


def to_number(value: Any) -> float:
    """Coerce a field value to a float, 0 when it is not numeric"""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(str(value).strip())
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def substitute_references(formula: str, values: Mapping[str, Any]) -> str:
    def _replace(match: re.Match) -> str:
        return repr(to_number(values.get(match.group(1).strip())))

    return REFERENCE_PATTERN.sub(_replace, formula)


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.pos = 0

    def peek(self) -> Optional[str]:
        return self.source[self.pos] if self.pos < len(self.source) else None

    def parse(self) -> float:
        result = self.expression()
        if self.pos != len(self.source):
            raise FormulaSyntaxError(f"Unexpected '{self.peek()}' at {self.pos}")
        return result

    def expression(self) -> float:
        result = self.term()
        while self.peek() in ("+", "-"):
            op = self.source[self.pos]
            self.pos += 1
            right = self.term()
            result = result + right if op == "+" else result - right
        return result

    def term(self) -> float:
        result = self.factor()
        while self.peek() in ("*", "/"):
            op = self.source[self.pos]
            self.pos += 1
            right = self.factor()
            if op == "*":
                result = result * right
            else:
                result = 0.0 if right == 0 else result / right
        return result

    def factor(self) -> float:
        char = self.peek()
        if char == "(":
            self.pos += 1
            result = self.expression()
            if self.peek() != ")":
                raise FormulaSyntaxError("Missing closing parenthesis")
            self.pos += 1
            return result
        if char == "-":
            self.pos += 1
            return -self.factor()
        return self.number()

    def number(self) -> float:
        start = self.pos
        while self.peek() is not None and (self.peek().isdigit() or self.peek() in ".e"):
            # Exponent markers only come from substituted values like 1e-07
            if self.peek() == "e" and self.pos + 1 < len(self.source) and self.source[self.pos + 1] in "+-":
                self.pos += 2
                continue
            self.pos += 1
        token = self.source[start:self.pos]
        if not token:
            raise FormulaSyntaxError(f"Expected a number at {start}")
        try:
            return float(token)
        except ValueError as e:
            raise FormulaSyntaxError(f"Invalid number '{token}'") from e


def evaluate_formula(formula: Optional[str], values: Mapping[str, Any]) -> float:
    """
    Evaluate a calculated-field formula against the current field values.

    Args:
        formula: Expression such as ``{qty} * {price} + 5``
        values: Mapping of field id to current value

    Returns:
        The numeric result, 0 for empty or malformed formulas
    """
    if not formula:
        return 0.0
    expression = re.sub(r"\s+", "", substitute_references(formula, values))
    try:
        result = _Parser(expression).parse()
    except FormulaSyntaxError as e:
        logger.debug("Formula evaluated to 0", formula=formula, reason=str(e))
        return 0.0
    except RecursionError:
        logger.warning("Formula nesting too deep", formula=formula)
        return 0.0
    return result if math.isfinite(result) else 0.0


def format_number(number: float) -> str:
    """Stringify a formula result the way calculated fields store it"""
    if number == int(number):
        return str(int(number))
    return repr(number)
