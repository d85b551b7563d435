"""
`lnapath` specific Pydantic extensions.

This module contains annotated types and validators shared by the configuration
models.
"""

__all__ = ()


from functools import partial
from typing import Annotated, Any, Type, TypeVar

from pydantic import BeforeValidator
from sympy.parsing.sympy_parser import parse_expr


T = TypeVar("T")
EE = TypeVar("EE", int, float)


def _ensure_list(value: list[T] | tuple[T, ...] | T | None) -> list[T] | None:
    """
    Ensure that a list, tuple, or single value is returned as a list.

    Args:
        value: A value to ensure is a list.

    Returns:
        A list of the value(s), if the `value` is not None.

    Examples:
        >>> from lnapath._pydantic_ext import _ensure_list
        >>> _ensure_list(None) is None
        True
        >>> _ensure_list("S")
        ['S']
        >>> _ensure_list(("S", "E"))
        ['S', 'E']
    """
    if value is None:
        return None
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def _evaled_expression(val: EE | str | Any, target_type: Type[EE]) -> EE | Any:
    """
    Evaluate a numeric string expression, e.g. `"1/4"`, to an int or float.

    Args:
        val: The input value to process, non-strings are returned as is for pydantic
            to validate.
        target_type: The type (int or float) to convert the expression to.

    Returns:
        The value coerced into the target numeric type, or the original value.

    Raises:
        ValueError: If the expression is not a number, or is not integral when
            `target_type` is int.

    Examples:
        >>> _evaled_expression("1/4", float)
        0.25
        >>> _evaled_expression("2 * 5", int)
        10
        >>> _evaled_expression(1e-6, float)
        1e-06
        >>> _evaled_expression("10 / 4", int)
        Traceback (most recent call last):
            ...
        ValueError: Expression '5/2' is not an integer.
        >>> _evaled_expression("rate * 2", float)
        Traceback (most recent call last):
            ...
        ValueError: Cannot convert expression '2*rate' to float.
    """
    if not isinstance(val, str):
        return val
    expr = parse_expr(val)
    if not expr.is_Number:
        raise ValueError(f"Cannot convert expression '{expr}' to {target_type.__name__}.")
    if target_type is int and not expr.is_Integer:
        raise ValueError(f"Expression '{expr}' is not an integer.")
    return target_type(expr)


EvaledInt = Annotated[int, BeforeValidator(partial(_evaled_expression, target_type=int))]
EvaledFloat = Annotated[
    float, BeforeValidator(partial(_evaled_expression, target_type=float))
]
