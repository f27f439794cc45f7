"""Tests for the sandboxed expression evaluator."""

import pytest

from stepflow.errors import ExpressionError
from stepflow.expressions import compile_expression, evaluate


@pytest.mark.parametrize(
    "source, expected",
    [
        ("input * 2", 42),
        ("input > 20 and input < 30", True),
        ("'big' if input > 100 else 'small'", "small"),
        ("[x * 2 for x in items if x % 2]", [2, 6]),
        ("sum(x for x in items)", 6),
        ("user.name.upper()", "ADA"),
        ("user['tags'][-1]", "math"),
        ("items[1:]", [2, 3]),
        ("user.missing is None", True),
        ("true and not false", True),
        ("len(user.get('tags', []))", 2),
        ("{'k': input}", {"k": 21}),
    ],
)
def test_evaluate_supported_syntax(source, expected):
    names = {
        "input": 21,
        "items": [1, 2, 3],
        "user": {"name": "ada", "tags": ["logic", "math"]},
    }

    assert evaluate(source, names) == expected


@pytest.mark.parametrize(
    "source",
    [
        "__import__('os').system('ls')",
        "open('/etc/passwd')",
        "input.__class__",
        "lambda: 1",
        "(x := 1)",
        "items.append(4)",
        "{**user}",
        "",
    ],
)
def test_compile_rejects_unsafe_syntax(source):
    with pytest.raises(ExpressionError):
        compile_expression(source)


def test_resource_limits():
    with pytest.raises(ExpressionError, match="Exponent"):
        evaluate("10 ** 1000", {})
    with pytest.raises(ExpressionError, match="Repetition"):
        evaluate("'a' * 100000", {})


def test_chained_powers_are_bounded():
    assert evaluate("7 ** 99 > 0", {}) is True
    with pytest.raises(ExpressionError, match="Power result exceeds"):
        evaluate("(((7 ** 99) ** 99) ** 99) ** 20", {})
    with pytest.raises(ExpressionError, match="Product exceeds"):
        evaluate("(9 ** 99) ** 20 * (9 ** 99) ** 20", {})


def test_chained_repetition_is_bounded():
    assert len(evaluate("'ab' * 5000", {})) == 10_000
    with pytest.raises(ExpressionError, match="Repetition"):
        evaluate("'a' * 9999 * 9999", {})
    with pytest.raises(ExpressionError, match="Repetition"):
        evaluate("[0, 1] * 6000", {})


def test_nested_comprehension_is_bounded():
    assert evaluate("len([1 for a in 'x' * 100 for b in 'x' * 100])", {}) == 10_000
    with pytest.raises(ExpressionError, match="iterations"):
        evaluate("[1 for a in 'x' * 9999 for b in 'x' * 9999]", {})
    with pytest.raises(ExpressionError, match="iterations"):
        evaluate("sum(1 for a in items for b in items)", {"items": list(range(1000))})


def test_errors_are_wrapped():
    with pytest.raises(ExpressionError, match="Unknown name 'nope'"):
        evaluate("nope + 1", {})
    with pytest.raises(ExpressionError, match="division by zero"):
        evaluate("1 / 0", {})
    with pytest.raises(ExpressionError):
        evaluate(42, {})


def test_callables_receive_requested_names():
    assert evaluate(lambda input: input + 1, {"input": 1, "other": 5}) == 2
    assert evaluate(lambda other, input: other - input, {"input": 1, "other": 5}) == 4
    assert evaluate(lambda **names: sorted(names), {"a": 1, "b": 2}) == ["a", "b"]
    assert evaluate(lambda scope: scope["a"], {"a": 7}) == 7


def test_callable_errors_are_wrapped():
    def boom(input):
        raise KeyError("x")

    with pytest.raises(ExpressionError, match="KeyError"):
        evaluate(boom, {"input": 1})
