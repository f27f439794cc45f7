"""Sandboxed expression evaluation for condition, transform and validate steps.

Expressions use Python expression syntax, parsed with :mod:`ast` and walked by
a small interpreter that only understands a whitelist of node types. Nothing
is ever handed to ``eval``. Supported:

* literals, names, list/tuple/set/dict displays;
* arithmetic, comparison, boolean and conditional expressions;
* subscripts and slices;
* attribute access, where mappings fall back to key lookup so that
  ``context.variables.score`` works on plain dicts;
* list comprehensions and generator expressions;
* calls to a fixed set of builtins and string/list/dict methods.

Workflow authors who need more can pass a Python callable instead of source
text; :func:`evaluate` accepts both.
"""

from __future__ import annotations

import ast
import inspect
import operator
from collections.abc import Mapping
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import ExpressionError

MAX_EXPONENT = 100
MAX_INT_BITS = 10_000
MAX_REPEAT = 10_000
MAX_ITERATIONS = 100_000

SAFE_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "float": float,
    "int": int,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
}

SAFE_METHODS = frozenset(
    {
        # str
        "lower",
        "upper",
        "strip",
        "lstrip",
        "rstrip",
        "split",
        "join",
        "startswith",
        "endswith",
        "replace",
        "title",
        "capitalize",
        "isdigit",
        "isalpha",
        # list / tuple / str
        "count",
        "index",
        # dict
        "get",
        "keys",
        "values",
        "items",
    }
)

CONSTANT_ALIASES = {"true": True, "false": False, "null": None}

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CMP_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Store,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.IfExp,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.Dict,
    ast.Call,
    ast.keyword,
    ast.ListComp,
    ast.GeneratorExp,
    ast.comprehension,
    *_BIN_OPS,
    *_UNARY_OPS,
    *_CMP_OPS,
)


def _check_node(node: ast.AST, source: str) -> None:
    if not isinstance(node, _ALLOWED_NODES):
        raise ExpressionError(
            f"Unsupported syntax '{type(node).__name__}' in expression: {source}"
        )
    if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
        raise ExpressionError(f"Access to private attribute '{node.attr}' is not allowed")
    if isinstance(node, ast.Name) and node.id.startswith("__"):
        raise ExpressionError(f"Access to name '{node.id}' is not allowed")
    if isinstance(node, ast.Dict) and any(key is None for key in node.keys):
        raise ExpressionError("Dict unpacking is not allowed in expressions")
    if isinstance(node, ast.keyword) and node.arg is None:
        raise ExpressionError("Keyword unpacking is not allowed in expressions")
    if isinstance(node, ast.comprehension) and node.is_async:
        raise ExpressionError("Async comprehensions are not allowed in expressions")
    if isinstance(node, ast.Call):
        func = node.func
        if isinstance(func, ast.Name):
            if func.id not in SAFE_FUNCTIONS:
                raise ExpressionError(f"Call to '{func.id}' is not allowed")
        elif isinstance(func, ast.Attribute):
            if func.attr not in SAFE_METHODS:
                raise ExpressionError(f"Call to method '{func.attr}' is not allowed")
        else:
            raise ExpressionError("Only direct function and method calls are allowed")


@lru_cache(maxsize=256)
def compile_expression(source: str) -> ast.Expression:
    """Parse and whitelist-check ``source``. Results are cached."""

    if not source or not source.strip():
        raise ExpressionError("Expression is empty")
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid expression syntax: {exc.msg}") from exc
    for node in ast.walk(tree):
        _check_node(node, source)
    return tree


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_operands(op_type: type, left: Any, right: Any) -> None:
    """Reject arithmetic whose result would exceed the size limits, before computing it."""
    if op_type is ast.Pow and isinstance(right, (int, float)):
        if abs(right) > MAX_EXPONENT:
            raise ExpressionError(f"Exponent {right} exceeds limit {MAX_EXPONENT}")
        if _is_int(left) and _is_int(right) and abs(left).bit_length() * right > MAX_INT_BITS:
            raise ExpressionError(f"Power result exceeds {MAX_INT_BITS} bits")
    if op_type is not ast.Mult:
        return
    if _is_int(left) and _is_int(right):
        if left.bit_length() + right.bit_length() > MAX_INT_BITS:
            raise ExpressionError(f"Product exceeds {MAX_INT_BITS} bits")
        return
    for seq, count in ((left, right), (right, left)):
        if isinstance(seq, (str, list, tuple)) and _is_int(count) and len(seq) * count > MAX_REPEAT:
            raise ExpressionError(
                f"Repetition result length {len(seq) * count} exceeds limit {MAX_REPEAT}"
            )


class _Interpreter:
    """Walks a checked expression tree against a name mapping.

    Child interpreters created for comprehension scopes share one iteration
    counter, so nested comprehensions are bounded as a whole.
    """

    def __init__(self, names: Mapping[str, Any], iterations: Optional[List[int]] = None) -> None:
        self.names = names
        self._iterations = iterations if iterations is not None else [0]

    def eval(self, node: ast.AST) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}")
        return method(node)

    def _child(self, bindings: Dict[str, Any]) -> "_Interpreter":
        scope = dict(self.names)
        scope.update(bindings)
        return _Interpreter(scope, self._iterations)

    # -- leaves ---------------------------------------------------------
    def _eval_Expression(self, node: ast.Expression) -> Any:
        return self.eval(node.body)

    def _eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name) -> Any:
        if node.id in self.names:
            return self.names[node.id]
        if node.id in CONSTANT_ALIASES:
            return CONSTANT_ALIASES[node.id]
        raise ExpressionError(f"Unknown name '{node.id}'")

    # -- access ---------------------------------------------------------
    def _eval_Attribute(self, node: ast.Attribute) -> Any:
        value = self.eval(node.value)
        if isinstance(value, Mapping):
            return value.get(node.attr)
        if value is None:
            return None
        try:
            return getattr(value, node.attr)
        except AttributeError as exc:
            raise ExpressionError(str(exc)) from exc

    def _eval_Subscript(self, node: ast.Subscript) -> Any:
        value = self.eval(node.value)
        key = self.eval(node.slice)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as exc:
            raise ExpressionError(f"Subscript failed: {exc!r}") from exc

    def _eval_Slice(self, node: ast.Slice) -> slice:
        lower = self.eval(node.lower) if node.lower else None
        upper = self.eval(node.upper) if node.upper else None
        step = self.eval(node.step) if node.step else None
        return slice(lower, upper, step)

    # -- operators ------------------------------------------------------
    def _eval_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        if isinstance(node.op, ast.And):
            for value in node.values:
                result = self.eval(value)
                if not result:
                    return result
            return result
        for value in node.values:
            result = self.eval(value)
            if result:
                return result
        return result

    def _eval_BinOp(self, node: ast.BinOp) -> Any:
        left = self.eval(node.left)
        right = self.eval(node.right)
        op_type = type(node.op)
        _check_operands(op_type, left, right)
        return _BIN_OPS[op_type](left, right)

    def _eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY_OPS[type(node.op)](self.eval(node.operand))

    def _eval_Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    # -- displays -------------------------------------------------------
    def _eval_List(self, node: ast.List) -> list:
        return [self.eval(elt) for elt in node.elts]

    def _eval_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.eval(elt) for elt in node.elts)

    def _eval_Set(self, node: ast.Set) -> set:
        return {self.eval(elt) for elt in node.elts}

    def _eval_Dict(self, node: ast.Dict) -> dict:
        return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values)}

    # -- comprehensions -------------------------------------------------
    def _bind(self, target: ast.AST, value: Any) -> Dict[str, Any]:
        if isinstance(target, ast.Name):
            return {target.id: value}
        if isinstance(target, ast.Tuple):
            values = list(value)
            if len(values) != len(target.elts):
                raise ExpressionError("Cannot unpack value in comprehension target")
            bound: Dict[str, Any] = {}
            for elt, item in zip(target.elts, values):
                bound.update(self._bind(elt, item))
            return bound
        raise ExpressionError("Unsupported comprehension target")

    def _iterate(self, generators: list, index: int = 0) -> Iterator["_Interpreter"]:
        if index == len(generators):
            yield self
            return
        gen = generators[index]
        for item in self.eval(gen.iter):
            self._iterations[0] += 1
            if self._iterations[0] > MAX_ITERATIONS:
                raise ExpressionError(f"Comprehension exceeds {MAX_ITERATIONS} iterations")
            scope = self._child(self._bind(gen.target, item))
            if all(scope.eval(cond) for cond in gen.ifs):
                yield from scope._iterate(generators, index + 1)

    def _eval_ListComp(self, node: ast.ListComp) -> list:
        return [scope.eval(node.elt) for scope in self._iterate(node.generators)]

    def _eval_GeneratorExp(self, node: ast.GeneratorExp) -> list:
        # materialised so results never escape the interpreter lazily
        return [scope.eval(node.elt) for scope in self._iterate(node.generators)]

    # -- calls ----------------------------------------------------------
    def _eval_Call(self, node: ast.Call) -> Any:
        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS[node.func.id]
        else:
            target = self.eval(node.func.value)
            func = getattr(target, node.func.attr, None)
            if func is None:
                raise ExpressionError(
                    f"'{type(target).__name__}' has no method '{node.func.attr}'"
                )
        args = [self.eval(arg) for arg in node.args]
        kwargs = {kw.arg: self.eval(kw.value) for kw in node.keywords}
        return func(*args, **kwargs)


def _call_with_names(func: Callable[..., Any], names: Mapping[str, Any]) -> Any:
    """Invoke an author-supplied callable with the names it asks for.

    Parameters matching a known name are passed by keyword; ``**kwargs``
    receives everything. A single parameter matching no known name receives
    ``input`` when bound, otherwise the whole mapping.
    """

    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return func(dict(names))

    params = list(signature.parameters.values())
    if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params):
        return func(**names)

    kwargs = {p.name: names[p.name] for p in params if p.name in names}
    if kwargs:
        return func(**kwargs)

    positional = [
        p
        for p in params
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        and p.default is p.empty
    ]
    if len(positional) == 1:
        return func(names["input"] if "input" in names else dict(names))
    return func()


def evaluate(expression: Any, names: Mapping[str, Any]) -> Any:
    """Evaluate ``expression`` (source text or callable) against ``names``."""

    if callable(expression):
        try:
            return _call_with_names(expression, names)
        except ExpressionError:
            raise
        except Exception as exc:
            raise ExpressionError(
                f"Expression callable raised {type(exc).__name__}: {exc}"
            ) from exc

    if not isinstance(expression, str):
        raise ExpressionError(f"Unsupported expression type: {type(expression).__name__}")

    tree = compile_expression(expression)
    try:
        return _Interpreter(names).eval(tree)
    except ExpressionError:
        raise
    except Exception as exc:
        raise ExpressionError(f"Error evaluating '{expression}': {exc}") from exc


__all__ = [
    "CONSTANT_ALIASES",
    "SAFE_FUNCTIONS",
    "SAFE_METHODS",
    "compile_expression",
    "evaluate",
]
