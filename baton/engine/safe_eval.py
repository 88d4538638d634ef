"""Safe Expression Evaluator for Edge Conditions and Metadata Hooks

Uses Python's ast module to parse and evaluate expressions in a restricted
sandbox. Only allows safe operations: comparisons, boolean logic, literals,
arithmetic and field access into the supplied context. No function calls,
imports, or attribute access on anything but mappings.

Supported expressions:
- Comparisons: metadata.score > 10, error == None, "review" in nodeOutputs
- Boolean logic: metadata.ok and not error, metadata.count or 0
- Literals: "string", 42, 3.14, true/True, false/False, null/None, [..], {..}
- Field access: metadata.ok, nodeOutputs["review"], items[0]
- Arithmetic: retryCount + 1, elapsedMs / 1000
- Conditional: "slow" if elapsedMs > 5000 else "fast"

Schema planners tend to write JavaScript, so a few spellings are normalised
before parsing: ``===``, ``!==``, ``&&``, ``||``, ``!x`` and ``$name``
variables. ``!`` negates only its immediate operand, so ``!a == b`` reads as
``(not a) == b``. The ternary ``c ? a : b`` is not supported; write
``a if c else b`` instead.

Bare identifiers used as dict keys are string keys (``{ok: true}``) and
``{[expr]: v}`` is a computed key. A missing mapping key yields ``None``
whether it is read as ``metadata.x`` or ``metadata['x']``.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ExpressionEvaluationError

logger = logging.getLogger(__name__)

# Maximum expression length to prevent abuse
MAX_EXPRESSION_LENGTH = 500

_SAFE_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_SAFE_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_SAFE_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CONSTANT_NAMES = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "none": None,
    "None": None,
    "undefined": None,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Compare,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.BinOp,
    ast.Subscript,
    ast.Attribute,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.IfExp,
    *_SAFE_COMPARE_OPS,
    *_SAFE_BIN_OPS,
    *_SAFE_UNARY_OPS,
)

# One capturing group: re.split keeps string literals at odd indexes
_STRING_LITERAL = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")

_JS_REWRITES = [
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"\$(?=[A-Za-z_])"), ""),
]

_OPERAND_NAME = re.compile(r"[\w.]+")


def _mask_strings(expression: str) -> str:
    """Blank out string literal contents, keeping every offset unchanged."""
    parts = _STRING_LITERAL.split(expression)
    for i in range(1, len(parts), 2):
        literal = parts[i]
        parts[i] = literal[0] + "_" * (len(literal) - 2) + literal[-1]
    return "".join(parts)


def _group_end(masked: str, start: int) -> int:
    depth = 0
    for i in range(start, len(masked)):
        if masked[i] in "([{":
            depth += 1
        elif masked[i] in ")]}":
            depth -= 1
            if depth == 0:
                return i + 1
    return len(masked)


def _operand_end(masked: str, start: int) -> Optional[int]:
    """End offset of the primary expression (plus member access) at ``start``."""
    if start >= len(masked):
        return None
    char = masked[start]
    if char in "([{":
        end = _group_end(masked, start)
    elif char in "\"'":
        end = masked.find(char, start + 1) + 1
        if end == 0:
            return None
    else:
        match = _OPERAND_NAME.match(masked, start)
        if not match:
            return None
        end = match.end()

    while end < len(masked):
        if masked[end] in "[(":
            end = _group_end(masked, end)
        elif masked[end] == ".":
            match = _OPERAND_NAME.match(masked, end + 1)
            if not match:
                break
            end = match.end()
        else:
            break
    return end


def _rewrite_negation(expression: str) -> str:
    """Turn ``!operand`` into ``(not operand)``, innermost first."""
    masked = _mask_strings(expression)
    i = masked.rfind("!")
    while i >= 0:
        if masked[i + 1:i + 2] != "=":
            start = i + 1
            while start < len(masked) and masked[start].isspace():
                start += 1
            end = _operand_end(masked, start)
            if end is None:
                expression = expression[:i] + " not " + expression[i + 1:]
                masked = masked[:i] + " not " + masked[i + 1:]
            else:
                expression = f"{expression[:i]}(not {expression[start:end]}){expression[end:]}"
                masked = f"{masked[:i]}(not {masked[start:end]}){masked[end:]}"
        i = masked.rfind("!", 0, i)
    return expression


def normalize_expression(expression: str) -> str:
    """Rewrite JavaScript operator spellings into Python, outside string literals."""
    parts = _STRING_LITERAL.split(expression)
    for i in range(0, len(parts), 2):
        segment = parts[i]
        for pattern, replacement in _JS_REWRITES:
            segment = pattern.sub(replacement, segment)
        parts[i] = segment
    return _rewrite_negation("".join(parts)).strip()


def _parse(expression: str) -> ast.Expression:
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionEvaluationError("Expression cannot be empty")

    expression = expression.strip()

    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionEvaluationError(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})"
        )

    try:
        return ast.parse(normalize_expression(expression), mode="eval")
    except (SyntaxError, ValueError) as e:
        raise ExpressionEvaluationError(f"Invalid expression syntax: {e}") from e


def safe_eval(expression: str, context: Mapping[str, Any]) -> Any:
    """Safely evaluate an expression against a context mapping.

    Args:
        expression: The expression string to evaluate
        context: Mapping of variable names to values

    Returns:
        The result of evaluating the expression

    Raises:
        ExpressionEvaluationError: If the expression is invalid or uses unsupported constructs
    """
    tree = _parse(expression)

    try:
        return _eval_node(tree.body, context)
    except ExpressionEvaluationError:
        raise
    except Exception as e:
        raise ExpressionEvaluationError(f"Evaluation error: {e}") from e


def _eval_node(node: ast.AST, context: Mapping[str, Any]) -> Any:
    """Recursively evaluate an AST node."""

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        name = node.id
        if name in _CONSTANT_NAMES:
            return _CONSTANT_NAMES[name]
        if name in context:
            return context[name]
        raise ExpressionEvaluationError(f"Unknown variable: '{name}'")

    # Chained comparisons: a < b < c
    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, context)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = _SAFE_COMPARE_OPS.get(type(op))
            if op_func is None:
                raise ExpressionEvaluationError(f"Unsupported comparison: {type(op).__name__}")
            right = _eval_node(comparator, context)
            if not op_func(left, right):
                return False
            left = right
        return True

    # and/or short-circuit and return the deciding operand, like Python and JS
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _eval_node(value, context)
                if not result:
                    return result
            return result
        if isinstance(node.op, ast.Or):
            result = False
            for value in node.values:
                result = _eval_node(value, context)
                if result:
                    return result
            return result
        raise ExpressionEvaluationError(f"Unsupported boolean op: {type(node.op).__name__}")

    if isinstance(node, ast.UnaryOp):
        op_func = _SAFE_UNARY_OPS.get(type(node.op))
        if op_func is None:
            raise ExpressionEvaluationError(f"Unsupported unary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.operand, context))

    if isinstance(node, ast.BinOp):
        op_func = _SAFE_BIN_OPS.get(type(node.op))
        if op_func is None:
            raise ExpressionEvaluationError(f"Unsupported binary op: {type(node.op).__name__}")
        left = _eval_node(node.left, context)
        right = _eval_node(node.right, context)
        return op_func(left, right)

    if isinstance(node, ast.Subscript):
        value = _eval_node(node.value, context)
        key = _eval_node(node.slice, context)
        try:
            if isinstance(value, Mapping):
                return value.get(key)
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise ExpressionEvaluationError(f"Subscript access failed: {e!r}") from e

    if isinstance(node, ast.Attribute):
        value = _eval_node(node.value, context)
        if isinstance(value, Mapping):
            return value.get(node.attr)
        raise ExpressionEvaluationError(
            "Attribute access only supported on mappings"
        )

    if isinstance(node, ast.List):
        return [_eval_node(elt, context) for elt in node.elts]

    if isinstance(node, ast.Tuple):
        return tuple(_eval_node(elt, context) for elt in node.elts)

    if isinstance(node, ast.Dict):
        result_dict: Dict[Any, Any] = {}
        for key_node, value_node in zip(node.keys, node.values):
            if key_node is None:
                raise ExpressionEvaluationError("Dict unpacking is not supported")
            if isinstance(key_node, ast.Name):
                key = key_node.id
            elif isinstance(key_node, ast.List) and len(key_node.elts) == 1:
                # Computed key: {[expr]: value}
                key = _eval_node(key_node.elts[0], context)
            else:
                key = _eval_node(key_node, context)
            value = _eval_node(value_node, context)
            try:
                result_dict[key] = value
            except TypeError as e:
                raise ExpressionEvaluationError(f"Invalid dict key: {e!r}") from e
        return result_dict

    if isinstance(node, ast.IfExp):
        if _eval_node(node.test, context):
            return _eval_node(node.body, context)
        return _eval_node(node.orelse, context)

    raise ExpressionEvaluationError(f"Unsupported expression type: {type(node).__name__}")


def validate_expression(expression: str) -> List[str]:
    """Check an expression statically without evaluating it.

    Args:
        expression: The expression string to validate

    Returns:
        List of validation error strings. Empty if valid.
    """
    try:
        tree = _parse(expression)
    except ExpressionEvaluationError as e:
        return [str(e)]

    errors = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            errors.append("Function calls are not allowed")
        elif isinstance(node, ast.Lambda):
            errors.append("Lambda expressions are not allowed")
        elif isinstance(node, (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)):
            errors.append("Comprehensions are not allowed")
        elif isinstance(node, ast.NamedExpr):
            errors.append("Assignment expressions are not allowed")
        elif isinstance(node, ast.Dict) and None in node.keys:
            errors.append("Dict unpacking is not allowed")
        elif not isinstance(node, _ALLOWED_NODES):
            errors.append(f"Unsupported syntax: {type(node).__name__}")

    return errors


def make_condition_context(
    node_outputs: Mapping[str, str],
    metadata: Mapping[str, Any],
    error: Optional[str],
    current_node: Optional[str],
) -> Dict[str, Any]:
    """Build the variables visible to an edge condition.

    ``ctx`` refers to the whole context so ``ctx.metadata.ok`` also works.
    """
    context: Dict[str, Any] = {
        "nodeOutputs": dict(node_outputs),
        "metadata": dict(metadata),
        "error": error,
        "currentNode": current_node,
    }
    context["node_outputs"] = context["nodeOutputs"]
    context["current_node"] = current_node
    context["ctx"] = dict(context)
    return context


def make_hook_context(
    node_id: str,
    metadata: Mapping[str, Any],
    elapsed_ms: int,
    retry_count: int,
    output: Optional[str] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the variables visible to an ``onSuccess``/``onError`` hook."""
    return {
        "output": output,
        "error": error,
        "elapsedMs": elapsed_ms,
        "elapsed_ms": elapsed_ms,
        "retryCount": retry_count,
        "retry_count": retry_count,
        "metadata": dict(metadata),
        "nodeId": node_id,
        "node_id": node_id,
    }


def evaluate_condition(expression: str, context: Mapping[str, Any]) -> bool:
    """Evaluate an edge condition, degrading to ``False`` on any failure."""
    try:
        return bool(safe_eval(expression, context))
    except ExpressionEvaluationError as e:
        logger.error(f"Condition '{expression}' failed: {e}. Treating as false.")
        return False


def evaluate_hook(expression: str, context: Mapping[str, Any]) -> Dict[str, Any]:
    """Evaluate a metadata hook, degrading to an empty update on any failure."""
    try:
        result = safe_eval(expression, context)
    except ExpressionEvaluationError as e:
        logger.error(f"Metadata hook '{expression}' failed: {e}. Skipping update.")
        return {}

    if not isinstance(result, Mapping):
        logger.warning(
            f"Metadata hook '{expression}' returned {type(result).__name__}, expected a mapping. "
            f"Skipping update."
        )
        return {}
    return dict(result)
