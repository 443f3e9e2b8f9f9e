"""Guardrails for executing model-generated data-fetch programs.

Generated programs are short Python snippets that may use ``await`` and
``return`` at top level. Before anything runs, the text is cleaned of
formatting artifacts and statically validated against an allow-list.

Safety Features:
- Node-type allow-list (no imports, loops other than ``for``, functions,
  classes, ``try``/``with``, ``global``/``nonlocal``, ``del``)
- Name allow-list: registry capabilities, read-only constants, a handful of
  pure builtins, and names the program itself assigns
- Attribute allow-list: namespace capabilities plus pure container/string
  methods; nothing starting with an underscore
- Syntax-tree size budget
- Instrumentation: every loop iteration and comprehension element consumes a
  step from a per-run budget; repetition, concatenation, large integer
  products and the growing string/list methods are size-checked
"""

import ast
import copy
import re
import textwrap
from dataclasses import dataclass
from typing import Any, Callable, Mapping, NamedTuple

from coinquery.errors import ExecutionFault


PROGRAM_FUNCTION = "__cq_program__"
TICK_HOOK = "_cq_tick"
REPEAT_HOOK = "_cq_repeat"
CONCAT_HOOK = "_cq_concat"
METHOD_HOOK = "_cq_method"

# Methods whose result can be much larger than their receiver
GROWING_METHODS = frozenset({"join", "replace", "extend"})

_SEQUENCES = (str, bytes, list, tuple)


class ValidationResult(NamedTuple):
    """Result of program validation."""

    is_valid: bool
    error: str | None = None
    warnings: list[str] | None = None


@dataclass
class ProgramGuardrailConfig:
    """Limits applied to one generated program."""

    max_nodes: int = 2000
    max_steps: int = 100_000
    max_range: int = 10_000
    max_sequence_length: int = 1_000_000
    max_int_bits: int = 4096
    timeout_seconds: float = 60.0

    allowed_statements: tuple[type, ...] = (
        ast.Assign,
        ast.AugAssign,
        ast.Expr,
        ast.Return,
        ast.If,
        ast.For,
        ast.Pass,
        ast.Break,
        ast.Continue,
    )

    allowed_expressions: tuple[type, ...] = (
        ast.Await,
        ast.Call,
        ast.keyword,
        ast.Name,
        ast.Attribute,
        ast.Constant,
        ast.JoinedStr,
        ast.FormattedValue,
        ast.List,
        ast.Tuple,
        ast.Dict,
        ast.Set,
        ast.ListComp,
        ast.DictComp,
        ast.SetComp,
        ast.GeneratorExp,
        ast.comprehension,
        ast.BinOp,
        ast.UnaryOp,
        ast.BoolOp,
        ast.Compare,
        ast.IfExp,
        ast.Subscript,
        ast.Slice,
        ast.Starred,
    )

    # Operators that can build huge integers from tiny literals
    blocked_operators: tuple[type, ...] = (ast.Pow, ast.LShift)

    safe_attributes: frozenset[str] = frozenset({
        # dict
        "get", "items", "keys", "values", "update", "setdefault", "copy", "pop",
        # list
        "append", "extend", "insert", "sort", "reverse", "count", "index",
        # str
        "lower", "upper", "strip", "lstrip", "rstrip", "split", "join",
        "replace", "startswith", "endswith", "title", "capitalize", "isdigit",
    })


DEFAULT_CONFIG = ProgramGuardrailConfig()


_FENCED_BLOCK = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*[ \t]*\n(.*?)(?:```|\Z)", re.DOTALL)
_FENCE_LINE = re.compile(r"^\s*```.*$", re.MULTILINE)
_CODE_LINE = re.compile(
    r"^(#|return\b|await\b|for\b|if\b|pass\b"
    r"|[A-Za-z_]\w*(\s*,\s*[A-Za-z_]\w*)+\s*=(?!=)"
    r"|[A-Za-z_][\w.]*(\[[^\]]*\])?\s*([-+*/]?=(?!=)|\())"
)
_RETURNS = re.compile(r"^\s*return\b", re.MULTILINE)
_ASSIGNS_DATA = re.compile(r"^data\s*=(?!=)", re.MULTILINE)


def clean_program_text(text: str | None) -> str:
    """Strip fences and surrounding prose from a model's program output.

    Args:
        text: Raw text returned by the model

    Returns:
        Program body, dedented; empty string if nothing code-like remains
    """
    if not text or not text.strip():
        return ""

    match = _FENCED_BLOCK.search(text)
    body = match.group(1) if match else _FENCE_LINE.sub("", text)
    lines = textwrap.dedent(body).strip("\n").splitlines()

    # Drop leading prose ("Here is the program:")
    while lines and not _CODE_LINE.match(lines[0].strip()):
        lines.pop(0)

    program = "\n".join(lines).rstrip()
    if program and not _RETURNS.search(program) and _ASSIGNS_DATA.search(program):
        program += "\nreturn data"
    return program


def wrap_program(program: str) -> str:
    """Wrap a program body in the async function the executor awaits."""
    return f"async def {PROGRAM_FUNCTION}():\n{textwrap.indent(program, '    ')}\n    return None\n"


def parse_program(program: str) -> ast.Module:
    """Parse a cleaned program body.

    Raises:
        SyntaxError: With line numbers relative to the program body
    """
    try:
        return ast.parse(wrap_program(program), mode="exec")
    except SyntaxError as exc:
        line = (exc.lineno or 1) - 1
        raise SyntaxError(f"{exc.msg} (line {max(line, 1)})") from None


def _simple_target(target: ast.expr) -> bool:
    """Names, and subscripts like ``totals[key]`` that are safe to evaluate twice."""
    if isinstance(target, ast.Name):
        return True
    return (
        isinstance(target, ast.Subscript)
        and isinstance(target.value, ast.Name)
        and isinstance(target.slice, (ast.Name, ast.Constant))
    )


def _assigned_names(body: list[ast.stmt]) -> set[str]:
    names: set[str] = set()
    for statement in body:
        for node in ast.walk(statement):
            if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
                names.add(node.id)
    return names


class _ProgramValidator(ast.NodeVisitor):
    """Collect every allow-list violation in a program body."""

    def __init__(
        self,
        config: ProgramGuardrailConfig,
        reserved: set[str],
        namespaces: Mapping[str, set[str]],
        locals_: set[str],
    ):
        self.config = config
        self.reserved = reserved
        self.namespaces = namespaces
        self.known = reserved | locals_
        self.errors: list[str] = []

    def _reject(self, node: ast.AST, message: str) -> None:
        line = max(getattr(node, "lineno", 2) - 1, 1)
        self.errors.append(f"line {line}: {message}")

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, ast.stmt):
            if not isinstance(node, self.config.allowed_statements):
                self._reject(node, f"'{type(node).__name__}' statements are not allowed")
                return
        elif isinstance(node, ast.expr) or isinstance(node, (ast.comprehension, ast.keyword)):
            if not isinstance(node, self.config.allowed_expressions):
                self._reject(node, f"'{type(node).__name__}' expressions are not allowed")
                return
        elif isinstance(node, self.config.blocked_operators):
            self._reject(node, f"operator '{type(node).__name__}' is not allowed")
            return
        super().generic_visit(node)

    def visit_comprehension(self, node: ast.comprehension) -> None:
        if node.is_async:
            self._reject(node, "async comprehensions are not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            self._reject(node, f"name '{node.id}' is not allowed")
        elif isinstance(node.ctx, ast.Store) and node.id in self.reserved:
            self._reject(node, f"cannot rebind '{node.id}'")
        elif isinstance(node.ctx, ast.Load) and node.id not in self.known:
            self._reject(node, f"unknown name '{node.id}'")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self._reject(node, f"attribute '{node.attr}' is not allowed")
            return
        if not isinstance(node.ctx, ast.Load):
            self._reject(node, "attribute assignment is not allowed")
            return
        if isinstance(node.value, ast.Name) and node.value.id in self.namespaces:
            if node.attr not in self.namespaces[node.value.id]:
                self._reject(node, f"unknown capability '{node.value.id}.{node.attr}'")
            return
        if node.attr not in self.config.safe_attributes:
            self._reject(node, f"attribute '{node.attr}' is not allowed")
            return
        self.generic_visit(node)

    def visit_AugAssign(self, node: ast.AugAssign) -> None:
        if isinstance(node.op, ast.Mult) and not isinstance(node.target, ast.Name):
            self._reject(node, "'*=' is only allowed on plain names")
        elif isinstance(node.op, ast.Add) and not _simple_target(node.target):
            self._reject(node, "'+=' is only allowed on plain names and simple subscripts")
        self.generic_visit(node)

    def visit_FormattedValue(self, node: ast.FormattedValue) -> None:
        spec = node.format_spec
        if spec is not None:
            for part in spec.values:
                if not isinstance(part, ast.Constant):
                    self._reject(node, "computed format specs are not allowed")
                    return
                widths = [int(digits) for digits in re.findall(r"\d+", str(part.value))]
                if any(width > self.config.max_range for width in widths):
                    self._reject(node, f"format width larger than {self.config.max_range} is not allowed")
                    return
        self.generic_visit(node)

    def visit_Starred(self, node: ast.Starred) -> None:
        if not isinstance(node.ctx, ast.Load):
            self._reject(node, "starred assignment is not allowed")
            return
        self.generic_visit(node)


def validate_program(
    program: str,
    reserved_names: set[str],
    namespaces: Mapping[str, set[str]] | None = None,
    config: ProgramGuardrailConfig | None = None,
) -> ValidationResult:
    """Validate a cleaned program body against the allow-list.

    Args:
        program: Program body as returned by ``clean_program_text``
        reserved_names: Names bound by the sandbox (capabilities, constants, builtins)
        namespaces: Members of each capability namespace (e.g. ``kadena``)
        config: Optional guardrail configuration

    Returns:
        ValidationResult with is_valid flag and optional error/warnings
    """
    if config is None:
        config = DEFAULT_CONFIG
    namespaces = namespaces or {}

    if not program or not program.strip():
        return ValidationResult(is_valid=False, error="Empty program")

    try:
        tree = parse_program(program)
    except SyntaxError as exc:
        return ValidationResult(is_valid=False, error=f"Syntax error: {exc.msg}")

    body = tree.body[0].body[:-1]
    node_count = sum(1 for statement in body for _ in ast.walk(statement))
    if node_count > config.max_nodes:
        return ValidationResult(
            is_valid=False,
            error=f"Program too large: {node_count} nodes (max {config.max_nodes})",
        )

    validator = _ProgramValidator(config, set(reserved_names), namespaces, _assigned_names(body))
    for statement in body:
        validator.visit(statement)
    if validator.errors:
        return ValidationResult(is_valid=False, error="; ".join(validator.errors[:5]))

    warnings = []
    if not any(isinstance(node, ast.Return) for statement in body for node in ast.walk(statement)):
        warnings.append("Program has no return statement; it will return no data")
    if not any(isinstance(node, ast.Await) for statement in body for node in ast.walk(statement)):
        warnings.append("Program never awaits a capability")

    return ValidationResult(is_valid=True, warnings=warnings or None)


def _hook(name: str, *args: ast.expr) -> ast.Call:
    return ast.Call(func=ast.Name(id=name, ctx=ast.Load()), args=list(args), keywords=[])


class _Instrumenter(ast.NodeTransformer):
    """Insert step-budget and size-check hooks into a validated program."""

    def visit_For(self, node: ast.For) -> ast.For:
        self.generic_visit(node)
        node.body.insert(0, ast.Expr(value=_hook(TICK_HOOK)))
        return node

    def visit_comprehension(self, node: ast.comprehension) -> ast.comprehension:
        self.generic_visit(node)
        node.ifs.insert(0, _hook(TICK_HOOK))
        return node

    def visit_BinOp(self, node: ast.BinOp) -> ast.expr:
        self.generic_visit(node)
        if isinstance(node.op, ast.Mult):
            return _hook(REPEAT_HOOK, node.left, node.right)
        if isinstance(node.op, ast.Add):
            return _hook(CONCAT_HOOK, node.left, node.right)
        return node

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.stmt:
        self.generic_visit(node)
        if isinstance(node.op, ast.Mult) and isinstance(node.target, ast.Name):
            return ast.Assign(
                targets=[ast.Name(id=node.target.id, ctx=ast.Store())],
                value=_hook(REPEAT_HOOK, ast.Name(id=node.target.id, ctx=ast.Load()), node.value),
            )
        if isinstance(node.op, ast.Add):
            current = copy.deepcopy(node.target)
            current.ctx = ast.Load()
            return ast.Assign(
                targets=[node.target],
                value=_hook(CONCAT_HOOK, current, node.value, ast.Constant(value=True)),
            )
        return node

    def visit_Call(self, node: ast.Call) -> ast.expr:
        self.generic_visit(node)
        if isinstance(node.func, ast.Attribute) and node.func.attr in GROWING_METHODS:
            return ast.Call(
                func=ast.Name(id=METHOD_HOOK, ctx=ast.Load()),
                args=[node.func.value, ast.Constant(value=node.func.attr), *node.args],
                keywords=node.keywords,
            )
        return node


def compile_program(program: str) -> Any:
    """Instrument a validated program and compile it to a code object."""
    tree = _Instrumenter().visit(parse_program(program))
    ast.fix_missing_locations(tree)
    return compile(tree, "<generated-program>", "exec")


class StepBudget:
    """Per-run counter consumed by instrumented loops and comprehensions."""

    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        self.steps = 0

    def tick(self) -> bool:
        self.steps += 1
        if self.steps > self.max_steps:
            raise ExecutionFault(f"Step budget exceeded ({self.max_steps} iterations)")
        return True


def make_repeat(
    max_length: int,
    max_int_bits: int = DEFAULT_CONFIG.max_int_bits,
) -> Callable[[Any, Any], Any]:
    """Build a multiplication hook that refuses oversized repetition and integers."""

    def repeat(left: Any, right: Any) -> Any:
        for sequence, count in ((left, right), (right, left)):
            if isinstance(sequence, _SEQUENCES) and isinstance(count, int):
                if len(sequence) * count > max_length:
                    raise ExecutionFault(f"Sequence repetition exceeds {max_length} items")
        if isinstance(left, int) and isinstance(right, int):
            if left.bit_length() + right.bit_length() > max_int_bits:
                raise ExecutionFault(f"Integer product exceeds {max_int_bits} bits")
        return left * right

    return repeat


def make_concat(max_length: int) -> Callable[..., Any]:
    """Build an addition hook that refuses oversized concatenation.

    With ``inplace`` set the hook stands in for ``+=``, so lists keep their
    identity and accept any iterable on the right.
    """

    def concat(left: Any, right: Any, inplace: bool = False) -> Any:
        if isinstance(left, list) and inplace and not isinstance(right, _SEQUENCES):
            right = list(right)
        if isinstance(left, _SEQUENCES) and isinstance(right, _SEQUENCES):
            if len(left) + len(right) > max_length:
                raise ExecutionFault(f"Concatenation exceeds {max_length} items")
        if inplace:
            left += right
            return left
        return left + right

    return concat


def make_method(max_length: int) -> Callable[..., Any]:
    """Build a call hook for ``join``/``replace``/``extend`` that checks result size first."""

    def check(size: int) -> None:
        if size > max_length:
            raise ExecutionFault(f"Result of string or list method exceeds {max_length} items")

    def call(receiver: Any, name: str, *args: Any, **kwargs: Any) -> Any:
        method = getattr(receiver, name)
        if name == "join" and isinstance(receiver, (str, bytes)) and len(args) == 1 and not kwargs:
            parts = list(args[0])
            size = sum(len(part) for part in parts if isinstance(part, (str, bytes)))
            check(size + len(receiver) * max(len(parts) - 1, 0))
            return method(parts)
        if name == "replace" and isinstance(receiver, (str, bytes)) and len(args) >= 2:
            old, new = args[0], args[1]
            if isinstance(old, type(receiver)) and isinstance(new, type(receiver)):
                hits = receiver.count(old) if old else len(receiver) + 1
                limit = args[2] if len(args) > 2 else kwargs.get("count", -1)
                if isinstance(limit, int) and limit >= 0:
                    hits = min(hits, limit)
                check(len(receiver) + hits * (len(new) - len(old)))
            return method(*args, **kwargs)
        if name == "extend" and isinstance(receiver, list) and len(args) == 1 and not kwargs:
            items = list(args[0])
            check(len(receiver) + len(items))
            return method(items)
        return method(*args, **kwargs)

    return call


def numeric_sum(values: Any, start: Any = 0) -> Any:
    """``sum`` that refuses sequence starts such as ``sum(lists, [])``."""
    if isinstance(start, _SEQUENCES):
        raise ExecutionFault("sum() only adds numbers")
    return sum(values, start)


def make_range(max_range: int) -> Callable[..., range]:
    """Build a ``range`` replacement bounded to ``max_range`` items."""

    def bounded_range(*args: int) -> range:
        values = range(*args)
        if len(values) > max_range:
            raise ExecutionFault(f"range() larger than {max_range} items is not allowed")
        return values

    return bounded_range


def safe_builtins(config: ProgramGuardrailConfig | None = None) -> dict[str, Any]:
    """Return a fresh builtins dict holding only pure helpers."""
    if config is None:
        config = DEFAULT_CONFIG
    return {
        "abs": abs,
        "all": all,
        "any": any,
        "bool": bool,
        "dict": dict,
        "enumerate": enumerate,
        "float": float,
        "int": int,
        "isinstance": isinstance,
        "len": len,
        "list": list,
        "max": max,
        "min": min,
        "range": make_range(config.max_range),
        "reversed": reversed,
        "round": round,
        "set": set,
        "sorted": sorted,
        "str": str,
        "sum": numeric_sum,
        "tuple": tuple,
        "zip": zip,
    }
