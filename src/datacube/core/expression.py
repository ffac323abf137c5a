"""
Expression algebra for dimension and measure definitions.

Expressions come in three shapes, mirroring the persisted dict form:

    {"op": "ref", "name": "page"}                          $page
    {"op": "literal", "value": 3}                          3
    {"op": "chain", "expression": ..., "action": {...}}    $main.sum($added)

Chains carry an ordered list of actions (``action`` when there is one,
``actions`` otherwise). Binary operators in the text form (``++ + - * /``)
become chain actions (``concat add subtract multiply divide``).

The resolver types an expression against an attribute catalog; the canonical
form (nested tuples) is what structural equality is decided on.
"""

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from datacube.core.attribute import Attribute, AttributeType
from datacube.core.errors import (
    ConfigError,
    ExpressionReferenceError,
    ExpressionSyntaxError,
    TypeMismatchError,
)

MAIN = "main"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_T = AttributeType


@dataclass(frozen=True)
class ActionSignature:
    """
    Typing rules for one chain action.

    Attributes:
        input_types: Accepted input types (None accepts any non-dataset type)
        expression_types: Accepted argument types (None accepts any non-dataset type)
        takes_expression: Whether the action has an expression argument
        output: Result type (None means same as input)
        params: Positional parameter names in the text form
    """

    input_types: tuple[AttributeType, ...] | None
    expression_types: tuple[AttributeType, ...] | None = None
    takes_expression: bool = False
    output: AttributeType | None = None
    params: tuple[str, ...] = ()


ACTION_SIGNATURES: dict[str, ActionSignature] = {
    "sum": ActionSignature((_T.DATASET,), (_T.NUMBER,), True, _T.NUMBER),
    "min": ActionSignature((_T.DATASET,), (_T.NUMBER,), True, _T.NUMBER),
    "max": ActionSignature((_T.DATASET,), (_T.NUMBER,), True, _T.NUMBER),
    "average": ActionSignature((_T.DATASET,), (_T.NUMBER,), True, _T.NUMBER),
    "countDistinct": ActionSignature((_T.DATASET,), None, True, _T.NUMBER),
    "count": ActionSignature((_T.DATASET,), None, False, _T.NUMBER),
    "concat": ActionSignature((_T.STRING,), (_T.STRING,), True, _T.STRING),
    "add": ActionSignature((_T.NUMBER,), (_T.NUMBER,), True, _T.NUMBER),
    "subtract": ActionSignature((_T.NUMBER,), (_T.NUMBER,), True, _T.NUMBER),
    "multiply": ActionSignature((_T.NUMBER,), (_T.NUMBER,), True, _T.NUMBER),
    "divide": ActionSignature((_T.NUMBER,), (_T.NUMBER,), True, _T.NUMBER),
    "lookup": ActionSignature((_T.STRING,), output=_T.STRING, params=("lookupId",)),
    "substr": ActionSignature((_T.STRING,), output=_T.STRING, params=("position", "length")),
    "numberBucket": ActionSignature((_T.NUMBER, _T.NUMBER_RANGE), output=_T.NUMBER_RANGE, params=("size", "offset")),
    "timeBucket": ActionSignature((_T.TIME, _T.TIME_RANGE), output=_T.TIME_RANGE, params=("duration", "timezone")),
    "timeFloor": ActionSignature((_T.TIME,), output=_T.TIME, params=("duration", "timezone")),
    "is": ActionSignature(None, None, True, _T.BOOLEAN),
    "contains": ActionSignature((_T.STRING,), (_T.STRING,), True, _T.BOOLEAN),
}

BINARY_OPERATORS = {"++": "concat", "+": "add", "-": "subtract", "*": "multiply", "/": "divide"}


def _freeze(value: Any) -> Any:
    """Turn nested dicts/lists into hashable, order-independent tuples. Bools are tagged (True == 1)."""
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, dict):
        return tuple((key, _freeze(item)) for key, item in sorted(value.items(), key=lambda kv: kv[0]))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _value_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def _literal_to_string(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"
    return json.dumps(value, default=str)


class Expression(ABC):
    """Base class for all expression nodes. Subclasses are frozen dataclasses."""

    op: ClassVar[str] = ""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted dict form."""

    @abstractmethod
    def to_canonical(self) -> tuple:
        """Canonical tree used for structural equality."""

    @abstractmethod
    def to_string(self) -> str:
        """Text form, parseable by ``parse_expression``."""

    @abstractmethod
    def children(self) -> list["Expression"]:
        """Direct sub-expressions, left to right."""

    @abstractmethod
    def substitute(self, fn: Callable[["Expression"], "Expression | None"]) -> "Expression":
        """
        Rebuild the tree bottom-up through ``fn``.

        ``fn`` is offered every node before its children are visited; returning
        an Expression replaces the node, returning None keeps descending.
        """

    def __str__(self) -> str:
        return self.to_string()

    def walk(self) -> Iterable["Expression"]:
        """Pre-order, left-to-right traversal."""
        yield self
        for child in self.children():
            yield from child.walk()

    def references(self) -> list[str]:
        """Referenced names (including ``main``), first-occurrence order, no duplicates."""
        names: list[str] = []
        for node in self.walk():
            if isinstance(node, RefExpression) and node.name not in names:
                names.append(node.name)
        return names

    def column_references(self) -> list[str]:
        return [name for name in self.references() if name != MAIN]

    def contains_main(self) -> bool:
        return MAIN in self.references()

    def rename_references(self, renames: Mapping[str, str]) -> "Expression":
        if not renames:
            return self

        def _rename(node: Expression) -> Expression | None:
            if isinstance(node, RefExpression) and node.name in renames:
                return RefExpression(renames[node.name])
            return None

        return self.substitute(_rename)

    def chain(self, action: "Action") -> "ChainExpression":
        return make_chain(self, (action,))

    def structurally_equals(self, other: "Expression | None") -> bool:
        return other is not None and self.to_canonical() == other.to_canonical()

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Expression":
        """
        Deserialize from the dict form.

        Raises:
            ConfigError: On unknown op, missing fields or unknown actions
        """
        if not isinstance(data, dict):
            raise ConfigError(f"expression must be a dict, got {type(data).__name__}")

        op = data.get("op")
        if op == "ref":
            if not data.get("name"):
                raise ConfigError(f"ref expression must have a name: {data!r}")
            return RefExpression(data["name"])
        if op == "literal":
            if "value" not in data:
                raise ConfigError(f"literal expression must have a value: {data!r}")
            return LiteralExpression(data["value"], data.get("type"))
        if op == "chain":
            if "expression" not in data:
                raise ConfigError(f"chain expression must have an expression: {data!r}")
            if "actions" in data:
                raw_actions = data["actions"]
            elif "action" in data:
                raw_actions = [data["action"]]
            else:
                raise ConfigError(f"chain expression must have an action: {data!r}")
            actions = tuple(Action.from_dict(raw) for raw in raw_actions)
            return make_chain(Expression.from_dict(data["expression"]), actions)
        raise ConfigError(f"unknown expression op '{op}'")

    @staticmethod
    def from_config(value: "str | dict[str, Any] | Expression") -> "Expression":
        """Accept an expression in any persisted form: text, dict, or an Expression."""
        if isinstance(value, Expression):
            return value
        if isinstance(value, str):
            return parse_expression(value)
        if isinstance(value, dict):
            return Expression.from_dict(value)
        raise ConfigError(f"can not interpret expression {value!r}")


@dataclass(frozen=True)
class RefExpression(Expression):
    """Reference to a column, or to the aggregation scope ``$main``."""

    name: str
    op: ClassVar[str] = "ref"

    def to_dict(self) -> dict[str, Any]:
        return {"op": "ref", "name": self.name}

    def to_canonical(self) -> tuple:
        return ("ref", self.name)

    def to_string(self) -> str:
        if _IDENTIFIER.match(self.name):
            return f"${self.name}"
        return "${" + self.name + "}"

    def children(self) -> list[Expression]:
        return []

    def substitute(self, fn: Callable[[Expression], Expression | None]) -> Expression:
        return fn(self) or self


@dataclass(frozen=True)
class LiteralExpression(Expression):
    """Constant value. ``type`` is only set for typed dict literals (SET, TIME_RANGE, ...)."""

    value: Any
    type: str | None = None
    op: ClassVar[str] = "literal"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"op": "literal", "value": self.value}
        if self.type is not None:
            result["type"] = self.type
        return result

    def to_canonical(self) -> tuple:
        return ("literal", self.type, _value_kind(self.value), _freeze(self.value))

    def to_string(self) -> str:
        return _literal_to_string(self.value)

    def children(self) -> list[Expression]:
        return []

    def substitute(self, fn: Callable[[Expression], Expression | None]) -> Expression:
        return fn(self) or self

    def literal_type(self) -> AttributeType | None:
        """Type of the constant; None for null (compatible with any type)."""
        if self.type == "SET":
            set_type = self.value.get("setType") if isinstance(self.value, dict) else None
            return _T.SET_NUMBER if set_type == "NUMBER" else _T.SET_STRING
        if self.type in ("TIME_RANGE", "NUMBER_RANGE", "TIME"):
            return _T(self.type)
        value = self.value
        if value is None:
            return None
        if isinstance(value, bool):
            return _T.BOOLEAN
        if isinstance(value, (int, float)):
            return _T.NUMBER
        return _T.STRING


@dataclass(frozen=True)
class Action:
    """
    One step of a chain: ``.sum($added)``, ``.numberBucket(5)``, ``++ ']'``.

    ``params`` holds non-expression arguments as sorted (key, value) pairs.
    """

    action: str
    expression: Expression | None = None
    params: tuple[tuple[str, Any], ...] = ()

    @property
    def signature(self) -> ActionSignature:
        return ACTION_SIGNATURES[self.action]

    def param(self, key: str, default: Any = None) -> Any:
        for name, value in self.params:
            if name == key:
                return value
        return default

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action": self.action}
        if self.expression is not None:
            result["expression"] = self.expression.to_dict()
        for key, value in self.params:
            result[key] = value
        return result

    def to_canonical(self) -> tuple:
        inner = self.expression.to_canonical() if self.expression is not None else None
        return ("action", self.action, inner, _freeze(dict(self.params)))

    def to_string(self) -> str:
        args: list[str] = []
        if self.expression is not None:
            args.append(self.expression.to_string())
        for name in self.signature.params:
            value = self.param(name)
            if value is None:
                continue
            if isinstance(value, str) and _IDENTIFIER.match(value):
                args.append(value)
            else:
                args.append(_literal_to_string(value))
        return f".{self.action}({','.join(args)})"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        if not isinstance(data, dict) or "action" not in data:
            raise ConfigError(f"action must be a dict with an 'action' key: {data!r}")
        name = data["action"]
        if name not in ACTION_SIGNATURES:
            raise ConfigError(f"unknown action '{name}'")
        expression = Expression.from_dict(data["expression"]) if "expression" in data else None
        params = tuple(sorted((k, v) for k, v in data.items() if k not in ("action", "expression")))
        return cls(name, expression, params)


@dataclass(frozen=True)
class ChainExpression(Expression):
    """An operand followed by one or more actions, applied left to right."""

    expression: Expression
    actions: tuple[Action, ...]
    op: ClassVar[str] = "chain"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"op": "chain", "expression": self.expression.to_dict()}
        if len(self.actions) == 1:
            result["action"] = self.actions[0].to_dict()
        else:
            result["actions"] = [action.to_dict() for action in self.actions]
        return result

    def to_canonical(self) -> tuple:
        return ("chain", self.expression.to_canonical(), tuple(a.to_canonical() for a in self.actions))

    def to_string(self) -> str:
        operand = self.expression.to_string()
        if isinstance(self.expression, LiteralExpression) and isinstance(self.expression.value, (int, float)):
            operand = f"({operand})"
        return operand + "".join(action.to_string() for action in self.actions)

    def children(self) -> list[Expression]:
        nodes = [self.expression]
        nodes.extend(action.expression for action in self.actions if action.expression is not None)
        return nodes

    def substitute(self, fn: Callable[[Expression], Expression | None]) -> Expression:
        replaced = fn(self)
        if replaced is not None:
            return replaced
        actions = tuple(
            Action(a.action, a.expression.substitute(fn), a.params) if a.expression is not None else a
            for a in self.actions
        )
        return make_chain(self.expression.substitute(fn), actions)


def make_chain(operand: Expression, actions: tuple[Action, ...]) -> Expression:
    """Build a chain, flattening chain-of-chain so equal programs share one canonical form."""
    if not actions:
        return operand
    if isinstance(operand, ChainExpression):
        return ChainExpression(operand.expression, operand.actions + tuple(actions))
    return ChainExpression(operand, tuple(actions))


def ref(name: str) -> RefExpression:
    return RefExpression(name)


def main_aggregate(action: str, column: str) -> Expression:
    """``$main.<action>($column)``"""
    return make_chain(RefExpression(MAIN), (Action(action, RefExpression(column)),))


# =========================================================================
# Text parser
# =========================================================================

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<ref>\$\{[^}]*\}|\$[A-Za-z_][A-Za-z0-9_]*)
  | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<op>\+\+|[+\-*/().,])
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "false": False, "null": None}


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ExpressionSyntaxError(f"unexpected character '{text[pos]}' at {pos} in '{text}'")
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive descent over the token list. Precedence: ``++`` < ``+ -`` < ``* /`` < ``.action()``."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self, offset: int = 0) -> tuple[str, str] | None:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _accept(self, kind: str, value: str | None = None) -> tuple[str, str] | None:
        token = self._peek()
        if token and token[0] == kind and (value is None or token[1] == value):
            self.pos += 1
            return token
        return None

    def _expect(self, kind: str, value: str | None = None) -> tuple[str, str]:
        token = self._accept(kind, value)
        if token is None:
            found = self._peek()
            raise ExpressionSyntaxError(
                f"expected {value or kind} but found {found[1] if found else 'end of input'} in '{self.text}'"
            )
        return token

    def parse(self) -> Expression:
        if not self.tokens:
            raise ExpressionSyntaxError("empty expression")
        expression = self._binary(0)
        if self._peek() is not None:
            raise ExpressionSyntaxError(f"unexpected '{self._peek()[1]}' in '{self.text}'")
        return expression

    _LEVELS = (("++",), ("+", "-"), ("*", "/"))

    def _binary(self, level: int) -> Expression:
        if level == len(self._LEVELS):
            return self._postfix()
        left = self._binary(level + 1)
        while True:
            token = self._peek()
            if not (token and token[0] == "op" and token[1] in self._LEVELS[level]):
                return left
            self.pos += 1
            right = self._binary(level + 1)
            left = left.chain(Action(BINARY_OPERATORS[token[1]], right))

    def _postfix(self) -> Expression:
        expression = self._primary()
        while self._accept("op", "."):
            name = self._expect("ident")[1]
            self._expect("op", "(")
            args: list[Any] = []
            if not self._accept("op", ")"):
                args.append(self._argument())
                while self._accept("op", ","):
                    args.append(self._argument())
                self._expect("op", ")")
            expression = expression.chain(self._make_action(name, args))
        return expression

    def _argument(self) -> Any:
        token = self._peek()
        following = self._peek(1)
        if (
            token
            and token[0] == "ident"
            and token[1] not in _KEYWORDS
            and following
            and following[0] == "op"
            and following[1] in (",", ")")
        ):
            self.pos += 1
            return token[1]
        return self._binary(0)

    def _make_action(self, name: str, args: list[Any]) -> Action:
        signature = ACTION_SIGNATURES.get(name)
        if signature is None:
            raise ExpressionSyntaxError(f"unknown action '{name}' in '{self.text}'")

        expression = None
        if signature.takes_expression:
            if not args or not isinstance(args[0], Expression):
                raise ExpressionSyntaxError(f"{name} needs an expression argument in '{self.text}'")
            expression, args = args[0], args[1:]

        if len(args) > len(signature.params):
            raise ExpressionSyntaxError(f"too many arguments to {name} in '{self.text}'")

        params = []
        for key, arg in zip(signature.params, args, strict=False):
            if isinstance(arg, LiteralExpression):
                arg = arg.value
            elif isinstance(arg, Expression):
                raise ExpressionSyntaxError(f"{name} parameter '{key}' must be a constant in '{self.text}'")
            params.append((key, arg))
        return Action(name, expression, tuple(sorted(params)))

    def _primary(self) -> Expression:
        token = self._peek()
        if token is None:
            raise ExpressionSyntaxError(f"unexpected end of expression '{self.text}'")
        kind, value = token
        self.pos += 1

        if kind == "ref":
            name = value[2:-1] if value.startswith("${") else value[1:]
            return RefExpression(name)
        if kind == "number":
            return LiteralExpression(_to_number(value))
        if kind == "string":
            body = value[1:-1]
            return LiteralExpression(re.sub(r"\\(.)", r"\1", body))
        if kind == "ident" and value in _KEYWORDS:
            return LiteralExpression(_KEYWORDS[value])
        if kind == "op" and value == "(":
            inner = self._binary(0)
            self._expect("op", ")")
            return inner
        if kind == "op" and value == "-":
            number = self._expect("number")[1]
            return LiteralExpression(-_to_number(number))
        raise ExpressionSyntaxError(f"unexpected '{value}' in '{self.text}'")


def _to_number(text: str) -> int | float:
    number = float(text)
    return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number


def parse_expression(text: str) -> Expression:
    """
    Parse the text form of an expression.

    Examples:
        $page
        ${page:#love$}
        $main.sum($added) / $main.sum($deleted)
        '[' ++ $page ++ ']'
        $language.lookup(wiki_language_lookup)

    Raises:
        ExpressionSyntaxError: On malformed text
    """
    return _Parser(text).parse()


# =========================================================================
# Resolver
# =========================================================================


@dataclass(frozen=True)
class ResolvedExpression:
    """An expression that type-checked against a catalog."""

    expression: Expression
    type: AttributeType | None


def _as_catalog(attributes: Mapping[str, Attribute] | Iterable[Attribute]) -> Mapping[str, Attribute]:
    if isinstance(attributes, Mapping):
        return attributes
    return {attribute.name: attribute for attribute in attributes}


def _type_names(types: tuple[AttributeType, ...]) -> str:
    return " or ".join(t.value for t in types)


def _infer_type(expression: Expression, catalog: Mapping[str, Attribute]) -> AttributeType | None:
    if isinstance(expression, RefExpression):
        if expression.name == MAIN:
            return _T.DATASET
        attribute = catalog.get(expression.name)
        if attribute is None:
            raise ExpressionReferenceError(f"could not resolve {expression.to_string()}")
        return attribute.type

    if isinstance(expression, LiteralExpression):
        return expression.literal_type()

    if isinstance(expression, ChainExpression):
        current = _infer_type(expression.expression, catalog)
        for action in expression.actions:
            current = _apply_action(action, current, catalog)
        return current

    raise TypeError(f"unsupported expression node {type(expression).__name__}")


def _apply_action(
    action: Action, input_type: AttributeType | None, catalog: Mapping[str, Attribute]
) -> AttributeType | None:
    signature = action.signature
    name = action.action

    if input_type is not None:
        if signature.input_types is not None and input_type not in signature.input_types:
            raise TypeMismatchError(
                f"{name} must have input of type {_type_names(signature.input_types)} (is {input_type.value})"
            )
        if signature.input_types is None and input_type is _T.DATASET:
            raise TypeMismatchError(f"{name} must not have input of type DATASET")

    if action.expression is not None:
        argument_type = _infer_type(action.expression, catalog)
        if argument_type is not None:
            if signature.expression_types is not None and argument_type not in signature.expression_types:
                raise TypeMismatchError(
                    f"{name} must have expression of type {_type_names(signature.expression_types)} "
                    f"(is {argument_type.value})"
                )
            if signature.expression_types is None and argument_type is _T.DATASET:
                raise TypeMismatchError(f"{name} must not have expression of type DATASET")

    return signature.output or input_type


def resolve(
    expression: Expression, attributes: Mapping[str, Attribute] | Iterable[Attribute]
) -> ResolvedExpression:
    """
    Type-check an expression against an attribute catalog.

    Raises:
        ExpressionReferenceError: A referenced column is not in the catalog
        TypeMismatchError: An action received an operand of the wrong type
    """
    return ResolvedExpression(expression, _infer_type(expression, _as_catalog(attributes)))


def type_of(resolved: ResolvedExpression) -> AttributeType | None:
    return resolved.type


def references(expression: Expression) -> list[str]:
    return expression.references()


def to_canonical_form(expression: Expression) -> tuple:
    return expression.to_canonical()
