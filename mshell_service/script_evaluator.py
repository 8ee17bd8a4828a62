"""
Shell-expression evaluator: the scripting engine behind the prompt.

Covers the expression language operators actually type at a database
shell prompt, nothing more:

  - literals: numbers, quoted strings, ``true``/``false``/``null``/``undefined``,
    object literals (bare, quoted, numeric and ``$``-prefixed keys),
    array literals and regular-expression literals ``/pattern/flags``
  - member access (``a.b``, ``a["b"]``), calls, ``new Ctor(...)``
  - unary ``- + ! typeof``, arithmetic, comparison, ``&&``/``||``, ``?:``
  - assignment to variables and to object/array members
  - ``var``/``let``/``const`` declarations
  - statements separated by ``;`` or line breaks, ``//`` and ``/* */`` comments

Host objects (database, collection, cursor proxies) derive from
``ScriptObject`` and expose their members through ``get_member``; the
evaluator never reaches into their Python attributes directly.

Regex literals evaluate to ``ScriptRegExp``, which the value converter
later flattens to ``{$regex, $options}``.
"""

import math
import re
from collections import namedtuple
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Tuple


# ---------------------- ERRORS ----------------------

class ScriptError(Exception):
    """Base class for evaluation failures."""


class ScriptSyntaxError(ScriptError):
    pass


class ScriptReferenceError(ScriptError):
    pass


class ScriptTypeError(ScriptError):
    pass


# ---------------------- HOST VALUES ----------------------

class ScriptObject:
    """Base class for host objects the evaluator treats as native objects.

    ``members`` maps script-visible member names to Python attribute
    names.  Anything not in the table goes to ``member_fallback``, which
    returns ``None`` (``undefined``) unless a subclass overrides it.
    """

    script_class = "Object"
    members: Dict[str, str] = {}

    def get_member(self, name: str) -> Any:
        attr = self.members.get(name)
        if attr is not None:
            return getattr(self, attr)
        return self.member_fallback(name)

    def member_fallback(self, name: str) -> Any:
        return None

    def render(self) -> str:
        """Text shown when this object is the result of a command."""
        return str(self)


class ScriptRegExp:
    """A regular-expression literal produced by the evaluator."""

    __slots__ = ("source", "flags")

    def __init__(self, source: str, flags: str = ""):
        self.source = source
        self.flags = flags

    def __str__(self) -> str:
        return f"/{self.source}/{self.flags}"

    def __repr__(self) -> str:
        return f"ScriptRegExp({self.source!r}, {self.flags!r})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ScriptRegExp):
            return NotImplemented
        return self.source == other.source and self.flags == other.flags

    def __hash__(self) -> int:
        return hash((self.source, self.flags))


# ---------------------- TOKENIZER ----------------------

Token = namedtuple("Token", ["kind", "value", "pos", "newline_before"])

_WHITESPACE_RE = re.compile(r"[ \t\r\f\v]+")
_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F]+|(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_REGEX_RE = re.compile(r"/((?:[^/\\\[\n]|\\.|\[(?:[^\]\\\n]|\\.)*\])+)/([A-Za-z]*)")

# Longest first so "===" wins over "==" and "="
_PUNCTUATORS = (
    "===", "!==", "==", "!=", "<=", ">=", "&&", "||", "=>",
    "{", "}", "(", ")", "[", "]", ".", ",", ":", ";", "?",
    "=", "+", "-", "*", "/", "%", "<", ">", "!",
)

KEYWORDS = frozenset({
    "var", "let", "const", "new", "typeof",
    "true", "false", "null", "undefined",
})

_UNSUPPORTED_KEYWORDS = frozenset({
    "function", "for", "while", "do", "if", "else", "return", "switch",
    "class", "try", "catch", "throw",
})

_SIMPLE_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "b": "\b",
    "f": "\f", "v": "\v", "0": "\0",
}


def _regex_allowed(previous: Optional[Token]) -> bool:
    """A ``/`` starts a regex literal unless it follows a value."""
    if previous is None:
        return True
    if previous.kind in ("num", "str", "regex"):
        return False
    if previous.kind == "name":
        return previous.value in ("typeof", "new")
    return previous.value not in (")", "]", "}")


def _read_string(source: str, start: int) -> Tuple[str, int]:
    quote = source[start]
    chars: List[str] = []
    i = start + 1
    while i < len(source):
        ch = source[i]
        if ch == quote:
            return "".join(chars), i + 1
        if ch == "\n":
            break
        if ch == "\\":
            i += 1
            if i >= len(source):
                break
            esc = source[i]
            if esc in _SIMPLE_ESCAPES:
                chars.append(_SIMPLE_ESCAPES[esc])
            elif esc == "u" and re.match(r"[0-9a-fA-F]{4}", source[i + 1:i + 5]):
                chars.append(chr(int(source[i + 1:i + 5], 16)))
                i += 4
            elif esc == "x" and re.match(r"[0-9a-fA-F]{2}", source[i + 1:i + 3]):
                chars.append(chr(int(source[i + 1:i + 3], 16)))
                i += 2
            elif esc == "\n":
                pass  # line continuation
            else:
                chars.append(esc)
            i += 1
            continue
        chars.append(ch)
        i += 1
    raise ScriptSyntaxError(f"Unterminated string literal at position {start}")


def tokenize(source: str) -> List[Token]:
    """Split script text into tokens.

    ``newline_before`` records whether a line break preceded the token so
    the parser can end statements at line breaks.
    """
    tokens: List[Token] = []
    i = 0
    newline = False
    length = len(source)

    while i < length:
        ch = source[i]

        if ch == "\n":
            newline = True
            i += 1
            continue

        m = _WHITESPACE_RE.match(source, i)
        if m:
            i = m.end()
            continue

        if source.startswith("//", i):
            end = source.find("\n", i)
            i = length if end == -1 else end
            continue

        if source.startswith("/*", i):
            end = source.find("*/", i + 2)
            if end == -1:
                raise ScriptSyntaxError(f"Unterminated comment at position {i}")
            if "\n" in source[i:end]:
                newline = True
            i = end + 2
            continue

        previous = tokens[-1] if tokens else None

        if ch in "\"'":
            value, end = _read_string(source, i)
            tokens.append(Token("str", value, i, newline))
            i = end
            newline = False
            continue

        if ch.isdigit() or (ch == "." and i + 1 < length and source[i + 1].isdigit()):
            m = _NUMBER_RE.match(source, i)
            text = m.group(0)
            if text.lower().startswith("0x"):
                value: Any = int(text, 16)
            elif any(c in text for c in ".eE"):
                value = float(text)
            else:
                value = int(text)
            tokens.append(Token("num", value, i, newline))
            i = m.end()
            newline = False
            continue

        m = _IDENT_RE.match(source, i)
        if m:
            tokens.append(Token("name", m.group(0), i, newline))
            i = m.end()
            newline = False
            continue

        if ch == "/" and _regex_allowed(previous):
            m = _REGEX_RE.match(source, i)
            if m:
                tokens.append(Token("regex", (m.group(1), m.group(2)), i, newline))
                i = m.end()
                newline = False
                continue

        for punct in _PUNCTUATORS:
            if source.startswith(punct, i):
                tokens.append(Token("punct", punct, i, newline))
                i += len(punct)
                newline = False
                break
        else:
            raise ScriptSyntaxError(f"Unexpected character '{ch}' at position {i}")

    tokens.append(Token("eof", None, length, True))
    return tokens


# ---------------------- PARSER ----------------------
#
# Nodes are plain tuples whose first element names the node kind:
#   ("literal", value)            ("regex", source, flags)
#   ("name", ident)               ("object", [(key, expr), ...])
#   ("array", [expr, ...])        ("member", obj, name)
#   ("index", obj, key_expr)      ("call", callee, [args])
#   ("new", callee, [args])       ("unary", op, expr)
#   ("binary", op, left, right)   ("logical", op, left, right)
#   ("cond", test, then, other)   ("assign", target, value)
#   ("var", [(name, expr | None), ...])
#   ("expr", expr)

_LITERAL_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": None}

_BINARY_PRECEDENCE = [
    ("==", "!=", "===", "!=="),
    ("<", "<=", ">", ">="),
    ("+", "-"),
    ("*", "/", "%"),
]


class _Parser:

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    # -- token helpers --

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "eof":
            self.pos += 1
        return token

    def _is(self, value: str) -> bool:
        token = self.current
        return token.kind == "punct" and token.value == value

    def _accept(self, value: str) -> bool:
        if self._is(value):
            self._advance()
            return True
        return False

    def _expect(self, value: str) -> Token:
        if not self._is(value):
            self._unexpected()
        return self._advance()

    def _unexpected(self):
        token = self.current
        if token.kind == "eof":
            raise ScriptSyntaxError("Unexpected end of input")
        shown = token.value if token.kind != "regex" else "/%s/%s" % token.value
        raise ScriptSyntaxError(f"Unexpected token '{shown}' at position {token.pos}")

    # -- statements --

    def parse_program(self) -> List[tuple]:
        statements: List[tuple] = []
        while self.current.kind != "eof":
            if self._accept(";"):
                continue
            statements.append(self._statement())
            if self._accept(";"):
                continue
            if self.current.kind != "eof" and not self.current.newline_before:
                self._unexpected()
        return statements

    def _statement(self) -> tuple:
        token = self.current
        if token.kind == "name" and token.value in ("var", "let", "const"):
            self._advance()
            declarations = []
            while True:
                name = self._advance()
                if name.kind != "name" or name.value in KEYWORDS:
                    raise ScriptSyntaxError(
                        f"Expected variable name at position {name.pos}"
                    )
                init = self._assignment() if self._accept("=") else None
                declarations.append((name.value, init))
                if not self._accept(","):
                    break
            return ("var", declarations)
        return ("expr", self._expression())

    # -- expressions --

    def _expression(self) -> tuple:
        return self._assignment()

    def _assignment(self) -> tuple:
        target = self._conditional()
        if self._is("="):
            if target[0] not in ("name", "member", "index"):
                raise ScriptSyntaxError(
                    f"Invalid assignment target at position {self.current.pos}"
                )
            self._advance()
            return ("assign", target, self._assignment())
        if self._is("=>"):
            raise ScriptSyntaxError("Functions are not supported in shell expressions")
        return target

    def _conditional(self) -> tuple:
        test = self._logical_or()
        if self._accept("?"):
            then = self._assignment()
            self._expect(":")
            other = self._assignment()
            return ("cond", test, then, other)
        return test

    def _logical_or(self) -> tuple:
        node = self._logical_and()
        while self._accept("||"):
            node = ("logical", "||", node, self._logical_and())
        return node

    def _logical_and(self) -> tuple:
        node = self._binary(0)
        while self._accept("&&"):
            node = ("logical", "&&", node, self._binary(0))
        return node

    def _binary(self, level: int) -> tuple:
        if level >= len(_BINARY_PRECEDENCE):
            return self._unary()
        operators = _BINARY_PRECEDENCE[level]
        node = self._binary(level + 1)
        while self.current.kind == "punct" and self.current.value in operators:
            op = self._advance().value
            node = ("binary", op, node, self._binary(level + 1))
        return node

    def _unary(self) -> tuple:
        token = self.current
        if token.kind == "punct" and token.value in ("-", "+", "!"):
            self._advance()
            return ("unary", token.value, self._unary())
        if token.kind == "name" and token.value == "typeof":
            self._advance()
            return ("unary", "typeof", self._unary())
        return self._postfix()

    def _postfix(self) -> tuple:
        if self.current.kind == "name" and self.current.value == "new":
            node = self._new_expression()
        else:
            node = self._primary()
        while True:
            if self._accept("."):
                name = self._advance()
                if name.kind != "name":
                    raise ScriptSyntaxError(
                        f"Expected property name at position {name.pos}"
                    )
                node = ("member", node, name.value)
            elif self._accept("["):
                key = self._expression()
                self._expect("]")
                node = ("index", node, key)
            elif self._is("("):
                node = ("call", node, self._arguments())
            else:
                return node

    def _new_expression(self) -> tuple:
        self._advance()
        callee = self._primary()
        while True:
            if self._accept("."):
                name = self._advance()
                if name.kind != "name":
                    raise ScriptSyntaxError(
                        f"Expected property name at position {name.pos}"
                    )
                callee = ("member", callee, name.value)
            elif self._accept("["):
                key = self._expression()
                self._expect("]")
                callee = ("index", callee, key)
            else:
                break
        args = self._arguments() if self._is("(") else []
        return ("new", callee, args)

    def _arguments(self) -> List[tuple]:
        self._expect("(")
        args: List[tuple] = []
        while not self._is(")"):
            args.append(self._assignment())
            if not self._accept(","):
                break
        self._expect(")")
        return args

    def _primary(self) -> tuple:
        token = self.current

        if token.kind == "num" or token.kind == "str":
            self._advance()
            return ("literal", token.value)

        if token.kind == "regex":
            self._advance()
            return ("regex", token.value[0], token.value[1])

        if token.kind == "name":
            if token.value in _LITERAL_KEYWORDS:
                self._advance()
                return ("literal", _LITERAL_KEYWORDS[token.value])
            if token.value in _UNSUPPORTED_KEYWORDS:
                raise ScriptSyntaxError(
                    f"'{token.value}' is not supported in shell expressions"
                )
            if token.value in KEYWORDS:
                self._unexpected()
            self._advance()
            return ("name", token.value)

        if self._accept("("):
            node = self._expression()
            self._expect(")")
            return node

        if self._is("{"):
            return self._object_literal()

        if self._is("["):
            return self._array_literal()

        self._unexpected()

    def _object_literal(self) -> tuple:
        self._expect("{")
        entries: List[Tuple[str, tuple]] = []
        while not self._is("}"):
            key_token = self._advance()
            if key_token.kind in ("name", "str"):
                key = key_token.value
            elif key_token.kind == "num":
                key = _to_string(key_token.value)
            else:
                raise ScriptSyntaxError(
                    f"Expected property key at position {key_token.pos}"
                )
            self._expect(":")
            entries.append((key, self._assignment()))
            if not self._accept(","):
                break
        self._expect("}")
        return ("object", entries)

    def _array_literal(self) -> tuple:
        self._expect("[")
        items: List[tuple] = []
        while not self._is("]"):
            items.append(self._assignment())
            if not self._accept(","):
                break
        self._expect("]")
        return ("array", items)


def parse(source: str) -> List[tuple]:
    """Parse script text into a list of statement nodes."""
    return _Parser(tokenize(source)).parse_program()


# ---------------------- VALUE SEMANTICS ----------------------

def _to_string(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def truthy(value: Any) -> bool:
    """Script truthiness: empty objects and arrays are truthy."""
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def type_of(value: Any) -> str:
    if value is None:
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if callable(value) and not isinstance(value, ScriptObject):
        return "function"
    return "object"


def _index_of(key: Any) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, float) and key.is_integer():
        return int(key)
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def get_member(target: Any, name: Any) -> Any:
    """Resolve ``target.name`` / ``target[name]`` with script semantics."""
    if target is None:
        raise ScriptTypeError(
            f"Cannot read properties of null (reading '{_to_string(name)}')"
        )
    if isinstance(target, ScriptObject):
        return target.get_member(_to_string(name))
    if isinstance(target, Mapping):
        return target.get(_to_string(name))
    if isinstance(target, (list, tuple, str)):
        if name == "length":
            return len(target)
        index = _index_of(name)
        if index is not None and 0 <= index < len(target):
            return target[index]
        return None
    if name == "toString":
        return lambda: _to_string(target)
    return None


def set_member(target: Any, name: Any, value: Any) -> None:
    if isinstance(target, dict):
        target[_to_string(name)] = value
        return
    if isinstance(target, list):
        index = _index_of(name)
        if index is None or index < 0:
            raise ScriptTypeError(f"Invalid array index '{_to_string(name)}'")
        while len(target) <= index:
            target.append(None)
        target[index] = value
        return
    raise ScriptTypeError(
        f"Cannot assign property '{_to_string(name)}' on {type_of(target)} value"
    )


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return _to_string(left) + _to_string(right)
    for operand in (left, right):
        if not isinstance(operand, (int, float)) or isinstance(operand, bool):
            if operand is None or isinstance(operand, bool):
                continue
            raise ScriptTypeError(
                f"Unsupported operand for '{op}': {type_of(operand)}"
            )
    a = int(left or 0) if isinstance(left, bool) or left is None else left
    b = int(right or 0) if isinstance(right, bool) or right is None else right
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if b == 0:
        if op == "%" or a == 0:
            return math.nan
        return math.inf if a > 0 else -math.inf
    if op == "/":
        result = a / b
        if isinstance(a, int) and isinstance(b, int) and result.is_integer():
            return int(result)
        return result
    return math.fmod(a, b) if isinstance(a, float) or isinstance(b, float) else int(math.fmod(a, b))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is right
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left is right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def loose_equal(left: Any, right: Any) -> bool:
    if strict_equal(left, right):
        return True
    for a, b in ((left, right), (right, left)):
        if _is_number(a) and isinstance(b, str):
            try:
                return a == float(b)
            except ValueError:
                return False
    return False


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "===":
        return strict_equal(left, right)
    if op == "!==":
        return not strict_equal(left, right)
    if op == "==":
        return loose_equal(left, right)
    if op == "!=":
        return not loose_equal(left, right)
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right
    except TypeError:
        return False


# ---------------------- SCOPE ----------------------

class Scope:
    """One layer of variable bindings; lookups fall through to ``parent``."""

    def __init__(self, bindings: Optional[Dict[str, Any]] = None, parent: Optional["Scope"] = None):
        self.bindings: Dict[str, Any] = dict(bindings or {})
        self.parent = parent

    def lookup(self, name: str) -> Any:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope.bindings:
                return scope.bindings[name]
            scope = scope.parent
        raise ScriptReferenceError(f"{name} is not defined")

    def declare(self, name: str, value: Any) -> None:
        self.bindings[name] = value

    def assign(self, name: str, value: Any) -> None:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope.bindings:
                scope.bindings[name] = value
                return
            scope = scope.parent
        self.bindings[name] = value


# ---------------------- EVALUATOR ----------------------

class ScriptEvaluator:
    """Evaluates shell script text against a seeded scope.

    ``seed`` returns the builtin bindings (``db``, ``rs``, helpers).  User
    variables live in a separate globals layer so ``reseed()`` can rebuild
    an equivalent builtin scope for a new execution context without losing
    them.
    """

    def __init__(self, seed: Callable[[], Dict[str, Any]]):
        self._seed = seed
        self.globals = Scope()
        self.reseed()

    def reseed(self) -> None:
        self.builtins = Scope(self._seed())
        self.globals.parent = self.builtins

    def fork(self) -> "ScriptEvaluator":
        """A new evaluator with an equivalent, freshly seeded scope."""
        return ScriptEvaluator(self._seed)

    def evaluate(self, source: str) -> Any:
        """Evaluate ``source``; the result is the last statement's value."""
        result = None
        for statement in parse(source):
            result = self._execute(statement)
        return result

    # -- statements --

    def _execute(self, statement: tuple) -> Any:
        if statement[0] == "var":
            for name, init in statement[1]:
                self.globals.declare(name, None if init is None else self._eval(init))
            return None
        return self._eval(statement[1])

    # -- expressions --

    def _eval(self, node: tuple) -> Any:
        kind = node[0]

        if kind == "literal":
            return node[1]

        if kind == "regex":
            return ScriptRegExp(node[1], node[2])

        if kind == "name":
            return self.globals.lookup(node[1])

        if kind == "object":
            return {key: self._eval(value) for key, value in node[1]}

        if kind == "array":
            return [self._eval(item) for item in node[1]]

        if kind == "member":
            return get_member(self._eval(node[1]), node[2])

        if kind == "index":
            return get_member(self._eval(node[1]), self._eval(node[2]))

        if kind == "call":
            return self._call(node[1], node[2])

        if kind == "new":
            constructor = self._eval(node[1])
            return self._invoke(constructor, node[1], [self._eval(a) for a in node[2]])

        if kind == "unary":
            return self._unary(node[1], self._eval(node[2]))

        if kind == "binary":
            op, left, right = node[1], self._eval(node[2]), self._eval(node[3])
            if op in ("+", "-", "*", "/", "%"):
                return _arithmetic(op, left, right)
            return _compare(op, left, right)

        if kind == "logical":
            left = self._eval(node[2])
            if node[1] == "&&":
                return self._eval(node[3]) if truthy(left) else left
            return left if truthy(left) else self._eval(node[3])

        if kind == "cond":
            return self._eval(node[2]) if truthy(self._eval(node[1])) else self._eval(node[3])

        if kind == "assign":
            return self._assign(node[1], self._eval(node[2]))

        raise ScriptError(f"Unknown node kind: {kind}")

    def _call(self, callee_node: tuple, arg_nodes: List[tuple]) -> Any:
        function = self._eval(callee_node)
        args = [self._eval(arg) for arg in arg_nodes]
        return self._invoke(function, callee_node, args)

    def _invoke(self, function: Any, callee_node: tuple, args: List[Any]) -> Any:
        if not callable(function) or isinstance(function, (ScriptObject, type)):
            raise ScriptTypeError(f"{_describe(callee_node)} is not a function")
        return function(*args)

    def _unary(self, op: str, value: Any) -> Any:
        if op == "!":
            return not truthy(value)
        if op == "typeof":
            return type_of(value)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            if isinstance(value, bool) or value is None:
                value = int(value or 0)
            else:
                raise ScriptTypeError(f"Unsupported operand for unary '{op}'")
        return -value if op == "-" else value

    def _assign(self, target: tuple, value: Any) -> Any:
        if target[0] == "name":
            self.globals.assign(target[1], value)
        elif target[0] == "member":
            set_member(self._eval(target[1]), target[2], value)
        else:
            set_member(self._eval(target[1]), self._eval(target[2]), value)
        return value


def _describe(node: tuple) -> str:
    """Readable source-ish name for error messages."""
    if node[0] == "name":
        return node[1]
    if node[0] == "member":
        return f"{_describe(node[1])}.{node[2]}"
    if node[0] == "call":
        return f"{_describe(node[1])}(...)"
    return "expression"
