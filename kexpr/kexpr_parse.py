"""
Decodes kernel expressions into Python values.

Every function here takes the options bundle explicitly. Lazy sequences and
callables capture the bundle (and the link inside it) at the moment they
are built, so they decode the same way however late they are used.
"""
from fractions import Fraction
from functools import partial
from typing import Any, Callable, Iterable, Optional

from kexpr.kexpr_datatypes import (
    Expr, Handle, Symbol, Long, LazySeq, Deferred, ExprNode, EngineFailure,
    ARRAY_KINDS, NUMERIC_KINDS,
    UnsupportedInputTypeError, MalformedMapError, DecodeExhaustionError,
)
from kexpr.kexpr_convert import add_head, convert
from kexpr.kexpr_debug import debug_message
from kexpr.kexpr_link import send_read
from kexpr.kexpr_options import Options, DEFAULT_OPTIONS
from kexpr.kexpr_printer import full_form

INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1

_RESERVED_SYMBOLS = {"True": True, "False": False, "Null": None}


def parse(value: Any, options: Options = DEFAULT_OPTIONS) -> Any:
    """Decode a Handle or Expr into a Python value. None decodes to None."""
    match value:
        case Handle():
            expr = value.expr
        case Expr():
            expr = value
        case None:
            return None
        case _:
            raise UnsupportedInputTypeError(value, "parse")
    try:
        return _parse(expr, options)
    except DecodeExhaustionError:
        raise
    except RecursionError as e:
        raise DecodeExhaustionError("expression nests too deeply to decode") from e


def _parse(expr: Expr, options: Options) -> Any:
    # Order matters: function mode wins over everything, and full-form
    # mode must see lists before the array fast paths do.
    if options.flag("as-function"):
        return parse_fn(expr, options)
    if atom_q(expr) or options.flag("full-form"):
        return parse_complex_atom(expr, options)
    if simple_vector_type(expr):
        return parse_simple_vector(expr, options)
    if simple_matrix_type(expr):
        return parse_simple_matrix(expr, options)
    return parse_complex_list(expr, options)


def atom_q(expr: Expr) -> bool:
    return not expr.list_q()


def simple_q(expr: Expr) -> bool:
    return atom_q(expr) or simple_array_type(expr) is not None


def simple_array_type(expr: Expr) -> Optional[str]:
    return simple_vector_type(expr) or simple_matrix_type(expr)


def simple_vector_type(expr: Expr) -> Optional[str]:
    for kind in ARRAY_KINDS:
        if expr.vector_q(kind):
            return kind
    return None


def simple_matrix_type(expr: Expr) -> Optional[str]:
    for kind in ARRAY_KINDS:
        if expr.matrix_q(kind):
            return kind
    return None


# --- Sequence realization ---

def bound_map(f: Callable[[Any, Options], Any], coll: Iterable[Any], options: Options):
    """Map `f` over `coll` using the realization policy in `options`.

    vectors - an eager list
    seqs    - a LazySeq; each element is decoded when first reached
    seq-fn  - a LazySeq of Deferred thunks, each decoding its element under
              the captured options refined to `seqs`
    """
    if options.flag("vectors"):
        return [f(x, options) for x in coll]
    if options.flag("seqs"):
        return LazySeq(f(x, options) for x in coll)
    enclosed = options.derive("seqs")
    return LazySeq(Deferred(partial(f, x, enclosed)) for x in coll)


# --- Arrays ---

def parse_simple_vector(expr: Expr, options: Options, kind: Optional[str] = None):
    with debug_message(options.flag("verbose") and kind is None, "simple vector parse"):
        kind = kind or simple_vector_type(expr)
        if options.flag("N") and kind in NUMERIC_KINDS:
            reals = expr.as_real_array()
            return reals if options.flag("vectors") else LazySeq(reals)
        return bound_map(lambda e, o: parse_simple_atom(e, kind, o), expr.args, options)


def parse_simple_matrix(expr: Expr, options: Options, kind: Optional[str] = None):
    with debug_message(options.flag("verbose"), "simple matrix parse"):
        kind = kind or simple_matrix_type(expr)
        return bound_map(lambda row, o: parse_simple_vector(row, o, kind), expr.args, options)


def parse_simple_atom(expr: Expr, kind: str, options: Options) -> Any:
    match kind:
        case "BigInteger":
            return int(expr.as_int())
        case "BigDecimal":
            return expr.as_decimal()
        case "Integer":
            return parse_integer(expr)
        case "Real":
            return expr.as_float()
        case "String":
            return expr.as_str()
        case "Rational":
            return parse_rational(expr)
        case "Symbol":
            return parse_symbol(expr, options)
    raise ValueError(f"Not a simple array kind: {kind!r}")


# --- Atoms and compound expressions ---

def parse_complex_atom(expr: Expr, options: Options) -> Any:
    if expr.big_integer_q():
        return int(expr.as_int())
    if expr.big_decimal_q():
        return expr.as_decimal()
    if expr.integer_q():
        return parse_integer(expr)
    if expr.real_q():
        return expr.as_float()
    if expr.string_q():
        return expr.as_str()
    if expr.rational_q():
        return parse_rational(expr)
    if expr.symbol_q():
        return parse_symbol(expr, options)

    structured = not options.flag("full-form")
    match expr.head_name:
        case "Function" if structured and options.flag("functions"):
            return parse_fn(expr, options)
        case "HashMapObject" if structured and options.flag("hash-maps"):
            return parse_hash_map(expr, options)
        case "Failure" if structured:
            return parse_failure(expr, options)
        case _:
            return parse_generic_expression(expr, options)


def parse_complex_list(expr: Expr, options: Options):
    return bound_map(_parse, expr.args, options)


def parse_integer(expr: Expr) -> int:
    """Machine integers come back as int inside the signed 32-bit range, Long outside it."""
    i = expr.as_int()
    if INT_MIN <= i <= INT_MAX:
        return int(i)
    return Long(i)


def parse_rational(expr: Expr) -> Fraction:
    numer = parse_integer(expr.part(1))
    denom = parse_integer(expr.part(2))
    return Fraction(int(numer), int(denom))


def parse_symbol(expr: Expr, options: Options) -> Any:
    s = expr.as_str()
    if s in _RESERVED_SYMBOLS:
        return _RESERVED_SYMBOLS[s]
    name = s.replace('`', '/')
    alias = options.aliases.get(name)
    if alias is not None:
        return Symbol(alias)
    return Symbol(name)


def _hashable_key(key: Any) -> Any:
    if isinstance(key, (list, LazySeq)):
        return tuple(_hashable_key(k) for k in key)
    return key


def parse_hash_map(expr: Expr, options: Options) -> dict:
    with debug_message(options.flag("verbose"), "hash-map parse"):
        if not expr.args:
            raise MalformedMapError("HashMapObject has no rule list")
        inside = expr.args[0]
        if inside.list_q():
            rules = inside
        elif inside.head_name == "Dispatch" and inside.args and inside.args[0].list_q():
            rules = inside.args[0]
        else:
            raise MalformedMapError(
                f"HashMapObject must hold a List or Dispatch of rules, not {full_form(inside)}"
            )
        out = {}
        for rule in rules.args:
            if rule.head_name not in ("Rule", "RuleDelayed") or len(rule.args) != 2:
                raise MalformedMapError(f"Not a key/value rule: {full_form(rule)}")
            key = _hashable_key(_parse(rule.args[0], options))
            value = _parse(rule.args[1], options)
            try:
                out[key] = value
            except TypeError as e:
                raise MalformedMapError(f"Unhashable map key: {key!r}") from e
        return out


def parse_failure(expr: Expr, options: Options) -> EngineFailure:
    tag = _parse(expr.args[0], options) if expr.args else None
    details = _parse(expr.args[1], options) if len(expr.args) > 1 else None
    return EngineFailure(tag, details, expr)


def parse_generic_expression(expr: Expr, options: Options) -> ExprNode:
    head = _parse(expr.head, options)
    return ExprNode(head, [_parse(a, options) for a in expr.args])


# --- Callables ---

class ExprFunction:
    """A kernel function template usable as a Python callable.

    The options and link are captured when the callable is built. Calling
    it converts the arguments, applies the template to them on the captured
    link, and decodes the answer.
    """
    def __init__(self, expr: Expr, options: Options = DEFAULT_OPTIONS):
        self.expr = expr
        self.options = options.derive("as-expression")

    @property
    def link(self):
        return self.options.link

    def __call__(self, *args: Any) -> Any:
        applied = add_head(self.expr, *(convert(a, self.options) for a in args))
        return cep(applied, self.options)

    def __repr__(self) -> str:
        return f"ExprFunction({full_form(self.expr)})"

    def __eq__(self, other):
        if not isinstance(other, ExprFunction):
            return NotImplemented
        return self.expr == other.expr and self.link is other.link

    def __hash__(self):
        return hash(self.expr)


def parse_fn(expr: Expr, options: Options) -> ExprFunction:
    with debug_message(options.flag("verbose"), "function parse"):
        return ExprFunction(expr, options)


def cep(value: Any, options: Options = DEFAULT_OPTIONS) -> Any:
    """Convert, evaluate, parse: run `value` on `options.link` and decode the answer.

    Strings are sent as kernel text; anything else, including a Symbol, is
    converted first.
    """
    if value is None:
        return None
    if isinstance(value, Symbol) or not isinstance(value, (str, Expr, Handle)):
        value = convert(value, options)
    return parse(send_read(value, options.link, options), options)
