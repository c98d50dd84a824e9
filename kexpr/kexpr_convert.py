"""
Builds kernel expressions from Python values.
"""
import collections.abc
from decimal import Decimal
from fractions import Fraction
from typing import Any, Iterable, Optional, Sequence, Tuple, Union

from kexpr.kexpr_datatypes import (
    Expr, Handle, Symbol, Deferred, ExprNode, EngineFailure,
    UnsupportedInputTypeError,
)
from kexpr.kexpr_link import KernelLink, express
from kexpr.kexpr_options import Options, DEFAULT_OPTIONS


def _symbol_expr(name: str, options: Options) -> Expr:
    name = options.reverse_aliases.get(name, name)
    return Expr.symbol(name.replace('/', '`'))


def convert(value: Any, options: Options = DEFAULT_OPTIONS) -> Expr:
    """Convert a Python value, including nested lists and dicts, to an Expr.

    Sequences become kernel lists and mappings become HashMapObject
    wrappers around a list of rules. Symbols are passed through the reverse
    of the alias table in `options`.
    """
    # Local import: kexpr_parse imports this module.
    from kexpr.kexpr_parse import ExprFunction

    match value:
        case None:
            return Expr.symbol("Null")
        case bool():
            return Expr.symbol("True" if value else "False")
        case Expr():
            return value
        case Handle():
            return value.expr
        case ExprFunction():
            return value.expr
        case EngineFailure():
            return value.expr
        case ExprNode():
            head = convert(value.head, options)
            return Expr.normal(head, *(convert(a, options) for a in value.args))
        case int():
            return Expr.integer(value)
        case float():
            return Expr.real(value)
        case Decimal():
            return Expr.decimal(value)
        case Fraction():
            if value.denominator == 1:
                return Expr.integer(value.numerator)
            return Expr.rational(value.numerator, value.denominator)
        case Symbol():
            return _symbol_expr(value, options)
        case str():
            return Expr.string(value)
        case Deferred():
            return convert(value(), options)
        case collections.abc.Mapping():
            rules = [add_head("Rule", convert(k, options), convert(v, options))
                     for k, v in value.items()]
            return add_head("HashMapObject", Expr.list_of(*rules))
        case collections.abc.Iterable():
            return Expr.list_of(*(convert(item, options) for item in value))
        case _:
            raise UnsupportedInputTypeError(value, "convert")


def add_head(head: Union[str, Expr], *exprs: Any) -> Expr:
    """Create an Expr with `head` applied to `exprs`.

    Arguments that are not already Exprs are converted with default options.
    """
    args = [e if isinstance(e, Expr) else convert(e) for e in exprs]
    return Expr.normal(head, *args)


def build_set_expr(lhs: str, rhs: Any, options: Options = DEFAULT_OPTIONS) -> Expr:
    """Create `Set[lhs, rhs]`, converting the right-hand side."""
    return add_head("Set", _symbol_expr(lhs, options), convert(rhs, options))


def _binding_pairs(bindings) -> Iterable[Tuple[str, Any]]:
    if isinstance(bindings, collections.abc.Mapping):
        return list(bindings.items())
    pairs = list(bindings)
    for pair in pairs:
        if not (isinstance(pair, Sequence) and len(pair) == 2):
            raise ValueError(f"module bindings must be (name, value) pairs, got {pair!r}")
    return pairs


def build_module(bindings, *body: Any, link: Optional[KernelLink] = None,
                 all_output: bool = False, parallel: bool = False,
                 options: Options = DEFAULT_OPTIONS) -> Expr:
    """
    Create a kernel Module with lexically scoped locals.

    `bindings` is a mapping or a sequence of (name, value) pairs; each pair
    becomes a Set[] of a local variable to the converted value. The body
    expressions may be text, Exprs, or Handles; text needs `link` so the
    kernel can read it.

    all_output - package the body in a List so every expression's value is
                 returned. By default a CompoundExpression returns only the
                 last value.
    parallel   - wrap the body in ParallelSubmit[], repeating the local
                 variables so they are shipped to the subkernel.
    """
    set_exprs = [build_set_expr(name, value, options) for name, value in _binding_pairs(bindings)]
    body_exprs = [express(e, link).expr for e in body]
    compounder = "List" if all_output else "CompoundExpression"
    block = add_head(compounder, *body_exprs)
    if parallel:
        local_vars = [s.part(1) for s in set_exprs]
        block = add_head("ParallelSubmit", Expr.list_of(*local_vars), block)
    return add_head("Module", Expr.list_of(*set_exprs), block)
