"""
Defines the core data types for the kexpr kernel bridge.

This module provides the in-memory foreign expression tree (`Expr`), the
canonical handle the link layer hands around (`Handle`), and the native
value types that decoding produces when no plain Python type fits.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator, Optional, Tuple
import collections.abc
import threading

# =================================================================
# Errors
# =================================================================

class KernelError(Exception):
    """Base class for every error raised by kexpr."""
    pass


class UnsupportedInputTypeError(KernelError, TypeError):
    def __init__(self, value: Any, where: str = "express"):
        super().__init__(
            f"{where} must be passed a string, Expr, Handle, or None. "
            f"Passed an object of class {type(value).__name__}"
        )
        self.value = value


class InvalidExpressionError(KernelError, ValueError):
    def __init__(self, text: str, count: int):
        super().__init__(f"Invalid expression: {text!r} ({count} top-level expressions)")
        self.text = text
        self.count = count


class LinkFailureError(KernelError):
    """The link reported an I/O failure (disconnect, timeout, closed pipe)."""
    pass


class ReentrantRequestError(LinkFailureError):
    """A thread tried to send on a link it is already holding."""
    pass


class EngineEvaluationError(KernelError):
    def __init__(self, expr: 'Expr'):
        super().__init__(f"Kernel reported a failure: {expr!r}")
        self.expr = expr


class MalformedMapError(KernelError, ValueError):
    pass


class DecodeExhaustionError(KernelError, RecursionError):
    pass


# =================================================================
# Foreign expressions
# =================================================================

# Atom kinds, in the order the kernel's own type codes list them.
INTEGER = "Integer"
BIGINTEGER = "BigInteger"
REAL = "Real"
BIGDECIMAL = "BigDecimal"
STRING = "String"
RATIONAL = "Rational"
SYMBOL = "Symbol"
FUNCTION = "Function"

ARRAY_KINDS = (INTEGER, BIGINTEGER, REAL, BIGDECIMAL, STRING, RATIONAL, SYMBOL)
NUMERIC_KINDS = (INTEGER, BIGINTEGER, REAL, BIGDECIMAL)

_LONG_MIN = -(2 ** 63)
_LONG_MAX = 2 ** 63 - 1

# BigInteger and BigDecimal atoms report the same heads as their machine-sized kinds.
_ATOM_HEADS = {BIGINTEGER: INTEGER, BIGDECIMAL: REAL}


class Expr:
    """An immutable kernel expression.

    An `Expr` is either an atom (its `kind` is one of the atom kinds and
    `value` holds the Python payload) or a normal expression of kind
    FUNCTION: a head expression applied to a tuple of argument expressions.
    A rational is the normal expression `Rational[p, q]`.
    """
    __slots__ = ("kind", "value", "_head", "_args", "_hash")

    def __init__(self, kind: str, value: Any = None,
                 head: Optional['Expr'] = None, args: Iterable['Expr'] = ()):
        self.kind = kind
        self.value = value
        self._head = head
        self._args = tuple(args)
        self._hash: Optional[int] = None

    # --- Constructors ---

    @classmethod
    def integer(cls, n: int) -> 'Expr':
        n = int(n)
        return cls(INTEGER if _LONG_MIN <= n <= _LONG_MAX else BIGINTEGER, n)

    @classmethod
    def real(cls, x: float) -> 'Expr':
        return cls(REAL, float(x))

    @classmethod
    def decimal(cls, d) -> 'Expr':
        return cls(BIGDECIMAL, Decimal(d))

    @classmethod
    def string(cls, s: str) -> 'Expr':
        return cls(STRING, str(s))

    @classmethod
    def symbol(cls, name: str) -> 'Expr':
        return cls(SYMBOL, str(name))

    @classmethod
    def normal(cls, head: 'Expr | str', *args: 'Expr') -> 'Expr':
        if isinstance(head, str):
            head = cls.symbol(head)
        return cls(FUNCTION, head=head, args=args)

    @classmethod
    def rational(cls, numerator: int, denominator: int) -> 'Expr':
        return cls.normal("Rational", cls.integer(numerator), cls.integer(denominator))

    @classmethod
    def list_of(cls, *items: 'Expr') -> 'Expr':
        return cls.normal("List", *items)

    # --- Structure ---

    @property
    def head(self) -> 'Expr':
        """The head of this expression; atoms report their kind as a symbol."""
        if self.kind == FUNCTION:
            return self._head
        return Expr.symbol(_ATOM_HEADS.get(self.kind, self.kind))

    @property
    def args(self) -> Tuple['Expr', ...]:
        return self._args

    @property
    def head_name(self) -> Optional[str]:
        """The name of the head symbol, or None when the head is compound."""
        head = self.head
        return head.value if head.kind == SYMBOL else None

    def part(self, i: int) -> 'Expr':
        if i == 0:
            return self.head
        return self._args[i - 1]

    # --- Predicates ---

    def integer_q(self) -> bool:
        return self.kind in (INTEGER, BIGINTEGER)

    def big_integer_q(self) -> bool:
        return self.kind == BIGINTEGER

    def real_q(self) -> bool:
        return self.kind == REAL

    def big_decimal_q(self) -> bool:
        return self.kind == BIGDECIMAL

    def string_q(self) -> bool:
        return self.kind == STRING

    def symbol_q(self) -> bool:
        return self.kind == SYMBOL

    def rational_q(self) -> bool:
        return (
            self.kind == FUNCTION
            and self.head_name == "Rational"
            and len(self._args) == 2
            and all(a.integer_q() for a in self._args)
        )

    def list_q(self) -> bool:
        return self.kind == FUNCTION and self.head_name == "List"

    def atom_q(self) -> bool:
        return self.kind != FUNCTION

    def kind_q(self, kind: str) -> bool:
        """True when this expression is an element of the given array kind."""
        match kind:
            case "Integer":
                return self.kind == INTEGER
            case "BigInteger":
                return self.kind == BIGINTEGER
            case "Rational":
                return self.rational_q()
            case _:
                return self.kind == kind

    def vector_q(self, kind: str) -> bool:
        """A non-empty List whose every element is an atom of `kind`."""
        return self.list_q() and bool(self._args) and all(a.kind_q(kind) for a in self._args)

    def matrix_q(self, kind: str) -> bool:
        """A non-empty List of equal-length vectors of `kind`."""
        if not self.list_q() or not self._args:
            return False
        width = len(self._args[0].args)
        return all(row.vector_q(kind) and len(row.args) == width for row in self._args)

    # --- Atom access ---

    def as_int(self) -> int:
        if not self.integer_q():
            raise TypeError(f"Expr of kind {self.kind} is not an integer")
        return self.value

    def as_float(self) -> float:
        if self.rational_q():
            return self._args[0].value / self._args[1].value
        if self.kind in NUMERIC_KINDS:
            return float(self.value)
        raise TypeError(f"Expr of kind {self.kind} is not numeric")

    def as_decimal(self) -> Decimal:
        return Decimal(self.value)

    def as_str(self) -> str:
        if self.kind not in (STRING, SYMBOL):
            raise TypeError(f"Expr of kind {self.kind} is not a string")
        return self.value

    def as_real_array(self) -> list:
        """Bulk-coerce a numeric vector to a flat list of floats."""
        return [a.as_float() for a in self._args]

    # --- Equality ---

    def __eq__(self, other):
        if not isinstance(other, Expr):
            return NotImplemented
        return (
            self.kind == other.kind
            and self.value == other.value
            and self._head == other._head
            and self._args == other._args
        )

    def __hash__(self):
        if self._hash is None:
            self._hash = hash((self.kind, self.value, self._head, self._args))
        return self._hash

    def __repr__(self) -> str:
        from kexpr.kexpr_printer import Printer
        return f"Expr<{Printer().pformat(self)}>"


@dataclass(frozen=True)
class Handle:
    """A canonical reference to an Expr.

    `request_id` names the link request that produced the expression, or is
    None when the handle was built locally.
    """
    expr: Expr
    request_id: Optional[int] = None


# =================================================================
# Native value types
# =================================================================

class Symbol(str):
    """A kernel symbol surfaced as a host identifier."""
    def __repr__(self) -> str:
        return f"Symbol({str(self)!r})"


class Long(int):
    """A machine integer outside the signed 32-bit range."""
    def __repr__(self) -> str:
        return f"Long({int(self)})"


class LazySeq(collections.abc.Sequence):
    """A sequence whose elements are produced by an iterator on first access.

    Realized elements are cached; indexing, `len`, and equality realize only
    as much of the underlying iterator as they need. If producing an element
    raises, the error is kept and raised again by every later access that
    reaches past the elements already cached.
    """
    def __init__(self, source: Iterable[Any]):
        self._source: Optional[Iterator[Any]] = iter(source)
        self._cache: list = []
        self._error: Optional[BaseException] = None
        self._lock = threading.Lock()

    @property
    def realized(self) -> int:
        """Number of elements produced so far."""
        return len(self._cache)

    def _realize_to(self, n: Optional[int]) -> None:
        with self._lock:
            while n is None or len(self._cache) < n:
                if self._error is not None:
                    raise self._error
                if self._source is None:
                    return
                try:
                    self._cache.append(next(self._source))
                except StopIteration:
                    self._source = None
                except Exception as e:
                    # Keep the error; later reads raise it again
                    self._source = None
                    self._error = e
                    raise

    def __getitem__(self, index):
        if isinstance(index, slice) or index < 0:
            self._realize_to(None)
            return self._cache[index]
        self._realize_to(index + 1)
        return self._cache[index]

    def __iter__(self):
        i = 0
        while True:
            self._realize_to(i + 1)
            if i >= len(self._cache):
                return
            yield self._cache[i]
            i += 1

    def __len__(self) -> int:
        self._realize_to(None)
        return len(self._cache)

    def __eq__(self, other):
        if not isinstance(other, collections.abc.Sequence) or isinstance(other, (str, bytes)):
            return NotImplemented
        return list(self) == list(other)

    __hash__ = None

    def __repr__(self) -> str:
        suffix = "" if self._source is None and self._error is None else " ..."
        inner = ", ".join(repr(x) for x in self._cache)
        return f"LazySeq([{inner}{suffix}])"


class Deferred:
    """A zero-argument thunk that computes its value once, on first call."""
    _UNSET = object()

    def __init__(self, thunk: Callable[[], Any]):
        self._thunk = thunk
        self._value = Deferred._UNSET
        self._lock = threading.Lock()

    @property
    def realized(self) -> bool:
        return self._value is not Deferred._UNSET

    def __call__(self) -> Any:
        with self._lock:
            if self._value is Deferred._UNSET:
                self._value = self._thunk()
                self._thunk = None
            return self._value

    def __repr__(self) -> str:
        if self.realized:
            return f"Deferred({self._value!r})"
        return "Deferred(<pending>)"


class ExprNode:
    """A decoded expression with no more specific native form: head plus arguments."""
    def __init__(self, head: Any, args: Iterable[Any] = ()):
        self.head = head
        self.args = tuple(args)

    def __iter__(self):
        yield self.head
        yield from self.args

    def __repr__(self) -> str:
        inner = ", ".join(repr(a) for a in self.args)
        return f"ExprNode({self.head!r}, [{inner}])"

    def __eq__(self, other):
        if not isinstance(other, ExprNode):
            return NotImplemented
        return self.head == other.head and self.args == other.args

    def __hash__(self):
        return hash((self.head, self.args))


class EngineFailure:
    """A failure reported by the kernel, kept as a value for inspection."""
    def __init__(self, tag: Any, details: Any, expr: Expr):
        self.tag = tag
        self.details = details
        self.expr = expr

    def __repr__(self) -> str:
        return f"EngineFailure(tag={self.tag!r}, details={self.details!r})"

    def __eq__(self, other):
        if not isinstance(other, EngineFailure):
            return NotImplemented
        return self.expr == other.expr


def is_failure(expr: Expr) -> bool:
    """True for `$Failed`, `$Aborted`, and `Failure[...]` expressions."""
    if expr.symbol_q():
        return expr.value in ("$Failed", "$Aborted")
    return expr.kind == FUNCTION and expr.head_name == "Failure"
