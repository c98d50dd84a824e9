"""
A FullForm printer for kernel expressions.
"""
import math

from kexpr.kexpr_datatypes import (
    Expr, INTEGER, BIGINTEGER, REAL, BIGDECIMAL, STRING, SYMBOL, FUNCTION
)

_STRING_ESCAPES = {
    '\\': '\\\\',
    '"': '\\"',
    '\n': '\\n',
    '\t': '\\t',
    '\r': '\\r',
}


class Printer:
    """Formats Expr trees as FullForm text the kernel can read back."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj):
        """Public entry point to format an expression."""
        handler = self._get_handler(obj)
        return handler(obj)

    def _get_handler(self, obj):
        if isinstance(obj, Expr):
            return self._handlers[obj.kind]
        # Default to Python's repr for foreign objects
        return lambda o: repr(o)

    def _create_handlers(self):
        return {
            INTEGER: self._pformat_integer,
            BIGINTEGER: self._pformat_integer,
            REAL: self._pformat_real,
            BIGDECIMAL: self._pformat_big_decimal,
            STRING: self._pformat_string,
            SYMBOL: self._pformat_symbol,
            FUNCTION: self._pformat_normal,
        }

    def _pformat_integer(self, obj):
        return str(obj.value)

    def _pformat_non_finite(self, is_nan, negative):
        if is_nan:
            return "Indeterminate"
        return "DirectedInfinity[-1]" if negative else "DirectedInfinity[1]"

    def _pformat_real(self, obj):
        if not math.isfinite(obj.value):
            return self._pformat_non_finite(math.isnan(obj.value), obj.value < 0)
        text = repr(obj.value)
        # Exponent notation uses *^ in kernel syntax
        if 'e' in text:
            mantissa, exponent = text.split('e')
            if '.' not in mantissa:
                mantissa += '.'
            return f"{mantissa}*^{int(exponent)}"
        return text

    def _pformat_big_decimal(self, obj):
        value = obj.value
        if not value.is_finite():
            return self._pformat_non_finite(value.is_nan(), value.is_signed())
        # A backtick and digit count mark an arbitrary-precision number;
        # any exponent follows as *^
        digits = len(value.as_tuple().digits)
        text = str(value)
        if 'E' in text:
            mantissa, exponent = text.split('E')
            if '.' not in mantissa:
                mantissa += '.'
            return f"{mantissa}`{digits}*^{int(exponent)}"
        return f"{text}`{digits}"

    def _pformat_string(self, obj):
        escaped = "".join(_STRING_ESCAPES.get(ch, ch) for ch in obj.value)
        return f'"{escaped}"'

    def _pformat_symbol(self, obj):
        return obj.value

    def _pformat_normal(self, obj):
        head = self.pformat(obj.head)
        args = ", ".join(self.pformat(a) for a in obj.args)
        return f"{head}[{args}]"


def full_form(expr: Expr) -> str:
    return Printer().pformat(expr)
