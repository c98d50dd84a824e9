import pytest
from decimal import Decimal
from fractions import Fraction

from kexpr.kexpr_datatypes import (
    Expr, Handle, Symbol, Long, LazySeq, Deferred, ExprNode, EngineFailure,
    MalformedMapError, DecodeExhaustionError, LinkFailureError, UnsupportedInputTypeError,
)
from kexpr.kexpr_options import Options, DEFAULT_OPTIONS
from kexpr.kexpr_parse import (
    parse, ExprFunction, INT_MIN, INT_MAX,
    simple_vector_type, simple_matrix_type, simple_q,
)
from kernel_stub import TinyKernel, TEXTS


def ints(*values):
    return Expr.list_of(*(Expr.integer(v) for v in values))


def rule(k, v):
    return Expr.normal("Rule", k, v)


# --- Entry point ---

def test_parse_accepts_handles_exprs_and_none():
    assert parse(Handle(Expr.integer(3))) == 3
    assert parse(Expr.integer(3)) == 3
    assert parse(None) is None


def test_parse_rejects_other_inputs():
    with pytest.raises(UnsupportedInputTypeError):
        parse("1+1")


# --- Atoms ---

@pytest.mark.parametrize("value,expected_type", [
    (0, int),
    (INT_MAX, int),
    (INT_MIN, int),
    (INT_MAX + 1, Long),
    (INT_MIN - 1, Long),
    (2 ** 63 - 1, Long),
])
def test_integer_narrowing_boundary(value, expected_type):
    out = parse(Expr.integer(value))
    assert out == value
    assert type(out) is expected_type


def test_big_integers_decode_to_plain_int():
    out = parse(Expr.integer(2 ** 100))
    assert out == 2 ** 100
    assert type(out) is int


def test_reals_and_big_decimals():
    assert parse(Expr.real(2.5)) == 2.5
    out = parse(Expr.decimal("3.14159265358979323846264338"))
    assert isinstance(out, Decimal)
    assert out == Decimal("3.14159265358979323846264338")


def test_rational_is_exact():
    out = parse(Expr.rational(2, 3))
    assert isinstance(out, Fraction)
    assert (out.numerator, out.denominator) == (2, 3)
    big = parse(Expr.rational(2 ** 40 + 1, 3))
    assert (big.numerator, big.denominator) == (2 ** 40 + 1, 3)


def test_strings():
    assert parse(Expr.string("hello")) == "hello"
    assert not isinstance(parse(Expr.string("hello")), Symbol)


def test_symbols_and_context_separator():
    out = parse(Expr.symbol("x"))
    assert isinstance(out, Symbol) and out == "x"
    assert parse(Expr.symbol("System`Plus")) == Symbol("System/Plus")


@pytest.mark.parametrize("name,expected", [("True", True), ("False", False), ("Null", None)])
def test_reserved_symbols(name, expected):
    assert parse(Expr.symbol(name)) is expected


def test_symbol_aliases():
    opts = Options(aliases={"foo": "bar"})
    out = parse(Expr.symbol("foo"), opts)
    assert isinstance(out, Symbol) and out == "bar"
    assert parse(Expr.symbol("baz"), opts) == "baz"


def test_alias_keys_use_host_spelling():
    opts = Options(aliases={"System/Plus": "add"})
    assert parse(Expr.symbol("System`Plus"), opts) == Symbol("add")


def test_reserved_symbols_ignore_alias_table():
    opts = Options(aliases={"True": "yes", "False": "no", "Null": "nothing"})
    assert parse(Expr.symbol("True"), opts) is True
    assert parse(Expr.symbol("False"), opts) is False
    assert parse(Expr.symbol("Null"), opts) is None


# --- Arrays ---

def test_array_type_probes():
    assert simple_vector_type(ints(1, 2)) == "Integer"
    assert simple_matrix_type(Expr.list_of(ints(1, 2), ints(3, 4))) == "Integer"
    assert simple_vector_type(Expr.list_of(Expr.integer(1), Expr.string("a"))) is None
    assert simple_q(Expr.integer(1))
    assert not simple_q(Expr.list_of(Expr.integer(1), Expr.string("a")))


def test_vectors_mode_gives_list():
    out = parse(ints(1, 2, 3, 4, 5))
    assert isinstance(out, list)
    assert out == [1, 2, 3, 4, 5]


def test_symbol_vector_decodes_booleans():
    v = Expr.list_of(Expr.symbol("True"), Expr.symbol("Null"), Expr.symbol("a"))
    assert parse(v) == [True, None, Symbol("a")]


def test_rational_and_string_vectors():
    assert parse(Expr.list_of(Expr.rational(1, 2), Expr.rational(1, 3))) == [Fraction(1, 2), Fraction(1, 3)]
    assert parse(Expr.list_of(Expr.string("a"), Expr.string("b"))) == ["a", "b"]


def test_matrix():
    m = Expr.list_of(ints(1, 2), ints(3, 4))
    assert parse(m) == [[1, 2], [3, 4]]


def test_vector_elements_keep_narrowing():
    out = parse(ints(1, INT_MAX + 1))
    assert type(out[0]) is int
    assert type(out[1]) is Long


def test_seqs_mode_defers_element_work():
    out = parse(ints(1, 2, 3, 4, 5), DEFAULT_OPTIONS.derive("seqs"))
    assert isinstance(out, LazySeq)
    assert out.realized == 0
    assert out[1] == 2
    assert out.realized == 2
    assert out == [1, 2, 3, 4, 5]


def test_seqs_mode_keeps_raising_after_a_failed_element():
    items = Expr.list_of(Expr.integer(1), Expr.normal("HashMapObject", Expr.integer(5)), Expr.integer(3))
    out = parse(items, DEFAULT_OPTIONS.derive("seqs"))
    assert out[0] == 1
    with pytest.raises(MalformedMapError):
        out[1]
    with pytest.raises(MalformedMapError):
        list(out)
    with pytest.raises(MalformedMapError):
        len(out)
    assert out.realized == 1


def test_seqs_mode_nests():
    ragged = Expr.list_of(ints(1, 2), ints(3))
    out = parse(ragged, DEFAULT_OPTIONS.derive("seqs"))
    assert isinstance(out, LazySeq)
    assert isinstance(out[0], LazySeq)
    assert out == [[1, 2], [3]]


def test_seq_fn_mode_yields_deferred_elements():
    ragged = Expr.list_of(ints(1, 2), ints(3))
    out = parse(ragged, DEFAULT_OPTIONS.derive("seq-fn"))
    assert isinstance(out, LazySeq)
    first = out[0]
    assert isinstance(first, Deferred)
    assert not first.realized
    inner = first()
    assert isinstance(inner, LazySeq)
    assert inner == [1, 2]
    assert [d() for d in out] == [[1, 2], [3]]


def test_numeric_coercion_vector():
    out = parse(ints(1, 2, 3), DEFAULT_OPTIONS.derive("N"))
    assert out == [1.0, 2.0, 3.0]
    assert all(type(x) is float for x in out)


def test_numeric_coercion_matrix_and_lazy():
    m = Expr.list_of(ints(1, 2), ints(3, 4))
    assert parse(m, DEFAULT_OPTIONS.derive("N")) == [[1.0, 2.0], [3.0, 4.0]]
    lazy = parse(ints(1, 2), DEFAULT_OPTIONS.derive("N", "seqs"))
    assert isinstance(lazy, LazySeq)
    assert lazy == [1.0, 2.0]


def test_numeric_coercion_skips_non_numeric_arrays():
    strings = Expr.list_of(Expr.string("a"))
    assert parse(strings, DEFAULT_OPTIONS.derive("N")) == ["a"]
    rationals = Expr.list_of(Expr.rational(1, 2))
    assert parse(rationals, DEFAULT_OPTIONS.derive("N")) == [Fraction(1, 2)]


def test_mixed_list_is_decoded_generically():
    mixed = Expr.list_of(Expr.integer(1), Expr.string("a"), ints(2, 3), Expr.list_of())
    assert parse(mixed) == [1, "a", [2, 3], []]


# --- Generic, full-form, and failures ---

def test_generic_expression():
    e = Expr.normal("f", Expr.symbol("x"), Expr.integer(1))
    assert parse(e) == ExprNode(Symbol("f"), [Symbol("x"), 1])


def test_generic_expression_with_compound_head():
    e = Expr.normal(Expr.normal("Derivative", Expr.integer(1)), Expr.symbol("f"))
    out = parse(e)
    assert out.head == ExprNode(Symbol("Derivative"), [1])
    assert out.args == (Symbol("f"),)


def test_full_form_decodes_lists_structurally():
    out = parse(ints(1, 2), DEFAULT_OPTIONS.derive("full-form"))
    assert out == ExprNode(Symbol("List"), [1, 2])
    assert parse(Expr.integer(7), DEFAULT_OPTIONS.derive("full-form")) == 7


def test_full_form_keeps_functions_and_maps_generic():
    fn = TEXTS["#+1&"]
    out = parse(fn, DEFAULT_OPTIONS.derive("full-form"))
    assert isinstance(out, ExprNode)
    assert out.head == Symbol("Function")
    hm = Expr.normal("HashMapObject", Expr.list_of(rule(Expr.symbol("a"), Expr.integer(1))))
    assert isinstance(parse(hm, DEFAULT_OPTIONS.derive("full-form")), ExprNode)


def test_failure_decodes_as_value():
    details = Expr.normal("Association")
    e = Expr.normal("Failure", Expr.string("DivideByZero"), details)
    out = parse(e)
    assert isinstance(out, EngineFailure)
    assert out.tag == "DivideByZero"
    assert out.details == ExprNode(Symbol("Association"), [])
    assert out.expr == e


# --- Hash maps ---

def test_hash_map_from_rule_list():
    rules = Expr.list_of(rule(Expr.symbol("a"), Expr.integer(1)), rule(Expr.symbol("b"), Expr.integer(2)))
    out = parse(Expr.normal("HashMapObject", rules))
    assert out == {"a": 1, "b": 2}
    assert all(isinstance(k, Symbol) for k in out)


def test_hash_map_from_dispatch():
    rules = Expr.list_of(rule(Expr.string("k"), ints(1, 2)))
    out = parse(Expr.normal("HashMapObject", Expr.normal("Dispatch", rules)))
    assert out == {"k": [1, 2]}


def test_hash_map_list_keys_become_tuples():
    rules = Expr.list_of(rule(ints(1, 2), Expr.string("pair")))
    assert parse(Expr.normal("HashMapObject", rules)) == {(1, 2): "pair"}


@pytest.mark.parametrize("inside", [
    [],
    [Expr.integer(5)],
    [Expr.normal("Dispatch", Expr.integer(5))],
    [Expr.list_of(Expr.normal("Plus", Expr.integer(1), Expr.integer(2)))],
    [Expr.list_of(Expr.normal("Rule", Expr.integer(1)))],
])
def test_malformed_hash_maps(inside):
    with pytest.raises(MalformedMapError):
        parse(Expr.normal("HashMapObject", *inside))


def test_unhashable_key_is_malformed():
    key = Expr.normal("HashMapObject", Expr.list_of())
    rules = Expr.list_of(rule(key, Expr.integer(1)))
    with pytest.raises(MalformedMapError):
        parse(Expr.normal("HashMapObject", rules))


def test_no_hash_maps_flag():
    hm = Expr.normal("HashMapObject", Expr.list_of(rule(Expr.symbol("a"), Expr.integer(1))))
    out = parse(hm, DEFAULT_OPTIONS.derive("no-hash-maps"))
    assert isinstance(out, ExprNode)
    assert out.head == Symbol("HashMapObject")


# --- Functions ---

def test_function_template_decodes_to_callable():
    kernel = TinyKernel()
    fn = parse(TEXTS["#+1&"], DEFAULT_OPTIONS.with_link(kernel))
    assert isinstance(fn, ExprFunction)
    assert kernel.requests == []
    assert fn(5) == 6
    assert len(kernel.requests) == 1
    sent = kernel.requests[0]
    assert sent.head == TEXTS["#+1&"]
    assert sent.args == (Expr.integer(5),)


def test_no_functions_flag_keeps_template_generic():
    out = parse(TEXTS["#+1&"], DEFAULT_OPTIONS.derive("no-functions"))
    assert isinstance(out, ExprNode)


def test_function_captures_link_and_options_at_creation():
    kernel = TinyKernel()
    other = TinyKernel()
    doubler = Expr.normal("Function", Expr.list_of(
        Expr.normal("Slot", Expr.integer(1)),
        Expr.normal("Times", Expr.normal("Slot", Expr.integer(1)), Expr.integer(2)),
    ))
    fn = parse(doubler, DEFAULT_OPTIONS.derive("N", "seqs").with_link(kernel))
    # The later, unrelated bundle has no bearing on the captured one.
    parse(Expr.integer(1), DEFAULT_OPTIONS.with_link(other))
    out = fn(3)
    assert isinstance(out, LazySeq)
    assert out == [3.0, 6.0]
    assert len(kernel.requests) == 1
    assert other.requests == []


def test_as_function_wraps_whole_expression():
    kernel = TinyKernel()
    fn = parse(Expr.symbol("Plus"), DEFAULT_OPTIONS.derive("as-function").with_link(kernel))
    assert isinstance(fn, ExprFunction)
    # Results come back as values, not as further callables
    assert fn(2, 3) == 5


def test_function_without_link_fails_on_call():
    fn = parse(TEXTS["#+1&"])
    with pytest.raises(LinkFailureError):
        fn(1)


def test_functions_inside_lists():
    kernel = TinyKernel()
    out = parse(Expr.list_of(TEXTS["#+1&"], Expr.integer(0)), DEFAULT_OPTIONS.with_link(kernel))
    assert out[0](out[1]) == 1


# --- Diagnostics and limits ---

def test_verbose_traces_to_stderr(capsys, monkeypatch):
    monkeypatch.delenv("KEXPR_DEBUG", raising=False)
    parse(ints(1, 2), DEFAULT_OPTIONS.derive("verbose"))
    err = capsys.readouterr().err
    assert "[DBG] simple vector parse" in err
    assert "done in" in err


def test_quiet_by_default(capsys, monkeypatch):
    monkeypatch.delenv("KEXPR_DEBUG", raising=False)
    parse(Expr.list_of(ints(1, 2), ints(3, 4)))
    assert capsys.readouterr().err == ""


def test_debug_env_enables_tracing(capsys, monkeypatch):
    monkeypatch.setenv("KEXPR_DEBUG", "1")
    parse(Expr.list_of(ints(1, 2), ints(3, 4)))
    assert "simple matrix parse" in capsys.readouterr().err


def test_overly_deep_expression_raises_decode_exhaustion():
    e = Expr.integer(0)
    for _ in range(20000):
        e = Expr.normal("f", e)
    with pytest.raises(DecodeExhaustionError):
        parse(e)
