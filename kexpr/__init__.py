from kexpr.kexpr_datatypes import (
    Expr, Handle, Symbol, Long, LazySeq, Deferred, ExprNode, EngineFailure,
    KernelError, UnsupportedInputTypeError, InvalidExpressionError,
    LinkFailureError, ReentrantRequestError, EngineEvaluationError,
    MalformedMapError, DecodeExhaustionError,
)
from kexpr.kexpr_options import Options, DEFAULT_OPTIONS, OPERATOR_ALIASES, load_options
from kexpr.kexpr_link import KernelLink, LoopbackLink, express, send_read, send_read_async
from kexpr.kexpr_convert import convert, add_head, build_set_expr, build_module
from kexpr.kexpr_parse import parse, cep, ExprFunction
from kexpr.kexpr_runtime import KernelSession
from kexpr.kexpr_printer import Printer, full_form

__all__ = [
    "Expr", "Handle", "Symbol", "Long", "LazySeq", "Deferred", "ExprNode", "EngineFailure",
    "KernelError", "UnsupportedInputTypeError", "InvalidExpressionError",
    "LinkFailureError", "ReentrantRequestError", "EngineEvaluationError",
    "MalformedMapError", "DecodeExhaustionError",
    "Options", "DEFAULT_OPTIONS", "OPERATOR_ALIASES", "load_options",
    "KernelLink", "LoopbackLink", "express", "send_read", "send_read_async",
    "convert", "add_head", "build_set_expr", "build_module",
    "parse", "cep", "ExprFunction",
    "KernelSession",
    "Printer", "full_form",
]
