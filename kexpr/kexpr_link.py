"""
Kernel links, expression normalization, and the channel driver.

A kernel link is a single half-duplex pipe with no request identifiers, so
the driver holds a per-link lock from submit through read: a response is
always consumed by the caller whose request produced it.
"""
import asyncio
import itertools
import threading
import weakref
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union

from kexpr.kexpr_datatypes import (
    Expr, Handle, Symbol, is_failure,
    UnsupportedInputTypeError, InvalidExpressionError, LinkFailureError,
    ReentrantRequestError, EngineEvaluationError,
)
from kexpr.kexpr_debug import dbg
from kexpr.kexpr_options import Options, DEFAULT_OPTIONS

# Link errors the driver converts to LinkFailureError.
_IO_ERRORS = (OSError, EOFError, TimeoutError)

_request_ids = itertools.count(1)


class KernelLink(ABC):
    """The capability a kernel connection must offer to the driver.

    `submit` sends one request (kernel text or an Expr); `await_response`
    blocks until the matching answer is complete and returns it as an Expr.
    Neither is called outside the driver's lock.
    """

    @abstractmethod
    def submit(self, request: Union[str, Expr]) -> None: raise NotImplementedError

    @abstractmethod
    def await_response(self) -> Expr: raise NotImplementedError


class LoopbackLink(KernelLink):
    """A link answered in-process by `evaluator(request) -> Expr`.

    Without an evaluator the link echoes each submitted request back.
    """
    def __init__(self, evaluator: Optional[Callable[[Union[str, Expr]], Expr]] = None):
        self.evaluator = evaluator
        self._pending: list = []

    def submit(self, request):
        self._pending.append(request)

    def await_response(self) -> Expr:
        if not self._pending:
            raise EOFError("no request is pending on this link")
        request = self._pending.pop(0)
        if self.evaluator is None:
            if isinstance(request, str):
                raise TypeError("an echoing LoopbackLink cannot answer text requests")
            return request
        return self.evaluator(request)


class _LinkGuard:
    __slots__ = ("lock", "owner")

    def __init__(self):
        self.lock = threading.Lock()
        self.owner: Optional[int] = None


_guards: "weakref.WeakKeyDictionary[KernelLink, _LinkGuard]" = weakref.WeakKeyDictionary()
_guards_lock = threading.Lock()


def _guard_for(link) -> _LinkGuard:
    with _guards_lock:
        guard = _guards.get(link)
        if guard is None:
            guard = _guards[link] = _LinkGuard()
        return guard


def _exchange(request: Union[str, Expr], link) -> Expr:
    """Submit `request` and read its answer while holding the link exclusively."""
    if link is None:
        raise LinkFailureError("no kernel link is available for this request")
    guard = _guard_for(link)
    me = threading.get_ident()
    if guard.owner == me:
        raise ReentrantRequestError(
            "this thread is already waiting on the same kernel link; "
            "callables must not be invoked while their link is busy"
        )
    with guard.lock:
        guard.owner = me
        try:
            dbg("submit", request)
            link.submit(request)
            response = link.await_response()
            dbg("receive", response)
        except _IO_ERRORS as e:
            raise LinkFailureError(f"kernel link failed: {e}") from e
        finally:
            guard.owner = None
    if not isinstance(response, Expr):
        raise LinkFailureError(f"kernel link returned {type(response).__name__}, expected Expr")
    return response


def express(value: Any, link: Optional[KernelLink] = None) -> Optional[Handle]:
    """Turn text, an Expr, or a Handle into a Handle without evaluating it.

    Text is parsed by the kernel at the other end of `link`, held
    unevaluated. Passing None returns None.
    """
    match value:
        case str():
            if link is None:
                raise ValueError("express needs a kernel link to read text")
            held = _exchange(f"HoldComplete[{value}]", link)
            parts = held.args if held.head_name == "HoldComplete" else ()
            if len(parts) != 1:
                raise InvalidExpressionError(value, len(parts))
            return Handle(parts[0])
        case Expr():
            return Handle(value)
        case Handle():
            return value
        case None:
            return None
        case _:
            raise UnsupportedInputTypeError(value, "express")


def send_read(value: Any, link: Optional[KernelLink],
              options: Options = DEFAULT_OPTIONS) -> Optional[Handle]:
    """Evaluate `value` on the kernel behind `link` and return the answer.

    Text is submitted as-is for the kernel to read; Exprs and Handles are
    submitted as expressions, and a Symbol as the symbol it names under
    `options`. Passing None returns None and leaves the link alone. Under
    the `strict` flag a kernel failure raises EngineEvaluationError instead
    of being returned.
    """
    match value:
        case Symbol():
            # Local import: kexpr_convert imports this module.
            from kexpr.kexpr_convert import convert
            request = convert(value, options)
        case str():
            request = value
        case Expr():
            request = value
        case Handle():
            request = value.expr
        case None:
            return None
        case _:
            raise UnsupportedInputTypeError(value, "send_read")
    response = _exchange(request, link)
    if options.flag("strict") and is_failure(response):
        raise EngineEvaluationError(response)
    return Handle(response, next(_request_ids))


async def send_read_async(value: Any, link: Optional[KernelLink],
                          options: Options = DEFAULT_OPTIONS) -> Optional[Handle]:
    """Run `send_read` off the event loop; the link is still held exclusively."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, send_read, value, link, options)
