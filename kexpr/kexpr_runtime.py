"""
A session object bundling one kernel link with default options.
"""
import asyncio
from typing import Any, Optional

from kexpr.kexpr_convert import build_module
from kexpr.kexpr_datatypes import Expr
from kexpr.kexpr_link import KernelLink, express
from kexpr.kexpr_options import Options, DEFAULT_OPTIONS
from kexpr.kexpr_parse import ExprFunction, cep, parse


class KernelSession:
    """Evaluates and decodes against one kernel link.

    Flags passed to the individual calls refine the session's options for
    that call only.
    """

    def __init__(self, link: KernelLink, options: Optional[Options] = None):
        self.link = link
        self.options = (options or DEFAULT_OPTIONS).with_link(link)

    def _options(self, flags) -> Options:
        return self.options.derive(*flags) if flags else self.options

    def evaluate(self, value: Any, *flags: str) -> Any:
        """Evaluate text, an Expr, or a convertible value and decode the answer."""
        return cep(value, self._options(flags))

    async def evaluate_async(self, value: Any, *flags: str) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.evaluate(value, *flags))

    def parse(self, value: Any, *flags: str) -> Any:
        """Decode without evaluating. Text is read by the kernel but held."""
        return parse(express(value, self.link), self._options(flags))

    def function(self, name: str, *flags: str) -> ExprFunction:
        """A callable for the kernel function named `name`."""
        return ExprFunction(Expr.symbol(name), self._options(flags))

    def module(self, bindings, *body: Any, all_output: bool = False,
               parallel: bool = False, flags: tuple = ()) -> Any:
        """Evaluate `body` in a Module with `bindings` as local variables."""
        options = self._options(flags)
        expr = build_module(bindings, *body, link=self.link, all_output=all_output,
                            parallel=parallel, options=options)
        return cep(expr, options)

    def __repr__(self) -> str:
        return f"<KernelSession link={type(self.link).__name__} flags={sorted(self.options.flags)}>"
