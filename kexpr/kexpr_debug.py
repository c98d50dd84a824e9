"""
Diagnostic tracing to stderr, enabled per call by the `verbose` flag or
globally by the KEXPR_DEBUG environment variable.
"""
import os
import sys
import time
from contextlib import contextmanager


def debug_enabled(verbose: bool = False) -> bool:
    return verbose or bool(os.environ.get("KEXPR_DEBUG"))


def dbg(*parts):
    if debug_enabled():
        print("[DBG]", *parts, file=sys.stderr)


@contextmanager
def debug_message(verbose: bool, message: str):
    """Trace `message` before and after the enclosed block, with its duration."""
    if not debug_enabled(verbose):
        yield
        return
    print("[DBG]", message, file=sys.stderr)
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = (time.perf_counter() - start) * 1000
        print("[DBG]", message, f"done in {elapsed:.3f} ms", file=sys.stderr)
