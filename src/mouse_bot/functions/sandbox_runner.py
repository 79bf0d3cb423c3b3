"""Child-process side of the script sandbox.

This file is not imported by mouse_bot. Its source is passed to an isolated
interpreter (``python -I -c``) by :mod:`mouse_bot.functions.sandbox`, reads
one JSON job from stdin and writes one JSON result to stdout.

Scripts are compiled with RestrictedPython: names and attributes starting
with an underscore are rejected at compile time, and attribute, item and
iteration access goes through the guards below.
"""

import builtins
import json
import math
import operator
import os
import signal
import sys

from RestrictedPython import compile_restricted, limited_builtins, safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)
from RestrictedPython.PrintCollector import PrintCollector

EXTRA_BUILTINS = (
    "all", "any", "dict", "enumerate", "filter", "frozenset", "list", "map",
    "max", "min", "reversed", "set", "sum",
)

INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}


def _inplacevar(op, target, value):
    return INPLACE_OPERATORS[op](target, value)


def _apply(func, *args, **kwargs):
    return func(*args, **kwargs)


def _emit(result):
    # ASCII-only JSON: the child runs without locale or PYTHON* settings
    sys.stdout.buffer.write(json.dumps(result).encode("ascii"))
    sys.stdout.buffer.flush()


def _on_alarm(signum, frame):
    # Leaves without unwinding so no handler in the script can swallow it
    _emit({"ok": False, "error": "script timed out"})
    os._exit(0)


def _lock_down(timeout_ms):
    """No new file descriptors, and a CPU ceiling behind the wall-clock timer."""
    if sys.platform == "win32":
        return
    import resource

    open_fds = 3
    resource.setrlimit(resource.RLIMIT_NOFILE, (open_fds, open_fds))
    cpu_seconds = math.ceil(timeout_ms / 1000.0) + 1
    resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))


def _script_globals(bindings):
    script_builtins = dict(safe_builtins)
    script_builtins.update(limited_builtins)
    script_builtins.update({name: getattr(builtins, name) for name in EXTRA_BUILTINS})

    namespace = {
        "__builtins__": script_builtins,
        "__name__": "script",
        "__metaclass__": type,
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_write_": full_write_guard,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "_print_": PrintCollector,
    }
    namespace.update(bindings)
    namespace["output"] = ""
    return namespace


def main():
    job = json.loads(sys.stdin.buffer.read().decode("utf-8"))
    bindings = job["bindings"]
    timeout_ms = job["timeout_ms"]

    try:
        code = compile_restricted(job["code"], "<script>", "exec")
    except SyntaxError as e:
        _emit({"ok": False, "error": f"SyntaxError: {e}"})
        return

    namespace = _script_globals(bindings)

    _lock_down(timeout_ms)
    if hasattr(signal, "setitimer"):
        interval = timeout_ms / 1000.0
        signal.signal(signal.SIGALRM, _on_alarm)
        signal.setitimer(signal.ITIMER_REAL, interval, interval)

    try:
        exec(code, namespace)
        entry = namespace.get("run")
        if callable(entry):
            namespace["output"] = entry(
                bindings["input"], bindings["command"], bindings["args"], bindings["event"], bindings["config"]
            )
        output = namespace.get("output")
        text = "" if output is None else str(output)
    except Exception as e:
        result = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    else:
        result = {"ok": True, "output": text}
    finally:
        if hasattr(signal, "setitimer"):
            signal.setitimer(signal.ITIMER_REAL, 0)

    _emit(result)


main()
