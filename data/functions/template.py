"""Example command handler.

A handler module defines ``run(ctx)`` (or ``main(ctx)``), sync or async.
``ctx`` carries ``message``, ``command``, ``args``, ``event``, ``config`` (the
function flow) and ``requests`` (the request-record repository). Return text
to reply with it; return None or "" to stay silent.
"""


def run(ctx):
    if not ctx.args.strip():
        return "Please provide arguments, e.g. /command arg1 arg2"
    return f"You said: {ctx.args}"
