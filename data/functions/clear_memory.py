"""Forget the conversation history of a flow.

``/clear`` wipes the current flow's records; ``/clear <flow_id>`` wipes the
named flow, typically the role flow the group is chatting with.
"""


async def run(ctx):
    flow_id = ctx.args.strip() or ctx.config.id
    deleted = await ctx.requests.delete_for_flow(flow_id)
    return f"Conversation history cleared ({deleted} records)"
