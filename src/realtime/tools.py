"""Function tools the realtime agent can call during a phone call."""

import json
import logging

from src.vobiz.client import hangup_call

logger = logging.getLogger(__name__)

TOOL_DEFINITIONS = [
    {
        "type": "function",
        "name": "call_end",
        "description": (
            "Ends the current phone call immediately. Trigger this when the "
            "conversation is finished or the user wants to hang up."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "callId": {
                    "type": "string",
                    "description": "The unique identifier for the call session.",
                },
            },
            "required": ["callId"],
        },
    },
    {
        "type": "function",
        "name": "get_caller_info",
        "description": "Returns the call id and the caller and callee phone numbers.",
        "parameters": {"type": "object", "properties": {}},
    },
]


def _parse_arguments(arguments: str) -> dict:
    try:
        args = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        logger.warning(f"Tool arguments are not JSON: {arguments!r}")
        return {}
    return args if isinstance(args, dict) else {}


async def _call_end(args: dict, ctx) -> dict:
    # Model-supplied id wins, the id from the 'start' event is the fallback
    target = args.get("callId") or ctx.call_id
    try:
        await hangup_call(target)
    except Exception as e:
        logger.error(f"[{ctx.call_id}] Hangup failed for {target}: {e}")
        return {"error": str(e)}
    return {"status": "call_terminated"}


async def _get_caller_info(args: dict, ctx) -> dict:
    return {
        "callId": ctx.call_id,
        "from": ctx.from_number,
        "to": ctx.to_number,
    }


TOOL_HANDLERS = {
    "call_end": _call_end,
    "get_caller_info": _get_caller_info,
}


async def run_tool(name: str, arguments: str, ctx) -> dict:
    """
    Execute a tool call requested by the model.

    Args:
        name: Tool name from the function call event
        arguments: JSON-encoded arguments string
        ctx: CallContext of the call the model is talking on

    Returns:
        JSON-serialisable result to send back as function_call_output
    """
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        logger.warning(f"[{ctx.call_id}] Unknown tool requested: {name}")
        return {"error": f"unknown tool: {name}"}

    logger.info(f"[{ctx.call_id}] Tool call: {name} with args: {arguments}")
    return await handler(_parse_arguments(arguments), ctx)
