"""Memory backend transports.

    base.py       — BackendAdapter protocol, MemoryItem, result envelopes
    tool_call.py  — OpenMemory via host-dispatched tool calls (MCP)
    rest.py       — OpenMemory via HTTP (aiohttp)
    selector.py   — per-call choice between the two, tool calls preferred
"""
