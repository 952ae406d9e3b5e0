"""
Capability transport: the kpc-mcp-server child process over stdio.

- stdio_channel: JSON-RPC framing and request correlation
- mcp_client: connection state machine and tool calls
"""
