"""mnemo servers: MCP over stdio or streamable HTTP, plus the UDS hook listener."""
