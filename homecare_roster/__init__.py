"""SQLite store, run artifacts and MCP server around roster_core."""
