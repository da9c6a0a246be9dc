"""MCP server surface: stdio server, sync tools and config resources."""
