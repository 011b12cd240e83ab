"""MCP stdio server exposing backup and restore operations as tools."""
