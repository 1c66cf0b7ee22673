"""Entry point for running MCP server as a module.

This allows running the server with: python -m analytics.services.mcp_server
"""

if __name__ == "__main__":
    from analytics.services.mcp_server.main import run

    run()
