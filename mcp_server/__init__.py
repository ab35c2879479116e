# Code Review Agent - MCP Server Package
#
# Exposes the review pipeline to AI agents over MCP stdio transport.
# Entry point: mcp_code_review_server.run (installed as code-review-server).
