"""
LoyaltyLink MCP Server - Model Context Protocol server for customer reconciliation.

Exposes LoyaltyLink to MCP clients:
- Linking tools (resolve and link, phone normalization)
- Coupon tools (aggregation across entitlement sources)
- Savings tools (totals, streaks, goal progress)

Usage:
    # Via CLI
    loyaltylink-mcp

    # Via Python
    from loyaltylink_mcp import server
    server.main()

    # Via an MCP client config (.mcp.json)
    {
        "mcpServers": {
            "loyaltylink": {
                "command": "loyaltylink-mcp"
            }
        }
    }
"""

__version__ = "0.1.0"
