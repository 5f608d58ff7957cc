"""MCP server exposing the Azuro betting tools."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from ..betting.service import BettingService
from ..errors import AzuroBetError

logger = logging.getLogger(__name__)

SELECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "condition_id": {"type": "string", "description": "Condition ID from list_games."},
        "outcome_id": {"type": "integer", "description": "Outcome ID within the condition."},
        "odds": {"type": "number", "description": "Odds currently quoted for the outcome."},
    },
    "required": ["condition_id", "outcome_id", "odds"],
}


def _tool(name: str, description: str, properties: dict | None = None, required: list[str] | None = None) -> types.Tool:
    return types.Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": properties or {}, "required": required or []},
    )


class AzuroMCPServer:

    def __init__(self, service: BettingService, name: str = "azuro-bets"):
        self.service = service
        self.server = Server(name)
        self._register_handlers()

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return self._tools()

        @self.server.call_tool()
        async def call_tool(
            name: str, arguments: dict[str, Any]
        ) -> list[types.TextContent]:
            try:
                result = await self._dispatch(name, arguments or {})
                text = json.dumps(result, indent=2, default=str)
            except AzuroBetError as e:
                logger.error("Tool %s failed: %s", name, e)
                text = json.dumps({**e.to_dict(), "tool": name}, indent=2)
            except Exception as e:
                logger.error("Tool %s failed: %s", name, e)
                text = json.dumps({"error": str(e), "tool": name}, indent=2)
            return [types.TextContent(type="text", text=text)]

    @staticmethod
    def _tools() -> list[types.Tool]:
        return [
            _tool(
                "get_wallet",
                "Wallet address, chain, current RPC endpoint, and native / betting-token balances.",
            ),
            _tool(
                "list_sports",
                "List sports available in the Azuro data feed (id, name, slug).",
            ),
            _tool(
                "list_games",
                (
                    "List upcoming or live games with their conditions, outcomes and current odds. "
                    "Use the condition_id / outcome_id / odds from here when placing a bet."
                ),
                {
                    "sport": {"type": "string", "description": "Sport slug, e.g. 'football'. Optional."},
                    "live": {"type": "boolean", "description": "Live games instead of upcoming.", "default": False},
                    "limit": {"type": "integer", "description": "Max games. Default 20.", "default": 20},
                },
            ),
            _tool(
                "place_bet",
                (
                    "Place a single bet (one selection) or a combo (two or more selections on different "
                    "conditions). Returns the local bet id and its status: accepted, rejected, failed, "
                    "or pending when the outcome is not yet known (it will be reconciled later)."
                ),
                {
                    "selections": {"type": "array", "items": SELECTION_SCHEMA, "minItems": 1},
                    "amount": {"type": "string", "description": "Stake in token units, e.g. '5'."},
                    "slippage": {"type": "number", "description": "Allowed odds slippage in percent. Default from config."},
                    "label": {"type": "string", "description": "Free text stored with the bet (teams, market)."},
                    "combo": {
                        "type": "boolean",
                        "description": "Force combo (true) or single (false). Default: combo when more than one selection.",
                    },
                },
                ["selections", "amount"],
            ),
            _tool(
                "get_order",
                "Current relayer state of a bet order (Processing, Pending, Accepted, Rejected).",
                {"order_id": {"type": "string"}},
                ["order_id"],
            ),
            _tool(
                "list_bets",
                "Bets recorded locally for this wallet, newest first.",
                {
                    "status": {
                        "type": "array", "items": {"type": "string"},
                        "description": "Filter: pending, processing, accepted, settled, canceled, rejected, failed.",
                    },
                    "limit": {"type": "integer", "default": 50},
                },
            ),
            _tool(
                "sync_bets",
                "Reconcile stale bets and update statuses / results / payouts from the chain.",
            ),
            _tool(
                "reconcile_bets",
                "Resolve bets stuck without an on-chain id for more than 5 minutes.",
            ),
            _tool(
                "recover_bets",
                "Re-check bets marked failed by reconciliation against the full on-chain history.",
            ),
            _tool(
                "withdraw_payouts",
                "Withdraw payouts of won or canceled bets. Reports the amount actually received.",
                {
                    "bet_ids": {"type": "array", "items": {"type": "string"}},
                    "force": {"type": "boolean", "description": "Use emergency gas price.", "default": False},
                },
                ["bet_ids"],
            ),
            _tool(
                "cancel_pending",
                "Cancel stuck wallet transactions by replacing each pending nonce with a self-transfer.",
            ),
            _tool(
                "cashout_quote",
                "Check whether an accepted bet can be cashed out and at what amount.",
                {"bet_id": {"type": "string"}},
                ["bet_id"],
            ),
            _tool(
                "cashout_bet",
                "Cash out an accepted bet.",
                {
                    "bet_id": {"type": "string"},
                    "slippage": {"type": "number", "description": "Percent. Default 5.", "default": 5},
                },
                ["bet_id"],
            ),
            _tool(
                "get_stats",
                "Profit / loss summary of the local bet ledger.",
            ),
        ]

    async def _dispatch(self, name: str, args: dict[str, Any]) -> Any:
        svc = self.service

        if name == "get_wallet":
            return await svc.wallet_info()

        if name == "list_sports":
            return await svc.sports()

        if name == "list_games":
            return await svc.games(args.get("sport"), args.get("live", False), args.get("limit", 20))

        if name == "place_bet":
            return await svc.place_bet(
                args["selections"], str(args["amount"]),
                slippage=args.get("slippage"), label=args.get("label", ""), combo=args.get("combo"),
            )

        if name == "get_order":
            return await svc.order_status(args["order_id"])

        if name == "list_bets":
            return await svc.list_bets(args.get("status"), args.get("limit", 50))

        if name == "sync_bets":
            return await svc.sync()

        if name == "reconcile_bets":
            return await svc.reconcile()

        if name == "recover_bets":
            return await svc.recover()

        if name == "withdraw_payouts":
            return await svc.withdraw([str(b) for b in args["bet_ids"]], args.get("force", False))

        if name == "cancel_pending":
            return await svc.cancel_pending()

        if name == "cashout_quote":
            return await svc.cashout_quote(str(args["bet_id"]))

        if name == "cashout_bet":
            return await svc.cashout(str(args["bet_id"]), args.get("slippage", 5))

        if name == "get_stats":
            return await svc.stats()

        return {"error": f"Unknown tool: {name}"}

    async def run(self) -> None:
        logger.info("Starting MCP server '%s' ...", self.server.name)
        await self.service.start()
        try:
            async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.service.close()


# ── Entry point ──────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(description="Azuro betting MCP server")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    server = AzuroMCPServer(BettingService.from_config(args.config))
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
