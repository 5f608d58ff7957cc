"""
Command-line interface.

    python -m azurobet.cli wallet
    python -m azurobet.cli bet 100610060000000000292369291:1 --odds 1.85 --amount 5
    python -m azurobet.cli bet C1:O1 C2:O2 --odds 1.5 2.0 --amount 2      # combo
    python -m azurobet.cli bets --status pending accepted
    python -m azurobet.cli sync | reconcile | recover | stats
    python -m azurobet.cli withdraw 205291 205292
    python -m azurobet.cli cancel
    python -m azurobet.cli cashout 205291 [--quote]
    python -m azurobet.cli odds 1006100600000000002923692 --limit 20
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .azuro.stream import OddsStream
from .betting.service import BettingService
from .errors import AzuroBetError


def _parse_selections(specs: list[str], odds: list[float]) -> list[dict[str, Any]]:
    if len(specs) != len(odds):
        raise SystemExit("Give one --odds value per selection")
    selections = []
    for spec, o in zip(specs, odds):
        condition_id, sep, outcome_id = spec.partition(":")
        if not sep:
            raise SystemExit(f"Selection must be CONDITION:OUTCOME, got {spec!r}")
        selections.append({"condition_id": condition_id, "outcome_id": int(outcome_id), "odds": o})
    return selections


async def _stream_odds(svc: BettingService, condition_ids: list[str], limit: int) -> None:
    chain = svc.settings.chain
    stream = OddsStream(chain.websocket, chain.environment)
    async for update in stream.updates(condition_ids, limit=limit):
        arrow = {"up": "↑", "down": "↓"}.get(update.direction, " ")
        print(f"{update.condition_id}:{update.outcome_id}  {update.odds} {arrow}")


async def run(args: argparse.Namespace) -> Any:
    svc = BettingService.from_config(args.config)
    await svc.start()
    try:
        cmd = args.command
        if cmd == "wallet":
            return await svc.wallet_info()
        if cmd == "sports":
            return await svc.sports()
        if cmd == "games":
            return await svc.games(args.sport, args.live, args.limit)
        if cmd == "bet":
            return await svc.place_bet(
                _parse_selections(args.selections, args.odds), args.amount,
                slippage=args.slippage, label=args.label,
            )
        if cmd == "order":
            return await svc.order_status(args.order_id)
        if cmd == "bets":
            return await svc.list_bets(args.status, args.limit)
        if cmd == "sync":
            return await svc.sync()
        if cmd == "reconcile":
            return await svc.reconcile()
        if cmd == "recover":
            return await svc.recover()
        if cmd == "withdraw":
            return await svc.withdraw(args.bet_ids, force=args.force)
        if cmd == "cancel":
            return await svc.cancel_pending()
        if cmd == "cashout":
            if args.quote:
                return await svc.cashout_quote(args.bet_id)
            return await svc.cashout(args.bet_id, args.slippage)
        if cmd == "stats":
            return await svc.stats()
        if cmd == "odds":
            await _stream_odds(svc, args.condition_ids, args.limit)
            return None
        raise SystemExit(f"Unknown command: {cmd}")
    finally:
        await svc.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Azuro bet client")
    parser.add_argument("--config", default="config.yaml", help="Config file path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("wallet", help="Show address and balances")
    sub.add_parser("sports", help="List sports")

    p = sub.add_parser("games", help="List games with odds")
    p.add_argument("--sport", help="Sport slug")
    p.add_argument("--live", action="store_true")
    p.add_argument("--limit", type=int, default=20)

    p = sub.add_parser("bet", help="Place a single or combo bet")
    p.add_argument("selections", nargs="+", help="CONDITION:OUTCOME (two or more for a combo)")
    p.add_argument("--odds", type=float, nargs="+", required=True, help="Quoted odds per selection")
    p.add_argument("--amount", required=True, help="Stake in token units")
    p.add_argument("--slippage", type=float, help="Percent (default from config)")
    p.add_argument("--label", default="", help="Free text stored with the bet")

    p = sub.add_parser("order", help="Relayer order status")
    p.add_argument("order_id")

    p = sub.add_parser("bets", help="List local bets")
    p.add_argument("--status", nargs="*")
    p.add_argument("--limit", type=int, default=50)

    sub.add_parser("sync", help="Reconcile and settle bets from chain")
    sub.add_parser("reconcile", help="Resolve stale bets without chain ids")
    sub.add_parser("recover", help="Re-check ghost bets against full history")

    p = sub.add_parser("withdraw", help="Withdraw payouts")
    p.add_argument("bet_ids", nargs="+")
    p.add_argument("--force", action="store_true", help="Emergency gas price")

    sub.add_parser("cancel", help="Cancel stuck transactions")

    p = sub.add_parser("cashout", help="Cash out an accepted bet")
    p.add_argument("bet_id")
    p.add_argument("--slippage", type=float, default=5)
    p.add_argument("--quote", action="store_true", help="Only show the calculation")

    sub.add_parser("stats", help="Profit / loss summary")

    p = sub.add_parser("odds", help="Stream live odds")
    p.add_argument("condition_ids", nargs="+")
    p.add_argument("--limit", type=int, default=None, help="Stop after N updates")

    return parser


def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        result = asyncio.run(run(args))
    except AzuroBetError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        sys.exit(1)
    if result is not None:
        print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
