"""
Azuro bet client — submission, confirmation and reconciliation core.

Layers:
  azuro/    — Pure API clients (relayer, GraphQL data feed, odds stream)
  chain/    — RPC endpoint pool, retry executor, signer, transactions
  betting/  — Bet lifecycle: builder, poller, ledger, reconciler, settlement
  mcp/      — MCP server exposing the betting tools to an agent
"""
