"""
SQLite bet ledger.

One row per user-initiated placement.  The row is written *before* the
order is submitted (status ``pending``, no chain ids) and then moved
forward by the placement flow, settlement sync and the ghost reconciler.

Rules enforced here:
  - status changes follow ``ALLOWED_TRANSITIONS``; settled / canceled /
    rejected / failed rows are final
  - a non-null bet_id / tx_hash never changes to another value
  - a bet_id belongs to at most one row (UNIQUE)
  - amount and selections are never updated
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite

from .models import (
    ACCEPTED,
    ALLOWED_TRANSITIONS,
    CANCELED,
    FAILED,
    GHOST_BET_CLEANUP,
    LOST,
    OPEN_STATUSES,
    PENDING,
    PROCESSING,
    REJECTED,
    SETTLED,
    WON,
    BetAttempt,
    BetFilter,
    Selection,
)
from ..errors import ChainIdConflict, InvalidTransition, UnknownBet

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/bets.db"

CREATE_TABLES_SQL = """
-- One row per placement attempt
CREATE TABLE IF NOT EXISTS bets (
    local_id TEXT PRIMARY KEY,
    wallet TEXT NOT NULL,
    chain TEXT NOT NULL DEFAULT '',
    kind TEXT NOT NULL,
    selections TEXT NOT NULL,
    condition_id TEXT NOT NULL,
    outcome_id INTEGER NOT NULL,
    amount TEXT NOT NULL,
    odds TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    result TEXT,
    bet_id TEXT UNIQUE,
    tx_hash TEXT,
    order_id TEXT,
    payout TEXT,
    label TEXT NOT NULL DEFAULT '',
    redeemed INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    settled_at INTEGER
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_bets_wallet_status ON bets(wallet, status);
CREATE INDEX IF NOT EXISTS idx_bets_tx_hash ON bets(tx_hash);
CREATE INDEX IF NOT EXISTS idx_bets_order_id ON bets(order_id);
"""


def new_attempt(
    wallet: str,
    selections: list[Selection],
    amount: str,
    odds: Decimal,
    chain: str = "",
    label: str = "",
    now: Optional[int] = None,
) -> BetAttempt:
    now = int(time.time()) if now is None else now
    return BetAttempt(
        local_id=uuid.uuid4().hex,
        wallet=wallet.lower(),
        chain=chain,
        selections=selections,
        amount=str(amount),
        odds=Decimal(str(odds)),
        label=label,
        created_at=now,
        updated_at=now,
    )


def _row_to_attempt(row: aiosqlite.Row) -> BetAttempt:
    return BetAttempt(
        local_id=row["local_id"],
        wallet=row["wallet"],
        chain=row["chain"],
        selections=[Selection(**s) for s in json.loads(row["selections"])],
        amount=row["amount"],
        odds=Decimal(row["odds"]),
        status=row["status"],
        result=row["result"],
        bet_id=row["bet_id"],
        tx_hash=row["tx_hash"],
        order_id=row["order_id"],
        payout=row["payout"],
        label=row["label"],
        redeemed=bool(row["redeemed"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        settled_at=row["settled_at"],
    )


class Ledger:
    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    async def init_schema(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path)

    # ── Internal helpers (run inside an open connection) ─────────────

    @staticmethod
    async def _fetch(db: aiosqlite.Connection, local_id: str) -> BetAttempt:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM bets WHERE local_id = ?", (local_id,)) as cur:
            row = await cur.fetchone()
        if row is None:
            raise UnknownBet(f"No bet with local id {local_id}")
        return _row_to_attempt(row)

    @staticmethod
    async def _transition(
        db: aiosqlite.Connection,
        bet: BetAttempt,
        status: str,
        result: Optional[str] = None,
        payout: Optional[str] = None,
        now: Optional[int] = None,
    ) -> None:
        if status not in ALLOWED_TRANSITIONS.get(bet.status, frozenset()):
            raise InvalidTransition(bet.local_id, bet.status, status)
        if status == SETTLED and result not in (WON, LOST):
            raise InvalidTransition(bet.local_id, bet.status, f"{status} without won/lost result")
        now = int(time.time()) if now is None else now
        settled_at = now if status in (SETTLED, CANCELED) else None
        cur = await db.execute(
            """UPDATE bets
               SET status = ?, result = COALESCE(?, result), payout = COALESCE(?, payout),
                   settled_at = COALESCE(?, settled_at), updated_at = ?
               WHERE local_id = ? AND status = ?""",
            (status, result, payout, settled_at, now, bet.local_id, bet.status),
        )
        if cur.rowcount == 0:
            # Someone moved it between our read and write.
            raise InvalidTransition(bet.local_id, "changed concurrently", status)

    @staticmethod
    async def _assign(
        db: aiosqlite.Connection,
        bet: BetAttempt,
        bet_id: Optional[str],
        tx_hash: Optional[str],
        now: int,
    ) -> None:
        if bet_id and bet.bet_id and bet.bet_id != bet_id:
            raise ChainIdConflict(f"Bet {bet.local_id} already has betId {bet.bet_id}, refusing {bet_id}")
        if tx_hash and bet.tx_hash and bet.tx_hash.lower() != tx_hash.lower():
            raise ChainIdConflict(f"Bet {bet.local_id} already has txHash {bet.tx_hash}, refusing {tx_hash}")
        if bet_id and bet.bet_id != bet_id:
            async with db.execute(
                "SELECT local_id FROM bets WHERE bet_id = ? AND local_id != ?", (bet_id, bet.local_id)
            ) as cur:
                other = await cur.fetchone()
            if other is not None:
                raise ChainIdConflict(f"betId {bet_id} already belongs to bet {other[0]}")
        await db.execute(
            """UPDATE bets
               SET bet_id = COALESCE(bet_id, ?), tx_hash = COALESCE(tx_hash, ?), updated_at = ?
               WHERE local_id = ?""",
            (bet_id, tx_hash, now, bet.local_id),
        )

    # ── Create / read ────────────────────────────────────────────────

    async def create(self, attempt: BetAttempt) -> BetAttempt:
        """Store a new attempt as ``pending`` with no chain ids."""
        if not attempt.selections:
            raise ValueError("A bet needs at least one selection")
        attempt = attempt.model_copy(update={
            "status": PENDING, "result": None, "bet_id": None, "tx_hash": None,
            "order_id": None, "payout": None, "redeemed": False, "settled_at": None,
        })
        first = attempt.selections[0]
        async with self._connect() as db:
            await db.execute(
                """INSERT INTO bets
                   (local_id, wallet, chain, kind, selections, condition_id, outcome_id,
                    amount, odds, status, label, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    attempt.local_id,
                    attempt.wallet.lower(),
                    attempt.chain,
                    "combo" if attempt.is_combo else "single",
                    json.dumps([s.model_dump(mode="json") for s in attempt.selections]),
                    first.condition_id,
                    first.outcome_id,
                    attempt.amount,
                    str(attempt.odds),
                    PENDING,
                    attempt.label,
                    attempt.created_at,
                    attempt.updated_at or attempt.created_at,
                ),
            )
            await db.commit()
        logger.info("Ledger: created %s (%s %s @ %s)", attempt.local_id, attempt.amount,
                    "combo" if attempt.is_combo else "single", attempt.odds)
        return attempt

    async def get(self, local_id: str) -> Optional[BetAttempt]:
        async with self._connect() as db:
            try:
                return await self._fetch(db, local_id)
            except UnknownBet:
                return None

    async def query(self, flt: Optional[BetFilter] = None) -> list[BetAttempt]:
        flt = flt or BetFilter()
        clauses: list[str] = []
        params: list = []
        if flt.wallet:
            clauses.append("wallet = ?")
            params.append(flt.wallet.lower())
        if flt.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in flt.statuses)})")
            params.extend(flt.statuses)
        if flt.result is not None:
            clauses.append("result = ?")
            params.append(flt.result)
        if flt.bet_id:
            clauses.append("bet_id = ?")
            params.append(flt.bet_id)
        if flt.tx_hash:
            clauses.append("LOWER(tx_hash) = ?")
            params.append(flt.tx_hash.lower())
        if flt.order_id:
            clauses.append("order_id = ?")
            params.append(flt.order_id)
        if flt.has_chain_id is True:
            clauses.append("(bet_id IS NOT NULL AND bet_id != '' OR tx_hash IS NOT NULL AND tx_hash != '')")
        elif flt.has_chain_id is False:
            clauses.append("(bet_id IS NULL OR bet_id = '') AND (tx_hash IS NULL OR tx_hash = '')")
        if flt.created_before is not None:
            clauses.append("created_at < ?")
            params.append(flt.created_before)

        sql = "SELECT * FROM bets"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, local_id"
        if flt.limit:
            sql += f" LIMIT {int(flt.limit)}"

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cur:
                rows = await cur.fetchall()
        return [_row_to_attempt(r) for r in rows]

    async def ghost_candidates(self, wallet: str, older_than: int) -> list[BetAttempt]:
        """Open rows with no chain ids created before ``older_than`` (unix seconds)."""
        return await self.query(BetFilter(
            wallet=wallet, statuses=list(OPEN_STATUSES), has_chain_id=False, created_before=older_than,
        ))

    async def ghost_failures(self, wallet: str) -> list[BetAttempt]:
        return await self.query(BetFilter(wallet=wallet, statuses=[FAILED], result=GHOST_BET_CLEANUP))

    async def claimed_bet_ids(self) -> set[str]:
        async with self._connect() as db:
            async with db.execute("SELECT bet_id FROM bets WHERE bet_id IS NOT NULL AND bet_id != ''") as cur:
                rows = await cur.fetchall()
        return {r[0] for r in rows}

    # ── Mutations ────────────────────────────────────────────────────

    async def update_status(
        self,
        local_id: str,
        status: str,
        result: Optional[str] = None,
        payout: Optional[str] = None,
    ) -> BetAttempt:
        async with self._connect() as db:
            bet = await self._fetch(db, local_id)
            await self._transition(db, bet, status, result, payout)
            await db.commit()
            updated = await self._fetch(db, local_id)
        logger.info("Ledger: %s %s -> %s%s", local_id, bet.status, status, f" ({result})" if result else "")
        return updated

    async def assign_chain_ids(self, local_id: str, bet_id: Optional[str], tx_hash: Optional[str]) -> BetAttempt:
        """Fill bet_id / tx_hash where empty; same values again is a no-op."""
        async with self._connect() as db:
            bet = await self._fetch(db, local_id)
            await self._assign(db, bet, bet_id, tx_hash, int(time.time()))
            await db.commit()
            return await self._fetch(db, local_id)

    async def set_order_id(self, local_id: str, order_id: str) -> None:
        async with self._connect() as db:
            bet = await self._fetch(db, local_id)
            if bet.order_id and bet.order_id != order_id:
                raise ChainIdConflict(f"Bet {local_id} already has order {bet.order_id}")
            await db.execute(
                "UPDATE bets SET order_id = ?, updated_at = ? WHERE local_id = ?",
                (order_id, int(time.time()), local_id),
            )
            await db.commit()

    async def confirm(self, local_id: str, bet_id: Optional[str], tx_hash: Optional[str], status: str = ACCEPTED) -> BetAttempt:
        """Assign chain ids and move status in one transaction."""
        async with self._connect() as db:
            bet = await self._fetch(db, local_id)
            now = int(time.time())
            await self._assign(db, bet, bet_id, tx_hash, now)
            if status != bet.status:
                await self._transition(db, bet, status, now=now)
            await db.commit()
            updated = await self._fetch(db, local_id)
        logger.info("Ledger: %s confirmed betId=%s tx=%s status=%s", local_id, bet_id, tx_hash, status)
        return updated

    async def apply_reconciliation(
        self,
        matches: Iterable[tuple[str, str, Optional[str], str]],
        ghosts: Iterable[str],
        recovery: bool = False,
    ) -> None:
        """
        Write one reconciliation pass atomically.

        ``matches`` are ``(local_id, bet_id, tx_hash, status)``.  With
        ``recovery`` the rows are ``failed``/``ghost_bet_cleanup`` and get
        their result cleared; otherwise they are open candidates.
        ``ghosts`` become ``failed``/``ghost_bet_cleanup``.
        """
        now = int(time.time())
        async with self._connect() as db:
            try:
                for local_id, bet_id, tx_hash, status in matches:
                    bet = await self._fetch(db, local_id)
                    await self._assign(db, bet, bet_id, tx_hash, now)
                    if recovery:
                        if bet.status != FAILED or bet.result != GHOST_BET_CLEANUP:
                            raise InvalidTransition(local_id, bet.status, f"{status} (recovery)")
                        await db.execute(
                            "UPDATE bets SET status = ?, result = NULL, updated_at = ? WHERE local_id = ?",
                            (status, now, local_id),
                        )
                    elif status != bet.status:
                        await self._transition(db, bet, status, now=now)
                for local_id in ghosts:
                    bet = await self._fetch(db, local_id)
                    await self._transition(db, bet, FAILED, GHOST_BET_CLEANUP, now=now)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def mark_redeemed(self, bet_ids: Iterable[str], payouts: Optional[dict[str, str]] = None) -> int:
        """Flag settled rows whose payout was withdrawn. Returns rows touched."""
        payouts = payouts or {}
        count = 0
        now = int(time.time())
        async with self._connect() as db:
            for bet_id in bet_ids:
                cur = await db.execute(
                    """UPDATE bets SET redeemed = 1, payout = COALESCE(?, payout), updated_at = ?
                       WHERE bet_id = ?""",
                    (payouts.get(bet_id), now, bet_id),
                )
                count += cur.rowcount
            await db.commit()
        return count

    # ── Stats ────────────────────────────────────────────────────────

    async def stats(self, wallet: Optional[str] = None) -> dict:
        bets = await self.query(BetFilter(wallet=wallet))
        staked = Decimal(0)
        returned = Decimal(0)
        counts = {s: 0 for s in ALLOWED_TRANSITIONS}
        won = lost = 0
        for b in bets:
            counts[b.status] = counts.get(b.status, 0) + 1
            if b.status in (REJECTED, FAILED):
                continue
            staked += Decimal(b.amount)
            if b.status == SETTLED and b.result == WON:
                won += 1
                returned += Decimal(b.payout) if b.payout else Decimal(b.amount) * b.odds
            elif b.status == SETTLED and b.result == LOST:
                lost += 1
                # Cashouts below stake are recorded as lost with a partial payout.
                if b.payout:
                    returned += Decimal(b.payout)
            elif b.status == CANCELED:
                returned += Decimal(b.amount)
        open_stake = sum((Decimal(b.amount) for b in bets if b.status in (PENDING, PROCESSING, ACCEPTED)), Decimal(0))
        return {
            "total_bets": len(bets),
            "by_status": counts,
            "won": won,
            "lost": lost,
            "pending": counts[PENDING] + counts[PROCESSING] + counts[ACCEPTED],
            "win_rate": round(won / (won + lost), 4) if won + lost else 0.0,
            "total_staked": str(staked),
            "open_stake": str(open_stake),
            "total_returned": str(returned),
            "profit": str(returned - (staked - open_stake)),
        }
