"""
queries.py - Read-only views over the ledger.

Leaderboards, per-user and per-token views, pool status and payout
reconciliation lists. Amounts are returned as Python ints; ratios are
integer basis points (10000 = 100%). Every read waits on the store lock,
so a view never includes rows from a write still in progress.
"""

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from indexer.config import BPS_DENOMINATOR
from indexer.errors import ReferralRejected
from indexer.fees import FeeCalculator
from indexer.models import canonical_address

if TYPE_CHECKING:
    from indexer.storage import LedgerStore

logger = logging.getLogger("query")

MAX_LIMIT = 500


def _ratio_bps(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    return numerator * BPS_DENOMINATOR // denominator


def _clamp(limit: int) -> int:
    return max(1, min(limit, MAX_LIMIT))


def _empty_user(address: str) -> dict:
    return {
        "address": address,
        "total_buys": 0,
        "total_sells": 0,
        "total_fees_paid": 0,
        "user_pool_contribution": 0,
        "swap_count": 0,
        "last_swap_time": None,
        "total_airdrops_received": 0,
        "referral_code": None,
        "referred_by": None,
        "referral_count": 0,
        "referral_earnings": 0,
    }


class QueryFacade:
    def __init__(
        self,
        store: "LedgerStore",
        fees: Optional[FeeCalculator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.fees = fees or FeeCalculator()
        self.clock = clock

    # ── Leaderboards ──────────────────────────────────────────────

    async def airdrop_leaderboard(self, limit: int = 100) -> List[dict]:
        async with self.store.read():
            ranked = await self.store.users.ranked_pool_contributors(_clamp(limit))
            total = await self.store.users.total_pool_contribution()
        return [
            {
                "rank": i + 1,
                "address": u["address"],
                "user_pool_contribution": u["user_pool_contribution"],
                "total_fees_paid": u["total_fees_paid"],
                "swap_count": u["swap_count"],
                "total_airdrops_received": u["total_airdrops_received"],
                "share_bps": _ratio_bps(u["user_pool_contribution"], total),
            }
            for i, u in enumerate(ranked)
        ]

    async def referral_leaderboard(self, limit: int = 100) -> List[dict]:
        async with self.store.read():
            users = await self.store.users.list_all()
        users = [u for u in users if u["referral_count"] > 0]
        users.sort(key=lambda u: (-u["referral_earnings"], -u["referral_count"], u["address"]))
        return [
            {
                "rank": i + 1,
                "address": u["address"],
                "referral_code": u["referral_code"],
                "referral_count": u["referral_count"],
                "referral_earnings": u["referral_earnings"],
            }
            for i, u in enumerate(users[:_clamp(limit)])
        ]

    async def roi_leaderboard(self, limit: int = 100) -> List[dict]:
        """Net P&L over cost basis, per user, across every position with a basis."""
        async with self.store.read():
            positions = await self.store.positions.list_all()
        totals: dict[str, dict] = {}
        for p in positions:
            if p["cost_basis"] <= 0:
                continue
            entry = totals.setdefault(
                p["user_address"], {"invested": 0, "proceeds": 0, "token_count": 0},
            )
            entry["invested"] += p["cost_basis"]
            entry["proceeds"] += p["realized_pnl"]
            entry["token_count"] += 1

        rows = []
        for address, t in totals.items():
            net = t["proceeds"] - t["invested"]
            rows.append({
                "address": address,
                "total_invested": t["invested"],
                "total_proceeds": t["proceeds"],
                "net_pnl": net,
                "token_count": t["token_count"],
                "roi_bps": _ratio_bps(net, t["invested"]),
            })
        rows.sort(key=lambda r: (-r["roi_bps"], r["address"]))
        rows = rows[:_clamp(limit)]
        for i, row in enumerate(rows):
            row["rank"] = i + 1
        return rows

    # ── Users ─────────────────────────────────────────────────────

    async def user_stats(self, address: str) -> dict:
        address = canonical_address(address)
        async with self.store.read():
            stats = await self.store.users.get(address)
        if stats is None:
            return _empty_user(address)
        return {k: v for k, v in stats.items() if k not in ("created_at", "updated_at")}

    async def user_rank(self, address: str) -> dict:
        address = canonical_address(address)
        async with self.store.read():
            ranked = await self.store.users.ranked_pool_contributors()
        total = sum(u["user_pool_contribution"] for u in ranked)
        rank = 0
        contribution = 0
        for i, u in enumerate(ranked):
            if u["address"] == address:
                rank = i + 1
                contribution = u["user_pool_contribution"]
                break
        return {
            "address": address,
            "rank": rank,
            "user_pool_contribution": contribution,
            "total_pool_contribution": total,
            "estimated_share_bps": _ratio_bps(contribution, total),
        }

    async def user_positions(self, address: str) -> List[dict]:
        address = canonical_address(address)
        async with self.store.read():
            positions = await self.store.positions.list_for_user(address)
            tokens = {}
            for p in positions:
                tokens[p["token_address"]] = await self.store.tokens.get(p["token_address"])
        results = []
        for p in positions:
            token = tokens[p["token_address"]]
            results.append({
                "token_address": p["token_address"],
                "token_name": token["name"] if token else None,
                "token_symbol": token["symbol"] if token else None,
                "total_bought": p["total_bought"],
                "total_sold": p["total_sold"],
                "cost_basis": p["cost_basis"],
                "realized_pnl": p["realized_pnl"],
                "net_pnl": p["realized_pnl"] - p["cost_basis"],
                "roi_bps": _ratio_bps(p["realized_pnl"] - p["cost_basis"], p["cost_basis"]),
            })
        return results

    async def referral_info(self, code: str) -> Optional[dict]:
        async with self.store.read():
            referrer = await self.store.users.find_by_referral_code(code)
            if referrer is None:
                return None
            stats = await self.store.users.get(referrer)
        return {
            "code": stats["referral_code"],
            "referrer_address": referrer,
            "referral_count": stats["referral_count"],
        }

    # ── Pools ─────────────────────────────────────────────────────

    def today(self) -> str:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).strftime("%Y-%m-%d")

    async def pool(self, date: str) -> dict:
        async with self.store.read():
            pool = await self.store.pools.get(date)
            total = await self.store.users.total_pool_contribution()
        if pool is None:
            pool = {
                "date": date,
                "total_user_fees": 0,
                "total_treasury_fees": 0,
                "distributed": False,
                "distributed_at": None,
            }
        else:
            pool = {k: v for k, v in pool.items() if k != "created_at"}
        pool["total_pool_contribution"] = total
        return pool

    async def today_pool(self) -> dict:
        return await self.pool(self.today())

    async def distribution_records(self, pool_date: str) -> List[dict]:
        async with self.store.read():
            return await self.store.distributions.list_for_pool(pool_date)

    async def unreconciled_payouts(self) -> List[dict]:
        """Failed and pending payouts awaiting an operator."""
        async with self.store.read():
            return await self.store.distributions.list_unreconciled()

    # ── Tokens ────────────────────────────────────────────────────

    async def token_stats(self, token: str) -> Optional[dict]:
        token = canonical_address(token)
        async with self.store.read():
            info = await self.store.tokens.get(token)
            if info is None:
                return None
            swaps = await self.store.swaps.list_for_token(token)
        buys = [s for s in swaps if s["side"] == "buy"]
        sells = [s for s in swaps if s["side"] == "sell"]
        return {
            "token": info,
            "stats": {
                "total_swaps": len(swaps),
                "buy_count": len(buys),
                "sell_count": len(sells),
                "total_buy_volume": sum(s["amount_in"] for s in buys),
                "total_sell_volume": sum(s["amount_out"] for s in sells),
                "total_fees": sum(s["fee_total"] for s in swaps),
                "unique_traders": len({s["trader_address"] for s in swaps}),
            },
        }

    async def tokens_by_creator(self, creator: str) -> dict:
        creator = canonical_address(creator)
        async with self.store.read():
            launched = await self.store.tokens.list_by_creator(creator)
        graduated = [t for t in launched if t["graduated"]]
        return {
            "launched": launched,
            "graduated": graduated,
            "stats": {
                "total_launched": len(launched),
                "total_graduated": len(graduated),
                "success_rate_pct": (
                    round(len(graduated) * 100 / len(launched)) if launched else 0
                ),
            },
        }

    async def active_tokens(self) -> List[str]:
        async with self.store.read():
            return await self.store.tokens.list_active()

    def fee_structure(self) -> dict:
        return self.fees.describe()


class ReferralService:
    """Off-chain referral registration by code."""

    def __init__(self, store: "LedgerStore", clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def register_by_code(self, code: str, referred: str) -> dict:
        referred = canonical_address(referred)
        async with self.store.transaction():
            referrer = await self.store.users.find_by_referral_code(code)
            if referrer is None:
                raise ReferralRejected(f"unknown referral code {code!r}")
            if referrer == referred:
                raise ReferralRejected("cannot refer yourself")
            await self.store.users.upsert_on_first_seen(referred)
            if not await self.store.referrals.record(referrer, referred, int(self.clock())):
                raise ReferralRejected(f"{referred} already has a referrer")
        logger.info("Referral registered via code %s: %s -> %s", code, referrer, referred)
        return {"referrer": referrer, "referred": referred}
