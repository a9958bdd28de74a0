from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
import sqlite3
from typing import Any, Iterable
import uuid

from kalshi_deployer.models import (
    ACTIVE_PLACEMENT_STATUSES,
    IlliquidMarket,
    Order,
    OrderBatch,
    PlacementStatus,
    ResultStatus,
    SettlementStatus,
    Side,
    parse_ts,
)

_ORDER_COLUMNS = (
    "id",
    "batch_id",
    "ticker",
    "event_ticker",
    "title",
    "side",
    "price_cents",
    "units",
    "cost_cents",
    "potential_payout_cents",
    "open_interest",
    "market_close_time",
    "placement_status",
    "result_status",
    "settlement_status",
    "exchange_order_id",
    "executed_price_cents",
    "executed_cost_cents",
    "actual_payout_cents",
    "fee_cents",
    "cancel_reason",
    "placed_at",
    "created_at",
    "updated_at",
)
_IMMUTABLE_ORDER_COLUMNS = {"id", "created_at"}


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    if isinstance(value, (PlacementStatus, ResultStatus, SettlementStatus, Side)):
        return value.value
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def new_id() -> str:
    return uuid.uuid4().hex


class Storage:
    def __init__(self, database_path: str) -> None:
        self.path = Path(database_path)
        if database_path != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(database_path)
        self.conn.row_factory = sqlite3.Row
        self._create_schema()

    def _create_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS order_batches (
              id TEXT PRIMARY KEY,
              batch_date TEXT NOT NULL UNIQUE,
              unit_size_cents INTEGER NOT NULL DEFAULT 100,
              total_orders INTEGER NOT NULL DEFAULT 0,
              total_cost_cents INTEGER NOT NULL DEFAULT 0,
              total_potential_payout_cents INTEGER NOT NULL DEFAULT 0,
              is_paused INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS orders (
              id TEXT PRIMARY KEY,
              batch_id TEXT REFERENCES order_batches(id) ON DELETE CASCADE,
              ticker TEXT NOT NULL,
              event_ticker TEXT NOT NULL,
              title TEXT NOT NULL DEFAULT '',
              side TEXT NOT NULL CHECK (side IN ('YES', 'NO')),
              price_cents INTEGER NOT NULL CHECK (price_cents BETWEEN 1 AND 99),
              units INTEGER NOT NULL CHECK (units >= 1),
              cost_cents INTEGER NOT NULL,
              potential_payout_cents INTEGER NOT NULL,
              open_interest INTEGER NOT NULL DEFAULT 0,
              market_close_time TEXT,
              placement_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (placement_status IN ('pending', 'placed', 'confirmed', 'cancelled', 'queue')),
              result_status TEXT NOT NULL DEFAULT 'undecided'
                CHECK (result_status IN ('undecided', 'won', 'lost')),
              settlement_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (settlement_status IN ('pending', 'closed', 'success')),
              exchange_order_id TEXT,
              executed_price_cents INTEGER,
              executed_cost_cents INTEGER,
              actual_payout_cents INTEGER,
              fee_cents INTEGER,
              cancel_reason TEXT,
              placed_at TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_orders_placement ON orders (placement_status);
            CREATE INDEX IF NOT EXISTS idx_orders_event ON orders (event_ticker);

            CREATE TABLE IF NOT EXISTS illiquid_markets (
              ticker TEXT PRIMARY KEY,
              event_ticker TEXT NOT NULL DEFAULT '',
              title TEXT NOT NULL DEFAULT '',
              reason TEXT NOT NULL DEFAULT '',
              original_order_id TEXT,
              created_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # Orders

    def insert_order(self, order: Order) -> Order:
        now = _now_iso()
        if order.created_at is None:
            order.created_at = parse_ts(now)
        order.updated_at = parse_ts(now)
        values = [_to_db(getattr(order, column)) for column in _ORDER_COLUMNS]
        placeholders = ", ".join("?" for _ in _ORDER_COLUMNS)
        self.conn.execute(
            f"INSERT INTO orders ({', '.join(_ORDER_COLUMNS)}) VALUES ({placeholders})",
            values,
        )
        self.conn.commit()
        return order

    def update_order(
        self,
        order_id: str,
        *,
        expected_status: PlacementStatus | None = None,
        **fields: Any,
    ) -> bool:
        """
        Applies `fields` to one order. With `expected_status` the write only lands
        while the row still has that placement status, and False means another run
        already moved it. Without it a missing row raises LookupError.
        """
        if not fields:
            return False
        rejected = sorted(set(fields) - (set(_ORDER_COLUMNS) - _IMMUTABLE_ORDER_COLUMNS))
        if rejected:
            raise ValueError(f"cannot update order columns: {rejected}")
        fields["updated_at"] = _now_iso()
        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [_to_db(value) for value in fields.values()] + [order_id]
        where = "id = ?"
        if expected_status is not None:
            where += " AND placement_status = ?"
            params.append(_to_db(expected_status))
        cursor = self.conn.execute(f"UPDATE orders SET {assignments} WHERE {where}", params)
        self.conn.commit()
        if cursor.rowcount == 0:
            if expected_status is not None:
                return False
            raise LookupError(f"order {order_id} not found")
        return True

    def get_order(self, order_id: str) -> Order | None:
        row = self.conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_order(row) if row else None

    def orders_by_placement_status(self, statuses: Iterable[PlacementStatus]) -> list[Order]:
        values = [PlacementStatus(status).value for status in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        rows = self.conn.execute(
            f"""
            SELECT * FROM orders
            WHERE placement_status IN ({placeholders})
            ORDER BY created_at ASC, rowid ASC
            """,
            values,
        ).fetchall()
        return [self._row_to_order(row) for row in rows]

    def placed_orders(self) -> list[Order]:
        return [
            order
            for order in self.orders_by_placement_status([PlacementStatus.PLACED])
            if order.exchange_order_id
        ]

    def active_orders(self) -> list[Order]:
        return self.orders_by_placement_status(ACTIVE_PLACEMENT_STATUSES)

    def pending_orders_for_day(self, batch_date: date) -> list[Order]:
        rows = self.conn.execute(
            """
            SELECT o.* FROM orders o
            JOIN order_batches b ON b.id = o.batch_id
            WHERE o.placement_status = ? AND b.batch_date = ?
            ORDER BY o.open_interest DESC, o.created_at ASC, o.rowid ASC
            """,
            (PlacementStatus.PENDING.value, batch_date.isoformat()),
        ).fetchall()
        return [self._row_to_order(row) for row in rows]

    def orders_awaiting_result(self) -> list[Order]:
        rows = self.conn.execute(
            """
            SELECT * FROM orders
            WHERE placement_status = ? AND result_status = ? AND settlement_status = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (
                PlacementStatus.CONFIRMED.value,
                ResultStatus.UNDECIDED.value,
                SettlementStatus.PENDING.value,
            ),
        ).fetchall()
        return [self._row_to_order(row) for row in rows]

    # Batches

    def get_batch(self, batch_date: date) -> OrderBatch | None:
        row = self.conn.execute(
            "SELECT * FROM order_batches WHERE batch_date = ?", (batch_date.isoformat(),)
        ).fetchone()
        return self._row_to_batch(row) if row else None

    def get_or_create_batch(self, batch_date: date, unit_size_cents: int) -> OrderBatch:
        now = _now_iso()
        self.conn.execute(
            """
            INSERT INTO order_batches (id, batch_date, unit_size_cents, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(batch_date) DO NOTHING
            """,
            (new_id(), batch_date.isoformat(), int(unit_size_cents), now, now),
        )
        self.conn.commit()
        batch = self.get_batch(batch_date)
        if batch is None:
            raise LookupError(f"batch for {batch_date} vanished after upsert")
        return batch

    def set_batch_paused(self, batch_date: date, paused: bool, unit_size_cents: int = 100) -> OrderBatch:
        batch = self.get_or_create_batch(batch_date, unit_size_cents)
        self.conn.execute(
            "UPDATE order_batches SET is_paused = ?, updated_at = ? WHERE id = ?",
            (1 if paused else 0, _now_iso(), batch.id),
        )
        self.conn.commit()
        batch.is_paused = paused
        return batch

    def refresh_batch_totals(self, batch_id: str) -> None:
        row = self.conn.execute(
            """
            SELECT COUNT(*) AS n,
                   COALESCE(SUM(cost_cents), 0) AS cost,
                   COALESCE(SUM(potential_payout_cents), 0) AS payout
            FROM orders
            WHERE batch_id = ? AND placement_status != ?
            """,
            (batch_id, PlacementStatus.CANCELLED.value),
        ).fetchone()
        self.conn.execute(
            """
            UPDATE order_batches
            SET total_orders = ?, total_cost_cents = ?, total_potential_payout_cents = ?, updated_at = ?
            WHERE id = ?
            """,
            (int(row["n"]), int(row["cost"]), int(row["payout"]), _now_iso(), batch_id),
        )
        self.conn.commit()

    # Illiquid market blacklist

    def upsert_illiquid_market(self, entry: IlliquidMarket) -> None:
        self.conn.execute(
            """
            INSERT INTO illiquid_markets (ticker, event_ticker, title, reason, original_order_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(ticker) DO UPDATE SET
              event_ticker=excluded.event_ticker,
              title=excluded.title,
              reason=excluded.reason,
              original_order_id=excluded.original_order_id
            """,
            (
                entry.ticker,
                entry.event_ticker,
                entry.title,
                entry.reason,
                entry.original_order_id,
                _now_iso(),
            ),
        )
        self.conn.commit()

    def blacklisted_tickers(self) -> set[str]:
        rows = self.conn.execute("SELECT ticker FROM illiquid_markets").fetchall()
        return {str(row["ticker"]) for row in rows}

    def list_illiquid_markets(self) -> list[IlliquidMarket]:
        rows = self.conn.execute(
            "SELECT * FROM illiquid_markets ORDER BY created_at DESC"
        ).fetchall()
        return [
            IlliquidMarket(
                ticker=str(row["ticker"]),
                event_ticker=str(row["event_ticker"]),
                title=str(row["title"]),
                reason=str(row["reason"]),
                original_order_id=row["original_order_id"],
                created_at=parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    def clear_illiquid_markets(self, ticker: str | None = None) -> int:
        if ticker is None:
            cursor = self.conn.execute("DELETE FROM illiquid_markets")
        else:
            cursor = self.conn.execute("DELETE FROM illiquid_markets WHERE ticker = ?", (ticker,))
        self.conn.commit()
        return int(cursor.rowcount)

    # Reporting

    def report(self) -> dict[str, Any]:
        by_placement = {
            str(row["placement_status"]): int(row["n"])
            for row in self.conn.execute(
                "SELECT placement_status, COUNT(*) AS n FROM orders GROUP BY placement_status"
            ).fetchall()
        }
        by_result = {
            str(row["result_status"]): int(row["n"])
            for row in self.conn.execute(
                "SELECT result_status, COUNT(*) AS n FROM orders GROUP BY result_status"
            ).fetchall()
        }
        totals = self.conn.execute(
            """
            SELECT COALESCE(SUM(executed_cost_cents), 0) AS deployed,
                   COALESCE(SUM(actual_payout_cents), 0) AS payout,
                   COALESCE(SUM(fee_cents), 0) AS fees
            FROM orders
            WHERE placement_status = ?
            """,
            (PlacementStatus.CONFIRMED.value,),
        ).fetchone()
        settled = self.conn.execute(
            """
            SELECT COALESCE(SUM(actual_payout_cents - executed_cost_cents - COALESCE(fee_cents, 0)), 0) AS pnl
            FROM orders
            WHERE placement_status = ? AND result_status != ? AND executed_cost_cents IS NOT NULL
            """,
            (PlacementStatus.CONFIRMED.value, ResultStatus.UNDECIDED.value),
        ).fetchone()
        batches = [
            dict(row)
            for row in self.conn.execute(
                "SELECT * FROM order_batches ORDER BY batch_date DESC LIMIT 14"
            ).fetchall()
        ]
        return {
            "placement_status": by_placement,
            "result_status": by_result,
            "confirmed_cost_cents": int(totals["deployed"]),
            "payout_cents": int(totals["payout"]),
            "fee_cents": int(totals["fees"]),
            "settled_pnl_cents": int(settled["pnl"]),
            "blacklisted": len(self.blacklisted_tickers()),
            "recent_batches": batches,
        }

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> Order:
        return Order(
            id=str(row["id"]),
            batch_id=row["batch_id"],
            ticker=str(row["ticker"]),
            event_ticker=str(row["event_ticker"]),
            title=str(row["title"] or ""),
            side=Side.parse(row["side"]),
            price_cents=int(row["price_cents"]),
            units=int(row["units"]),
            cost_cents=int(row["cost_cents"]),
            potential_payout_cents=int(row["potential_payout_cents"]),
            open_interest=int(row["open_interest"] or 0),
            market_close_time=parse_ts(row["market_close_time"]),
            placement_status=PlacementStatus(row["placement_status"]),
            result_status=ResultStatus(row["result_status"]),
            settlement_status=SettlementStatus(row["settlement_status"]),
            exchange_order_id=row["exchange_order_id"],
            executed_price_cents=row["executed_price_cents"],
            executed_cost_cents=row["executed_cost_cents"],
            actual_payout_cents=row["actual_payout_cents"],
            fee_cents=row["fee_cents"],
            cancel_reason=row["cancel_reason"],
            placed_at=parse_ts(row["placed_at"]),
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_batch(row: sqlite3.Row) -> OrderBatch:
        return OrderBatch(
            id=str(row["id"]),
            batch_date=date.fromisoformat(str(row["batch_date"])),
            unit_size_cents=int(row["unit_size_cents"]),
            total_orders=int(row["total_orders"]),
            total_cost_cents=int(row["total_cost_cents"]),
            total_potential_payout_cents=int(row["total_potential_payout_cents"]),
            is_paused=bool(row["is_paused"]),
        )
