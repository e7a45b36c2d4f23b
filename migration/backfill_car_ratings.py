"""
Backfill car rating aggregates
- Recomputes cars.average_rating and cars.review_count from the reviews table
- Repairs cars whose aggregate drifted (e.g. a write that died between the
  review change and the recompute)

Usage:
  python -m migration.backfill_car_ratings --db path/to/drwheels.db [--dry-run]
"""
import argparse
import os
import sqlite3
from contextlib import closing
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple


def has_table(conn: sqlite3.Connection, table: str) -> bool:
    cur = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (table,))
    return cur.fetchone() is not None


def expected_rating(total: int, count: int) -> float:
    if not count:
        return 0.0
    return float((Decimal(total) / Decimal(count)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def backfill(db_path: str, dry_run: bool = False) -> List[Tuple[int, float, int]]:
    """Fix every drifted car and return (car_id, average_rating, review_count) for each one."""
    if db_path == ":memory:":
        raise ValueError("Use a file-backed DB for backfill script")

    if not os.path.exists(db_path):
        raise FileNotFoundError(db_path)

    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("PRAGMA foreign_keys=ON")

        for table in ("cars", "reviews"):
            if not has_table(conn, table):
                raise RuntimeError(f"{table} table missing; cannot backfill")

        rows = conn.execute(
            """
            SELECT c.id, c.average_rating, c.review_count,
                   COUNT(r.id), COALESCE(SUM(r.rating), 0)
            FROM cars c LEFT JOIN reviews r ON r.car_id = c.id
            GROUP BY c.id
            ORDER BY c.id
            """
        ).fetchall()

        fixed = []
        for car_id, stored_avg, stored_count, count, total in rows:
            avg = expected_rating(total, count)
            if stored_count != count or abs((stored_avg or 0) - avg) > 1e-9:
                fixed.append((car_id, avg, count))

        if not dry_run and fixed:
            conn.executemany(
                "UPDATE cars SET average_rating = ?, review_count = ? WHERE id = ?",
                [(avg, count, car_id) for car_id, avg, count in fixed],
            )
            conn.commit()
        return fixed


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to SQLite database file")
    parser.add_argument("--dry-run", action="store_true", help="Report drifted cars without writing")
    args = parser.parse_args()
    fixed = backfill(args.db, dry_run=args.dry_run)
    for car_id, avg, count in fixed:
        print(f"car {car_id}: average_rating={avg} review_count={count}")
    print(f"{len(fixed)} car(s) {'would be ' if args.dry_run else ''}updated")

if __name__ == "__main__":
    main()
