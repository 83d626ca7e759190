#!/usr/bin/env python3
"""Stock and rental ledger integrity report for manual restock reconciliation."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine


EXPECTED_TABLES = ["Movies", "Customers", "Rentals", "AuditLogs"]


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _table_exists(engine: Engine, table_name: str) -> bool:
    return inspect(engine).has_table(table_name)


def _count_check(engine: Engine, name: str, sql: str, params: dict | None = None) -> CheckResult:
    count = int(_scalar(engine, sql, params) or 0)
    return CheckResult(name, count == 0, f"count={count}")


def run_integrity_checks(engine: Engine, max_stock: int) -> list[CheckResult]:
    checks: list[CheckResult] = []

    if _table_exists(engine, "Movies"):
        checks.append(
            _count_check(engine, "movies:negative_stock", "SELECT COUNT(*) FROM Movies WHERE NumberInStock < 0")
        )
        checks.append(
            _count_check(
                engine,
                "movies:stock_above_maximum",
                "SELECT COUNT(*) FROM Movies WHERE NumberInStock > :max_stock",
                {"max_stock": max_stock},
            )
        )

    if _table_exists(engine, "Rentals"):
        checks.append(
            _count_check(
                engine,
                "rentals:duplicate_active_pair",
                """
                SELECT COUNT(*)
                FROM (
                    SELECT CustomerID, MovieID
                    FROM Rentals
                    WHERE DateReturned IS NULL
                    GROUP BY CustomerID, MovieID
                    HAVING COUNT(*) > 1
                ) d
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "rentals:returned_without_fee",
                "SELECT COUNT(*) FROM Rentals WHERE DateReturned IS NOT NULL AND RentalFee IS NULL",
            )
        )
        checks.append(
            _count_check(
                engine,
                "rentals:fee_without_return",
                "SELECT COUNT(*) FROM Rentals WHERE DateReturned IS NULL AND RentalFee IS NOT NULL",
            )
        )

    if _table_exists(engine, "Rentals") and _table_exists(engine, "Movies"):
        checks.append(
            _count_check(
                engine,
                "rentals:active_for_missing_movie",
                """
                SELECT COUNT(*)
                FROM Rentals r
                LEFT JOIN Movies m ON m.MovieID = r.MovieID
                WHERE r.DateReturned IS NULL AND m.MovieID IS NULL
                """,
            )
        )

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_stock_summary(engine: Engine) -> None:
    _print_section("Stock vs Active Rentals")
    if not (_table_exists(engine, "Movies") and _table_exists(engine, "Rentals")):
        print("Movies/Rentals: missing")
        return
    rows = _rows(
        engine,
        """
        SELECT m.MovieID, m.Title, m.NumberInStock,
               (SELECT COUNT(*) FROM Rentals r
                WHERE r.MovieID = m.MovieID AND r.DateReturned IS NULL) AS ActiveRentals
        FROM Movies m
        ORDER BY m.MovieID
        """,
    )
    for movie_id, title, in_stock, active in rows:
        print(f"  - movie={movie_id} title={title!r} inStock={in_stock} activeRentals={active}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Video rental stock overview")
    parser.add_argument("--db-url", default=os.environ.get("VIDEO_RENTAL_DB_URL", ""))
    parser.add_argument("--max-stock", type=int, default=int(os.environ.get("CATALOG_MAX_STOCK") or "255"))
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("VIDEO_RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    engine = _get_engine(db_url)
    try:
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    _print_section("Table Existence")
    for table in EXPECTED_TABLES:
        print(f"{table}: {'present' if _table_exists(engine, table) else 'missing'}")

    checks = run_integrity_checks(engine, args.max_stock)
    _print_results("Integrity Checks", checks)
    _print_stock_summary(engine)
    return 0 if all(check.ok for check in checks) else 1


if __name__ == "__main__":
    sys.exit(main())
