"""CLI tool for admin operations.

Usage:
    python -m kimchi_bot.cli init-db
    python -m kimchi_bot.cli add-user <username> [--admin]
    python -m kimchi_bot.cli monitor-once
    python -m kimchi_bot.cli execute <user_id> <symbol> <budget_krw> [--live]
    python -m kimchi_bot.cli serve [--host HOST] [--port PORT]
"""

import asyncio
import json
import sys

from sqlmodel import Session, select

from kimchi_bot.database import engine, create_db_and_tables, seed_reference_data
from kimchi_bot.models.user import User
from kimchi_bot.utils.logging import setup_logging


def init_db():
    """Create tables and seed exchanges, coins, global settings and intensity rows."""
    create_db_and_tables()
    seed_reference_data()
    print("Database initialized.")


def add_user(args: list[str]):
    if not args:
        print("Usage: python -m kimchi_bot.cli add-user <username> [--admin]")
        sys.exit(1)
    username = args[0].strip()
    role = "admin" if "--admin" in args else "user"

    create_db_and_tables()
    with Session(engine) as session:
        existing = session.exec(select(User).where(User.username == username)).first()
        if existing:
            print(f"User '{username}' already exists (id={existing.id}).")
            sys.exit(1)
        user = User(username=username, role=role)
        session.add(user)
        session.commit()
        session.refresh(user)
    print(f"User '{username}' created with id {user.id} (role={role}).")


async def _monitor_once() -> dict:
    from kimchi_bot.engine.monitor import KimchiMonitor
    from kimchi_bot.services.cache import ReadModelCache, close_redis, get_redis

    monitor = KimchiMonitor(ReadModelCache(get_redis()))
    try:
        return await monitor.monitor_all_coins()
    finally:
        await monitor.close()
        await close_redis()


def monitor_once():
    summary = asyncio.run(_monitor_once())
    print(f"FX rate: {summary['fx_rate']:,.2f} ({summary['fx_source']})")
    print(f"Coins: {summary['successful']}/{summary['total_coins']} ok in {summary['total_time_ms']:.0f}ms")
    for p in summary["premiums"]:
        print(f"  {p['symbol']:<6} {p['premium_percent']:+7.3f}%  intensity={p['intensity']}")
    if summary["failed_symbols"]:
        print(f"Failed: {', '.join(summary['failed_symbols'])}")
    for o in summary["opportunities"]:
        print(f"Opportunity: {o['symbol']} {o['premium_percent']:+.3f}% ({o['scope_key']}, intensity {o['intensity']})")


async def _execute(user_id: int, symbol: str, budget: float, dry_run: bool):
    from kimchi_bot.engine.trade_executor import TradeExecutor
    from kimchi_bot.services.cache import close_redis, get_redis

    executor = TradeExecutor(get_redis())
    try:
        return await executor.execute_once(user_id, symbol, budget, dry_run=dry_run)
    finally:
        await executor.close()
        await close_redis()


def execute(args: list[str]):
    positional = [a for a in args if not a.startswith("--")]
    if len(positional) != 3:
        print("Usage: python -m kimchi_bot.cli execute <user_id> <symbol> <budget_krw> [--live]")
        sys.exit(1)
    try:
        user_id, symbol, budget = int(positional[0]), positional[1], float(positional[2])
    except ValueError:
        print("user_id must be an integer and budget_krw a number.")
        sys.exit(1)

    live = "--live" in args
    if live:
        confirm = input(f"Execute a LIVE {symbol.upper()} trade for {budget:,.0f} KRW? [y/N] ")
        if confirm.strip().lower() != "y":
            print("Aborted.")
            sys.exit(1)

    result = asyncio.run(_execute(user_id, symbol, budget, dry_run=not live))
    print(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        sys.exit(2)


def serve(args: list[str]):
    """Run the HTTP API (monitor, executor and Telegram bot start in its lifespan)."""
    import uvicorn

    host, port = "0.0.0.0", 8000
    try:
        if "--host" in args:
            host = args[args.index("--host") + 1]
        if "--port" in args:
            port = int(args[args.index("--port") + 1])
    except (IndexError, ValueError):
        print("Usage: python -m kimchi_bot.cli serve [--host HOST] [--port PORT]")
        sys.exit(1)

    uvicorn.run("kimchi_bot.main:app", host=host, port=port, log_config=None)


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m kimchi_bot.cli <command>")
        print("Commands: init-db, add-user, monitor-once, execute, serve")
        sys.exit(1)

    setup_logging()
    command, args = sys.argv[1], sys.argv[2:]
    if command == "init-db":
        init_db()
    elif command == "add-user":
        add_user(args)
    elif command == "monitor-once":
        create_db_and_tables()
        monitor_once()
    elif command == "execute":
        execute(args)
    elif command == "serve":
        serve(args)
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
