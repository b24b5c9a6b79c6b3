from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from datetime import date, datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy.engine import Engine

from auth import InvestecAuth
from bank_api import InvestecClient
from config import Settings, get_settings
from database import build_engine, build_session_factory, session_scope
from insights import ChatService, ContextBuilder, NudgeService
from periods import Period, resolve_period
from scheduler import SyncScheduler
from schemas import CategoryIn, ChatMessage, CredentialsIn
from secure_storage import SecureStorage
from services import (
    CategoryService,
    MetricsService,
    TransactionService,
    cents_to_rands,
    init_store,
)
from sync import SyncOrchestrator


logger = logging.getLogger(__name__)


class Application:
    """Owns every long-lived collaborator; nothing here is a module global."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        engine: Optional[Engine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = engine or build_engine(self.settings.database_url)
        self.session_factory = build_session_factory(self.engine)
        with session_scope(self.session_factory) as session:
            init_store(session)

        self.http = http_client or httpx.AsyncClient(
            timeout=self.settings.http_timeout_secs
        )
        self.storage = SecureStorage(self.session_factory, self.settings)
        self.auth = InvestecAuth(self.storage, self.http, self.settings)
        self.bank = InvestecClient(self.auth, self.http, self.settings)
        self.sync = SyncOrchestrator(
            self.bank, self.session_factory, self.storage, self.settings
        )
        self.chat = ChatService(
            self.http,
            self.storage.get_openai_key(),
            self.financial_context,
            self.settings,
        )

    def financial_context(self) -> str:
        with self.session_factory() as session:
            return ContextBuilder(session, self.settings).build()

    def today(self) -> date:
        return datetime.now(ZoneInfo(self.settings.timezone)).date()

    def period(self, args: argparse.Namespace) -> Period:
        return resolve_period(
            args.period,
            args.start,
            args.end,
            pay_day=self.storage.get_pay_day(),
            today=self.today(),
        )

    async def aclose(self) -> None:
        await self.http.aclose()
        self.engine.dispose()


def _money(app: Application, cents: int) -> str:
    return f"{app.settings.currency_symbol}{cents_to_rands(cents):,.2f}"


def _print_transactions(app: Application, transactions) -> None:
    for txn in transactions:
        sign = "-" if (txn.type or "").lower() == "debit" else "+"
        category = txn.category.name if txn.category else "Uncategorized"
        print(
            f"{txn.id:>6}  {txn.transaction_date.isoformat()}  "
            f"{sign}{_money(app, txn.amount_cents):>14}  {category:<16} {txn.description}"
        )


async def cmd_login(app: Application, args: argparse.Namespace) -> int:
    credentials = CredentialsIn(
        client_id=args.client_id or input("Client ID: "),
        client_secret=args.client_secret or getpass.getpass("Client secret: "),
        api_key=args.api_key or getpass.getpass("API key: "),
    )
    await app.auth.login(credentials)
    print("Logged in.")
    return 0


async def cmd_logout(app: Application, args: argparse.Namespace) -> int:
    app.auth.logout()
    print("Logged out.")
    return 0


async def cmd_accounts(app: Application, args: argparse.Namespace) -> int:
    for account in await app.bank.get_accounts():
        print(f"{account.account_id}  {account.account_number}  {account.account_name}")
    return 0


async def cmd_balance(app: Application, args: argparse.Namespace) -> int:
    balance = await app.bank.get_account_balance(args.account_id)
    print(
        f"{balance.account_id}: current {balance.current_balance:,.2f} "
        f"available {balance.available_balance:,.2f} {balance.currency}"
    )
    return 0


async def cmd_sync(app: Application, args: argparse.Namespace) -> int:
    if args.start or args.end:
        outcome = await app.sync.sync(args.start, args.end)
    else:
        outcome = await app.sync.sync_recent()
    if not outcome.success:
        print(f"Sync failed: {outcome.error}", file=sys.stderr)
        return 1
    print(
        f"Synced {outcome.new_transactions} transactions "
        f"({outcome.total_transactions} stored, {outcome.invalid_transactions} skipped)."
    )
    return 0


async def cmd_transactions(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        service = TransactionService(session)
        if args.category:
            category = CategoryService(session).find_by_name(args.category)
            rows = service.by_category(category.id)
        else:
            rows = service.list(limit=args.limit, offset=args.offset)
        _print_transactions(app, rows)
    return 0


async def cmd_search(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        _print_transactions(app, TransactionService(session).search(args.term))
    return 0


async def cmd_show(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        txn = TransactionService(session).get(args.transaction_id)
        if txn is None:
            print("Transaction not found", file=sys.stderr)
            return 1
        print(f"Description:  {txn.description}")
        print(f"Date:         {txn.transaction_date.isoformat()}")
        print(f"Amount:       {_money(app, txn.amount_cents)} ({txn.type})")
        print(f"Type:         {txn.transaction_type}")
        print(f"Status:       {txn.status}")
        print(f"Account:      {txn.account_id}")
        if txn.card_number:
            print(f"Card:         {txn.card_number}")
        print(f"Balance:      {_money(app, txn.running_balance_cents)}")
        if txn.category:
            print(f"Category:     {txn.category.name} ({txn.category.color})")
        else:
            print("Category:     Uncategorized")
    return 0


async def cmd_categories(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        for category in CategoryService(session).list_all():
            print(f"{category.id:>4}  {category.icon or ' '}  {category.name:<20} {category.color}")
    return 0


async def cmd_category_add(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        category = CategoryService(session).create(
            CategoryIn(name=args.name, color=args.color, icon=args.icon)
        )
        print(f"Created category {category.name} ({category.id}).")
    return 0


async def cmd_category_delete(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        service = CategoryService(session)
        category = service.find_by_name(args.name)
        name = category.name
        service.delete(category.id)
        print(f"Deleted category {name}.")
    return 0


async def cmd_categorize(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        category_id = None
        if args.category:
            category_id = CategoryService(session).find_by_name(args.category).id
        TransactionService(session).set_category(args.transaction_id, category_id)
    print("Updated.")
    return 0


async def cmd_totals(app: Application, args: argparse.Namespace) -> int:
    period = app.period(args)
    with app.session_factory() as session:
        rows = MetricsService(session).category_totals(period.start, period.end)
    print(f"Period: {period.start or 'beginning'} to {period.end}")
    for row in rows:
        print(f"{row.category_name:<20} {_money(app, row.total_cents):>14}  ({row.count})")
    return 0


async def cmd_summary(app: Application, args: argparse.Namespace) -> int:
    period = app.period(args)
    with app.session_factory() as session:
        totals = MetricsService(session).income_and_spending(period.start, period.end)
    print(f"Period:   {period.start or 'beginning'} to {period.end}")
    print(f"Income:   {_money(app, totals.income_cents)}")
    print(f"Spending: {_money(app, totals.spending_cents)}")
    print(f"Net:      {_money(app, totals.net_cents)}")
    last_sync = app.sync.last_sync_time()
    if last_sync:
        print(f"Last sync: {last_sync.isoformat(timespec='seconds')}")
    return 0


async def cmd_context(app: Application, args: argparse.Namespace) -> int:
    print(app.financial_context())
    return 0


async def cmd_chat(app: Application, args: argparse.Namespace) -> int:
    reply = await app.chat.send_message([ChatMessage(role="user", content=args.message)])
    print(reply)
    return 0


async def cmd_nudges(app: Application, args: argparse.Namespace) -> int:
    with app.session_factory() as session:
        nudges = await NudgeService(session, app.chat, app.settings).generate()
    for nudge in nudges:
        print(f"{nudge.icon} {nudge.title}: {nudge.message}")
    return 0


async def cmd_openai_key(app: Application, args: argparse.Namespace) -> int:
    key = args.key or getpass.getpass("OpenAI API key: ")
    app.storage.save_openai_key(key)
    print("Saved.")
    return 0


async def cmd_pay_day(app: Application, args: argparse.Namespace) -> int:
    if args.day is not None:
        app.storage.save_pay_day(args.day)
    pay_day = app.storage.get_pay_day()
    window = resolve_period("pay_period", pay_day=pay_day, today=app.today())
    print(f"Pay day: {pay_day} (current period starts {window.start.isoformat()})")
    return 0


async def cmd_clear(app: Application, args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to clear transactions without --yes", file=sys.stderr)
        return 1
    with app.session_factory() as session:
        removed = TransactionService(session).clear_all()
    print(f"Removed {removed} transactions.")
    return 0


async def cmd_watch(app: Application, args: argparse.Namespace) -> int:
    scheduler = SyncScheduler(app.sync, app.settings)
    outcome = await app.sync.sync_recent()
    logger.info(f"watch_initial_sync: success={outcome.success} error={outcome.error}")
    if not scheduler.start():
        return 0
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        scheduler.stop()


def _add_period_args(parser: argparse.ArgumentParser, default: str) -> None:
    parser.add_argument(
        "--period",
        default=default,
        choices=["all", "pay_period", "this_month", "last_month", "last_30_days", "custom"],
    )
    parser.add_argument("--start", help="YYYY-MM-DD (custom period)")
    parser.add_argument("--end", help="YYYY-MM-DD (custom period)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zebra", description="Investec transaction sync")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="store API credentials")
    p.add_argument("--client-id")
    p.add_argument("--client-secret")
    p.add_argument("--api-key")
    p.set_defaults(handler=cmd_login)

    sub.add_parser("logout").set_defaults(handler=cmd_logout)
    sub.add_parser("accounts").set_defaults(handler=cmd_accounts)

    p = sub.add_parser("balance")
    p.add_argument("account_id")
    p.set_defaults(handler=cmd_balance)

    p = sub.add_parser("sync", help="pull transactions (default: recent window)")
    p.add_argument("--start", type=date.fromisoformat)
    p.add_argument("--end", type=date.fromisoformat)
    p.set_defaults(handler=cmd_sync)

    p = sub.add_parser("transactions")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--category")
    p.set_defaults(handler=cmd_transactions)

    p = sub.add_parser("search")
    p.add_argument("term")
    p.set_defaults(handler=cmd_search)

    p = sub.add_parser("show")
    p.add_argument("transaction_id", type=int)
    p.set_defaults(handler=cmd_show)

    sub.add_parser("categories").set_defaults(handler=cmd_categories)

    p = sub.add_parser("category-add")
    p.add_argument("name")
    p.add_argument("--color", default="#607D8B")
    p.add_argument("--icon")
    p.set_defaults(handler=cmd_category_add)

    p = sub.add_parser("category-delete")
    p.add_argument("name")
    p.set_defaults(handler=cmd_category_delete)

    p = sub.add_parser("categorize")
    p.add_argument("transaction_id", type=int)
    p.add_argument("category", nargs="?", help="omit to clear the category")
    p.set_defaults(handler=cmd_categorize)

    p = sub.add_parser("totals", help="signed totals per category")
    _add_period_args(p, "pay_period")
    p.set_defaults(handler=cmd_totals)

    p = sub.add_parser("summary", help="income vs spending")
    _add_period_args(p, "pay_period")
    p.set_defaults(handler=cmd_summary)

    sub.add_parser("context").set_defaults(handler=cmd_context)

    p = sub.add_parser("chat")
    p.add_argument("message")
    p.set_defaults(handler=cmd_chat)

    sub.add_parser("nudges").set_defaults(handler=cmd_nudges)

    p = sub.add_parser("openai-key")
    p.add_argument("key", nargs="?")
    p.set_defaults(handler=cmd_openai_key)

    p = sub.add_parser("pay-day")
    p.add_argument("day", nargs="?", type=int)
    p.set_defaults(handler=cmd_pay_day)

    p = sub.add_parser("clear", help="delete every stored transaction")
    p.add_argument("--yes", action="store_true")
    p.set_defaults(handler=cmd_clear)

    sub.add_parser("watch", help="sync now and then on the auto-sync interval").set_defaults(
        handler=cmd_watch
    )
    return parser


async def run(args: argparse.Namespace, settings: Optional[Settings] = None) -> int:
    app = Application(settings)
    try:
        return await args.handler(app, args)
    except (ValueError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await app.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
