"""
Plain-text financial context for the chat model, the chat call itself, and
rule-based nudges. Nothing here writes to the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy.orm import Session

from auth import describe_http_error
from config import Settings, get_settings
from schemas import ChatMessage
from services import UNCATEGORIZED, MetricsService, TransactionService, cents_to_rands


logger = logging.getLogger(__name__)

NO_DATA_CONTEXT = "No financial data available yet. Please sync your transactions first."
EMPTY_REPLY = "Sorry, I could not generate a response."
RECENT_LIMIT = 20
TREND_MONTHS = 6


class ChatServiceError(RuntimeError):
    pass


def _today(settings: Settings) -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


class ContextBuilder:
    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.today = today or _today(self.settings)
        self.metrics = MetricsService(session)
        self.transactions = TransactionService(session)

    def money(self, cents: int) -> str:
        return f"{self.settings.currency_symbol}{cents_to_rands(cents):.2f}"

    def build(self) -> str:
        total_count = self.transactions.count()
        if total_count == 0:
            return NO_DATA_CONTEXT

        all_time = self.metrics.income_and_spending()
        last_30 = self.metrics.income_and_spending(
            self.today - timedelta(days=30), self.today
        )
        debit_count, debit_total = self.metrics.debit_stats()
        average = debit_total // debit_count if debit_count else 0

        trend = "\n".join(
            f"{row['label']}: {self.money(int(row['spending_cents']))}"
            for row in self.metrics.monthly_spending(self.today, TREND_MONTHS)
        )
        categories = "\n".join(
            f"{row.category_name}: {self.money(row.total_cents)} ({row.count} transactions)"
            for row in self.metrics.category_spending()
        )
        recent = "\n".join(
            f"{txn.transaction_date.isoformat()}: {txn.description} - "
            f"{self.money(txn.amount_cents)} "
            f"({txn.category.name if txn.category else UNCATEGORIZED})"
            for txn in self.transactions.recent_debits(RECENT_LIMIT)
        )

        return f"""# User's Financial Summary

## Overview
- Total Spending (All Time): {self.money(all_time.spending_cents)}
- Monthly Spending (Last 30 Days): {self.money(last_30.spending_cents)}
- Total Income: {self.money(all_time.income_cents)}
- Average Transaction: {self.money(average)}
- Total Transactions: {total_count}

## Monthly Spending Trend (Last {TREND_MONTHS} Months)
{trend or 'No monthly data yet'}

## Spending by Category (All Time)
{categories or 'No transactions yet'}

## Recent Transactions (Last {RECENT_LIMIT})
{recent or 'No transactions yet'}

Use this information to provide personalized financial insights. When answering
questions about spending, use the actual transaction data provided above.
"""


class ChatService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        context_provider: Callable[[], str],
        settings: Optional[Settings] = None,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.context_provider = context_provider
        self.settings = settings or get_settings()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def system_message(self) -> ChatMessage:
        return ChatMessage(
            role="system",
            content=(
                "You are Zebra Finance Assistant, an AI financial advisor helping "
                "users understand their spending habits and make better financial "
                "decisions.\n\nBe friendly, concise, and helpful. When discussing "
                f"money, always use {self.settings.currency_symbol} as the currency."
                f"\n\n{self.context_provider()}"
            ),
        )

    async def send_message(self, messages: Sequence[ChatMessage]) -> str:
        if not self.api_key:
            raise ChatServiceError(
                "OpenAI client not initialized. Please provide an API key."
            )

        payload = {
            "model": self.settings.openai_model,
            "messages": [
                m.model_dump() for m in [self.system_message(), *messages]
            ],
            "temperature": self.settings.openai_temperature,
            "max_tokens": self.settings.openai_max_tokens,
        }
        url = self.settings.openai_base_url.rstrip("/") + "/chat/completions"
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ChatServiceError(
                f"Failed to get response from AI: {describe_http_error(exc)}"
            ) from exc
        except ValueError as exc:
            raise ChatServiceError("Failed to get response from AI: invalid JSON") from exc

        choices = data.get("choices") or []
        content = ""
        if choices:
            content = ((choices[0] or {}).get("message") or {}).get("content") or ""
        return content.strip() or EMPTY_REPLY


@dataclass(frozen=True)
class Nudge:
    id: str
    title: str
    message: str
    category: str
    icon: str


class NudgeService:
    HIGH_DAILY_SPEND_CENTS = 50_000
    TOP_CATEGORY_CENTS = 100_000
    UNCATEGORIZED_THRESHOLD = 5
    AI_MIN_TRANSACTIONS = 10

    def __init__(
        self,
        session: Session,
        chat: Optional[ChatService] = None,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.chat = chat
        self.settings = settings or get_settings()
        self.today = today or _today(self.settings)
        self.metrics = MetricsService(session)
        self.transactions = TransactionService(session)

    def money(self, cents: int) -> str:
        return f"{self.settings.currency_symbol}{cents_to_rands(cents):.2f}"

    async def generate(self) -> list[Nudge]:
        start = self.today - timedelta(days=30)
        recent = self.transactions.between(start, self.today)
        if not recent:
            return [
                Nudge(
                    id="no-data",
                    title="Sync Your Transactions",
                    message="Sync your transactions to get personalized financial insights!",
                    category="insight",
                    icon="📊",
                )
            ]

        nudges: list[Nudge] = []
        spending = self.metrics.income_and_spending(start, self.today).spending_cents
        daily_average = spending // 30

        uncategorized = self.metrics.uncategorized_count(start, self.today)
        if uncategorized > self.UNCATEGORIZED_THRESHOLD:
            nudges.append(
                Nudge(
                    id="uncategorized",
                    title="Categorize Your Transactions",
                    message=(
                        f"You have {uncategorized} uncategorized transactions. "
                        "Categorizing helps track spending better!"
                    ),
                    category="insight",
                    icon="🏷️",
                )
            )

        if daily_average > self.HIGH_DAILY_SPEND_CENTS:
            nudges.append(
                Nudge(
                    id="high-spending",
                    title="High Daily Spending",
                    message=(
                        f"Your average daily spending is {self.money(daily_average)}. "
                        "Consider reviewing your expenses."
                    ),
                    category="warning",
                    icon="⚠️",
                )
            )

        by_category = [
            row
            for row in self.metrics.category_spending(start, self.today)
            if row.category_id is not None
        ]
        if by_category and by_category[0].total_cents > self.TOP_CATEGORY_CENTS:
            top = by_category[0]
            nudges.append(
                Nudge(
                    id="top-category",
                    title=f"{top.category_name} Spending",
                    message=(
                        f"You've spent {self.money(top.total_cents)} on "
                        f"{top.category_name} in the last 30 days."
                    ),
                    category="insight",
                    icon="💰",
                )
            )

        if (
            self.chat is not None
            and self.chat.is_configured()
            and len(recent) > self.AI_MIN_TRANSACTIONS
        ):
            tip = await self._ai_tip(spending, by_category[:3])
            if tip:
                nudges.append(tip)

        if not nudges:
            nudges.append(
                Nudge(
                    id="positive",
                    title="Great Financial Health!",
                    message="Your spending looks balanced. Keep up the good work!",
                    category="insight",
                    icon="✨",
                )
            )
        return nudges

    async def _ai_tip(self, spending_cents: int, top_categories) -> Optional[Nudge]:
        breakdown = ", ".join(
            f"{row.category_name}: {self.money(row.total_cents)}" for row in top_categories
        )
        prompt = (
            "Based on this spending data for the last 30 days:\n"
            f"- Total spending: {self.money(spending_cents)}\n"
            f"- Top categories: {breakdown or 'none'}\n\n"
            "Generate a single, concise (max 2 sentences) actionable financial tip. "
            "Do not include any greetings or sign-offs, just the tip itself."
        )
        try:
            reply = await self.chat.send_message([ChatMessage(role="user", content=prompt)])
        except ChatServiceError:
            logger.exception("nudge_ai_failed")
            return None
        return Nudge(
            id="ai-insight",
            title="AI Financial Tip",
            message=reply,
            category="insight",
            icon="🤖",
        )
