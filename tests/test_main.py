import argparse
import asyncio
import copy
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine

from config import get_settings
from main import Application


def _app(timezone="Africa/Johannesburg") -> Application:
    settings = copy.copy(get_settings())
    settings.timezone = timezone
    settings.secret_key = "test-secret"
    return Application(settings, engine=create_engine("sqlite:///:memory:"))


def test_today_follows_configured_timezone() -> None:
    app = _app()

    assert app.today() == datetime.now(ZoneInfo("Africa/Johannesburg")).date()
    asyncio.run(app.aclose())


def test_period_uses_application_today() -> None:
    app = _app()
    app.storage.save_pay_day(27)
    app.today = lambda: date(2025, 2, 26)
    args = argparse.Namespace(period="pay_period", start=None, end=None)

    period = app.period(args)

    assert period.start == date(2025, 1, 27)
    assert period.end == date(2025, 2, 26)
    asyncio.run(app.aclose())
