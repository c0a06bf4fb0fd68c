"""Tests for the bot's input parsing and message rendering."""

import asyncio
import datetime
from types import SimpleNamespace

import pytest

import ledger
import main
import stats
from models import PaymentMethod
from stats import PortfolioStats


class TestParsing:
    def test_parse_amount(self) -> None:
        assert main.parse_amount("1,500,000") == 1_500_000
        assert main.parse_amount(" 2500 ") == 2500
        assert main.parse_amount("150,000 تومان") == 1_500_000

    def test_parse_amount_rejects_text(self) -> None:
        with pytest.raises(ValueError):
            main.parse_amount("abc")

    def test_parse_method(self) -> None:
        assert main.parse_method("card") == PaymentMethod.CARD
        assert main.parse_method("CHEQUE") == PaymentMethod.CHEQUE
        assert main.parse_method(PaymentMethod.TRANSFER.label) == PaymentMethod.TRANSFER
        assert main.parse_method(None) == PaymentMethod.CASH

    def test_parse_method_unknown(self) -> None:
        with pytest.raises(ValueError):
            main.parse_method("bogus")


class TestRendering:
    def test_empty_dashboard(self) -> None:
        text = main.render_dashboard(PortfolioStats(today_solar="1403/01/01"))
        assert "1403/01/01" in text
        assert "0%" in text

    def test_contract(self, contract, start_date) -> None:
        text = main.render_contract(contract, start_date)
        assert "C14030001" in text
        assert "14,160,000" in text
        assert text.count("قسط ") >= 12

    def test_late_installment_is_marked(self, contract) -> None:
        inst = contract.installments[0]
        assert "⚠️" in main.render_installment_line(inst, inst.due_date + datetime.timedelta(days=1))
        assert "⚠️" not in main.render_installment_line(inst, inst.due_date)

    def test_contract_markup_lists_open_installments(self, contract) -> None:
        markup = main.contract_markup(contract)
        rows = markup.inline_keyboard
        assert rows[-1][0].callback_data == "contracts|list"
        assert rows[-2][0].callback_data.startswith("contract|cancel|")
        assert len(rows) == 6 + 2

    def test_contract_shows_remaining(self, contract, start_date) -> None:
        inst = contract.installments[0]
        ledger.apply_payment(contract, inst, 180_000, inst.due_date)
        assert "13,980,000 ریال" in main.render_contract(contract, start_date)

    def test_paid_installment_shows_payment_time(self, contract) -> None:
        inst = contract.installments[0]
        paid_at = datetime.datetime.combine(inst.due_date, datetime.time(9, 5))
        ledger.quick_settle(contract, inst, inst.due_date, paid_at=paid_at)
        assert "[1403/02/01 - 09:05]" in main.render_installment_line(inst, inst.due_date)

    def test_method_breakdown(self) -> None:
        text = main.render_method_breakdown({PaymentMethod.CARD: (2, 2_360_000)})
        assert PaymentMethod.CARD.label in text
        assert "2,360,000 ریال" in text
        assert "پرداخت نشده" in main.render_method_breakdown({})

    def test_monthly_dues(self, contract) -> None:
        text = main.render_monthly_dues(stats.monthly_due_summary(contract.installments, 1403), 1403)
        assert "اردیبهشت: 1,180,000 ریال" in text
        assert "فروردین" not in text


class _Query:
    def __init__(self, data):
        self.data = data
        self.answered = False
        self.edits = []

    async def answer(self):
        self.answered = True

    async def edit_message_text(self, text, reply_markup=None):
        self.edits.append(text)


class TestCalendarCallback:
    def test_header_tap_is_answered(self) -> None:
        query = _Query("noop")
        update = SimpleNamespace(callback_query=query)
        assert asyncio.run(main.calendar_callback(update, SimpleNamespace(user_data={}))) == main.NEW_CALENDAR
        assert query.answered
        assert query.edits == []

    def test_cancel_ends_conversation(self) -> None:
        query = _Query("cal|cancel")
        update = SimpleNamespace(callback_query=query)
        result = asyncio.run(main.calendar_callback(update, SimpleNamespace(user_data={})))
        assert result == main.ConversationHandler.END
        assert query.answered
