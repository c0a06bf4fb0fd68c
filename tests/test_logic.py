"""Tests for amortization arithmetic and schedule generation."""

import pytest

import config
import logic
from calendar_helper import to_civil, to_solar
from errors import InvalidAmountError, InvalidTermsError
from models import ContractStatus, InstallmentStatus


class TestSimpleInterest:
    def test_one_year(self) -> None:
        assert logic.simple_interest(12_000_000, 18, 12) == 2_160_000

    def test_partial_year(self) -> None:
        assert logic.simple_interest(10_000_000, 15, 7) == 875_000

    def test_fractional_rate(self) -> None:
        assert logic.simple_interest(10_000_000, 18.5, 12) == 1_850_000

    def test_rounds_half_up(self) -> None:
        # 6 * 100% * 1/12 = 0.5
        assert logic.simple_interest(6, 100, 1) == 1

    @pytest.mark.parametrize("args", [(0, 18, 12), (-5, 18, 12), (1000, 0, 12), (1000, -1, 12), (1000, 18, 0)])
    def test_zero_for_non_positive_input(self, args) -> None:
        assert logic.simple_interest(*args) == 0

    def test_total_amount(self) -> None:
        assert logic.total_amount(12_000_000, 18, 12) == 14_160_000


class TestDivision:
    def test_installment_amount(self) -> None:
        assert logic.installment_amount(14_160_000, 12) == 1_180_000
        assert logic.installment_amount(10_875_000, 7) == 1_553_571

    def test_installment_amount_half_up(self) -> None:
        assert logic.installment_amount(5, 2) == 3
        assert logic.installment_amount(7, 2) == 4

    def test_installment_amount_without_count(self) -> None:
        assert logic.installment_amount(100, 0) == 100
        assert logic.installment_amount(100, -3) == 100

    def test_portions(self) -> None:
        assert logic.principal_portion(10_000_000, 7) == 1_428_571
        assert logic.interest_portion(875_000, 7) == 125_000
        assert logic.principal_portion(10, 0) == 10


class TestPenalty:
    def test_basic(self) -> None:
        assert logic.penalty(1_000_000, 0.5, 10) == 50_000

    def test_rounds_half_up(self) -> None:
        assert logic.penalty(101, 0.5, 1) == 1
        assert logic.penalty(99, 0.5, 1) == 0

    @pytest.mark.parametrize("days", [0, -1, -30])
    def test_zero_when_not_late(self, days: int) -> None:
        assert logic.penalty(1_000_000, 0.5, days) == 0

    def test_zero_for_non_positive_remaining_or_rate(self) -> None:
        assert logic.penalty(0, 0.5, 10) == 0
        assert logic.penalty(1_000_000, 0, 10) == 0

    def test_delay_days(self) -> None:
        due = to_civil(1403, 2, 1)
        assert logic.delay_days(due, to_civil(1403, 2, 11)) == 10
        assert logic.delay_days(due, due) == 0
        assert logic.delay_days(due, to_civil(1403, 1, 20)) == 0
        assert logic.delay_days(None, due) == 0


class TestEarlySettlement:
    def test_discount(self) -> None:
        assert logic.early_settlement(1000, 500, 10) == 1450

    def test_discount_is_clamped(self) -> None:
        assert logic.early_settlement(1000, 500, 150) == 1000
        assert logic.early_settlement(1000, 500, -5) == 1500

    def test_rounds_half_up(self) -> None:
        assert logic.early_settlement(0, 3, 50) == 2

    def test_negative_remaining(self) -> None:
        assert logic.early_settlement(-1, 500, 10) == 0


class TestDisplayHelpers:
    def test_progress_percentage(self) -> None:
        assert logic.progress_percentage(50, 200) == 25
        assert logic.progress_percentage(300, 200) == 100
        assert logic.progress_percentage(1, 0) == 0

    def test_toman(self) -> None:
        assert logic.rial_to_toman(1_500_005) == 150_000
        assert logic.toman_to_rial(150_000) == 1_500_000
        assert logic.format_toman(1_500_000) == "150,000 تومان"

    def test_format_currency(self) -> None:
        assert logic.format_currency(1_500_000) == "1,500,000"
        assert logic.format_rial(1_500_000) == "1,500,000 ریال"


class TestContractNumber:
    def test_first_number(self) -> None:
        assert logic.next_contract_number(None, 1403) == "C14030001"

    def test_increments_within_year(self) -> None:
        assert logic.next_contract_number("C14030009", 1403) == "C14030010"

    def test_resets_on_new_year(self) -> None:
        assert logic.next_contract_number("C14030057", 1404) == "C14040001"

    def test_unparseable_sequence(self) -> None:
        assert logic.next_contract_number("C1403abcd", 1403) == "C14030001"


class TestCalculateAmortization:
    def test_rows(self, start_date) -> None:
        rows = logic.calculate_amortization(10_000_000, 15, 7, start_date)
        assert [r["installment"] for r in rows] == list(range(1, 8))
        assert [r["payment"] for r in rows] == [1_553_571] * 6 + [1_553_574]
        assert all(r["principal"] == 1_428_571 for r in rows)
        assert all(r["interest"] == 125_000 for r in rows)

    def test_empty_for_non_positive_term(self, start_date) -> None:
        assert logic.calculate_amortization(1000, 10, 0, start_date) == []


class TestGenerateSchedule:
    def test_even_split(self, start_date) -> None:
        contract = logic.generate_schedule(1, 12_000_000, 18, 12, start_date)
        assert contract.interest_amount == 2_160_000
        assert contract.total_amount == 14_160_000
        assert contract.installment_amount == 1_180_000
        assert [i.amount for i in contract.installments] == [1_180_000] * 12

    def test_remainder_goes_to_last_installment(self, start_date) -> None:
        contract = logic.generate_schedule(1, 10_000_000, 15, 7, start_date)
        amounts = [i.amount for i in contract.installments]
        assert amounts[:-1] == [1_553_571] * 6
        assert amounts[-1] == 1_553_574
        assert sum(amounts) == contract.total_amount == 10_875_000

    def test_negative_remainder(self, start_date) -> None:
        contract = logic.generate_schedule(1, 101, 0, 3, start_date)
        assert [i.amount for i in contract.installments] == [34, 34, 33]
        assert contract.interest_amount == 0

    @pytest.mark.parametrize(
        "principal,rate,count",
        [(1, 0, 1), (999_999, 23.7, 60), (5_000_000, 100, 13), (7_777_777, 0.5, 11), (1_000_003, 17, 9)],
    )
    def test_exact_sum(self, start_date, principal, rate, count) -> None:
        contract = logic.generate_schedule(1, principal, rate, count, start_date)
        total = sum(i.amount for i in contract.installments)
        assert total == principal + logic.simple_interest(principal, rate, count)
        assert contract.total_amount == contract.principal_amount + contract.interest_amount

    def test_due_dates(self, start_date) -> None:
        contract = logic.generate_schedule(1, 12_000_000, 18, 12, start_date)
        dates = [i.due_date for i in contract.installments]
        assert all(a < b for a, b in zip(dates, dates[1:]))
        assert to_solar(dates[0]) == (1403, 2, 1)
        assert to_solar(dates[-1]) == (1404, 1, 1)
        assert contract.end_date == dates[-1]

    def test_due_dates_from_month_end(self) -> None:
        contract = logic.generate_schedule(1, 1_000_000, 10, 8, to_civil(1403, 5, 31))
        solar = [to_solar(i.due_date) for i in contract.installments]
        # Mehr has 30 days, and the clamped day carries forward
        assert solar[0] == (1403, 6, 31)
        assert solar[1] == (1403, 7, 30)
        assert solar[-1] == (1404, 1, 30)

    def test_initial_state(self, start_date) -> None:
        contract = logic.generate_schedule(7, 1_000_000, 10, 3, start_date, description="طلا")
        assert contract.status == ContractStatus.ACTIVE
        assert contract.customer_id == 7
        assert contract.description == "طلا"
        assert contract.penalty_rate == config.DEFAULT_PENALTY_RATE
        for n, inst in enumerate(contract.installments, start=1):
            assert inst.installment_number == n
            assert inst.status == InstallmentStatus.PENDING
            assert inst.paid_amount == 0
            assert inst.penalty_amount == 0

    def test_explicit_penalty_rate(self, start_date) -> None:
        contract = logic.generate_schedule(1, 1_000_000, 10, 3, start_date, penalty_rate=0)
        assert contract.penalty_rate == 0

    def test_rejects_non_positive_principal(self, start_date) -> None:
        with pytest.raises(InvalidAmountError):
            logic.generate_schedule(1, 0, 10, 3, start_date)

    @pytest.mark.parametrize(
        "rate,count,penalty_rate",
        [(-1, 3, None), (100.5, 3, None), (10, 0, None), (10, 61, None), (10, 3, -0.1)],
    )
    def test_rejects_bad_terms(self, start_date, rate, count, penalty_rate) -> None:
        with pytest.raises(InvalidTermsError):
            logic.generate_schedule(1, 1_000_000, rate, count, start_date, penalty_rate=penalty_rate)
