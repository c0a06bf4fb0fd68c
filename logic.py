# logic.py
# Amortization arithmetic and schedule generation. Money is always an int
# amount of rial; intermediate steps run on Decimal and round half-up.
import logging
from decimal import Decimal, ROUND_HALF_UP

import config
from calendar_helper import add_months
from errors import InvalidAmountError, InvalidTermsError
from models import Contract, Installment, ContractStatus, InstallmentStatus

logger = logging.getLogger(__name__)

MAX_INSTALLMENTS = 60
HUNDRED = Decimal(100)
TWELVE = Decimal(12)


def _dec(value):
    # str() keeps a float rate such as 18.5 exact instead of its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value):
    return int(_dec(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def simple_interest(principal, annual_rate, months):
    """
    principal: int (rial)
    annual_rate: percent (e.g. 18 or 18.5)
    months: contract length in months
    return: principal * rate/100 * months/12, rounded half-up; 0 if any input <= 0
    """
    if principal <= 0 or annual_rate <= 0 or months <= 0:
        return 0
    return round_half_up(_dec(principal) * _dec(annual_rate) / HUNDRED * _dec(months) / TWELVE)


def total_amount(principal, annual_rate, months):
    return principal + simple_interest(principal, annual_rate, months)


def _divide(amount, count):
    if count <= 0:
        return amount
    return round_half_up(_dec(amount) / _dec(count))


def installment_amount(total, count):
    return _divide(total, count)


def principal_portion(principal, count):
    # flat share per installment; the shares are not forced to add up to principal
    return _divide(principal, count)


def interest_portion(interest, count):
    return _divide(interest, count)


def penalty(remaining, daily_rate, delay_days):
    """remaining * daily_rate/100 * delay_days, rounded half-up; 0 if any input <= 0"""
    if remaining <= 0 or daily_rate <= 0 or delay_days <= 0:
        return 0
    return round_half_up(_dec(remaining) * _dec(daily_rate) / HUNDRED * _dec(delay_days))


def delay_days(due_date, payment_date):
    if due_date is None or payment_date is None or payment_date <= due_date:
        return 0
    return (payment_date - due_date).days


def early_settlement(remaining_principal, remaining_interest, discount_rate):
    """
    Payoff amount when the remaining interest is discounted by discount_rate
    percent. The discount is clamped to [0, 100].
    """
    if remaining_principal < 0 or remaining_interest < 0:
        return 0
    discount = min(max(_dec(discount_rate), Decimal(0)), HUNDRED)
    discounted_interest = _dec(remaining_interest) * (1 - discount / HUNDRED)
    return round_half_up(_dec(remaining_principal) + discounted_interest)


def progress_percentage(paid, total):
    if total <= 0:
        return 0
    return min(100, paid * 100 // total)


def rial_to_toman(rial):
    return rial // 10


def toman_to_rial(toman):
    return toman * 10


def format_currency(n):
    return f"{n:,}"


def format_rial(n):
    return f"{n:,} ریال"


def format_toman(n):
    return f"{rial_to_toman(n):,} تومان"


def next_contract_number(last_number, solar_year):
    """
    last_number: the greatest contract number issued so far (or None)
    solar_year: current Jalali year
    return: "C" + year + 4-digit sequence; the sequence restarts at 1 when the
    year prefix changes.
    """
    prefix = f"C{solar_year:04d}"
    sequence = 1
    if last_number and last_number.startswith(prefix):
        try:
            sequence = int(last_number[len(prefix):]) + 1
        except ValueError:
            sequence = 1
    return f"{prefix}{sequence:04d}"


def validate_terms(principal, annual_rate, count, penalty_rate):
    if principal is None or principal <= 0:
        raise InvalidAmountError("Principal must be positive", {'principal': principal})
    if annual_rate is None or annual_rate < 0 or annual_rate > 100:
        raise InvalidTermsError("Annual rate must be between 0 and 100", {'annual_rate': annual_rate})
    if count is None or count < 1 or count > MAX_INSTALLMENTS:
        raise InvalidTermsError(
            f"Installment count must be between 1 and {MAX_INSTALLMENTS}", {'count': count}
        )
    if penalty_rate is not None and penalty_rate < 0:
        raise InvalidTermsError("Penalty rate cannot be negative", {'penalty_rate': penalty_rate})


def calculate_amortization(principal, annual_rate, term_months, start_date):
    """
    principal: int (rial)
    annual_rate: percent (e.g., 18.5)
    term_months: int
    start_date: datetime.date (Gregorian); the first installment falls one
    Jalali month later
    returns: list of dicts for each installment (due_date is datetime.date)
    """
    if term_months <= 0:
        return []

    interest = simple_interest(principal, annual_rate, term_months)
    total = principal + interest
    payment = installment_amount(total, term_months)
    principal_part = principal_portion(principal, term_months)
    interest_part = interest_portion(interest, term_months)
    # may be negative when half-up rounding pushed the flat payment up
    remainder = total - payment * term_months

    schedule = []
    due_date = start_date
    for i in range(1, term_months + 1):
        due_date = add_months(due_date, 1)
        payment_amount = payment
        # last installment absorbs the rounding remainder
        if i == term_months:
            payment_amount += remainder

        schedule.append({
            "installment": i,
            "due_date": due_date,
            "payment": payment_amount,
            "principal": principal_part,
            "interest": interest_part,
        })
    return schedule


def generate_schedule(customer_id, principal, annual_rate, count, start_date,
                      penalty_rate=None, description=None, contract_number=None):
    """
    Build a new ACTIVE contract together with its installments. Nothing is
    persisted here; the caller adds the returned Contract to a session.
    """
    validate_terms(principal, annual_rate, count, penalty_rate)
    if penalty_rate is None:
        penalty_rate = config.DEFAULT_PENALTY_RATE

    interest = simple_interest(principal, annual_rate, count)
    total = principal + interest
    contract = Contract(
        contract_number=contract_number,
        customer_id=customer_id,
        principal_amount=principal,
        interest_rate=annual_rate,
        interest_amount=interest,
        total_amount=total,
        installment_count=count,
        installment_amount=installment_amount(total, count),
        start_date=start_date,
        penalty_rate=penalty_rate,
        status=ContractStatus.ACTIVE,
        description=description,
    )

    for row in calculate_amortization(principal, annual_rate, count, start_date):
        contract.installments.append(Installment(
            installment_number=row["installment"],
            due_date=row["due_date"],
            amount=row["payment"],
            principal_portion=row["principal"],
            interest_portion=row["interest"],
            paid_amount=0,
            penalty_amount=0,
            status=InstallmentStatus.PENDING,
        ))
    contract.end_date = contract.installments[-1].due_date

    logger.debug(
        "Schedule for %s: total=%s, %s x %s, last=%s",
        contract_number, total, count, contract.installment_amount, contract.installments[-1].amount,
    )
    return contract
