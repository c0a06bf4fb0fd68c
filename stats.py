"""Portfolio statistics for the dashboard.

Every function here is a pure fold over contracts/installments that were
already loaded by the caller. Empty input always yields zeros.
"""
import datetime
from collections import Counter, OrderedDict
from dataclasses import dataclass, field

import logic
from calendar_helper import format_solar, to_solar
from ledger import is_open, is_settled
from models import ContractStatus, CustomerStatus, InstallmentStatus


@dataclass
class PortfolioStats:
    total_customers: int = 0
    active_customers: int = 0
    total_contracts: int = 0
    active_contracts: int = 0
    contracts_by_status: dict = field(default_factory=dict)
    overdue_installments: int = 0
    total_receivable: int = 0  # total amount of ACTIVE contracts
    total_received: int = 0  # paid amount of PAID installments
    total_overdue: int = 0  # unpaid part of overdue open installments
    total_penalty: int = 0
    today_solar: str = ""

    @property
    def collection_percentage(self):
        return logic.progress_percentage(self.total_received, self.total_receivable)


def _overdue_open(installment, today):
    return is_open(installment) and installment.due_date < today


def aggregate(contracts, installments, today, customers=()):
    contracts = list(contracts)
    installments = list(installments)
    customers = list(customers)

    by_status = Counter(c.status.value for c in contracts)
    overdue = [i for i in installments if _overdue_open(i, today)]

    return PortfolioStats(
        total_customers=len(customers),
        active_customers=sum(1 for c in customers if c.status == CustomerStatus.ACTIVE),
        total_contracts=len(contracts),
        active_contracts=by_status.get(ContractStatus.ACTIVE.value, 0),
        contracts_by_status=dict(by_status),
        overdue_installments=len(overdue),
        total_receivable=sum(c.total_amount for c in contracts if c.status == ContractStatus.ACTIVE),
        total_received=sum(i.paid_amount for i in installments if i.status == InstallmentStatus.PAID),
        total_overdue=sum(i.amount - i.paid_amount for i in overdue),
        total_penalty=sum(i.penalty_amount for i in installments if i.penalty_amount > 0),
        today_solar=format_solar(today),
    )


def upcoming_installments(installments, today, days=7):
    """Open installments falling due between today and today + days, inclusive."""
    end = today + datetime.timedelta(days=days)
    rows = [i for i in installments if is_open(i) and today <= i.due_date <= end]
    return sorted(rows, key=lambda i: (i.due_date, i.installment_number))


def overdue_installments(installments, today):
    rows = [i for i in installments if _overdue_open(i, today)]
    return sorted(rows, key=lambda i: (i.due_date, i.installment_number))


def contract_paid_amount(contract):
    return sum(i.paid_amount for i in contract.installments)


def contract_remaining_amount(contract):
    return contract.total_amount - contract_paid_amount(contract)


def contract_progress(contract):
    return logic.progress_percentage(contract_paid_amount(contract), contract.total_amount)


def paid_installments_count(contract):
    return sum(1 for i in contract.installments if is_settled(i))


def payment_method_breakdown(installments):
    """method -> (count, total paid) over PAID installments that recorded a method."""
    result = {}
    for i in installments:
        if i.status != InstallmentStatus.PAID or i.payment_method is None:
            continue
        count, total = result.get(i.payment_method, (0, 0))
        result[i.payment_method] = (count + 1, total + i.paid_amount)
    return result


def monthly_due_summary(installments, solar_year):
    """Jalali month (1-12) -> total scheduled amount due in that month of solar_year."""
    summary = OrderedDict((m, 0) for m in range(1, 13))
    for i in installments:
        y, m, _ = to_solar(i.due_date)
        if y == solar_year:
            summary[m] += i.amount
    return summary
