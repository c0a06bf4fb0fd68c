# ledger.py
# Payment application and status transitions for contracts and installments.
# Nothing in here reads the clock or touches a database session: `today` is
# always passed in, and the caller persists whatever was mutated.
import datetime
import logging
from dataclasses import dataclass

import logic
from calendar_helper import format_solar
from errors import AlreadySettledError, AlreadyCompletedError, InvalidAmountError
from models import (
    ContractStatus, InstallmentStatus, PaymentMethod, OPEN_STATUSES, SETTLED_STATUSES
)

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    installment: object
    penalty_charged: int
    # payment changed an installment, so the owning contract's status may move
    recheck_contract: bool = True


def is_settled(installment):
    return installment.status in SETTLED_STATUSES


def is_open(installment):
    return installment.status in OPEN_STATUSES


def is_overdue(installment, today):
    return not is_settled(installment) and today > installment.due_date


def remaining_amount(installment):
    """Unpaid part of the installment plus the penalty accrued so far."""
    return (installment.amount - installment.paid_amount) + installment.penalty_amount


def accrued_penalty(contract, installment, today):
    """Penalty that a payment made on `today` would add to the installment."""
    if not is_open(installment) or today <= installment.due_date:
        return 0
    return logic.penalty(
        installment.amount - installment.paid_amount,
        contract.penalty_rate or 0,
        logic.delay_days(installment.due_date, today),
    )


def apply_payment(contract, installment, amount, today, method=None, receipt=None,
                  notes=None, paid_at=None):
    """
    Record a payment of `amount` rial against one installment of `contract`.

    Late installments first accrue a penalty on their unpaid part (added to the
    running penalty, never replacing it). The installment becomes PAID once
    paid_amount covers amount + penalty_amount, otherwise PARTIALLY_PAID.
    """
    if is_settled(installment):
        raise AlreadySettledError(installment.installment_number, installment.id)
    if amount is None or amount <= 0:
        raise InvalidAmountError("Payment amount must be positive", {'amount': amount})

    charged = accrued_penalty(contract, installment, today)
    installment.penalty_amount += charged
    installment.paid_amount += amount

    installment.payment_date = paid_at or datetime.datetime.combine(today, datetime.time.min)
    installment.payment_method = method
    installment.receipt_number = receipt
    installment.notes = notes

    if installment.paid_amount >= installment.amount + installment.penalty_amount:
        installment.status = InstallmentStatus.PAID
    elif installment.paid_amount > 0:
        installment.status = InstallmentStatus.PARTIALLY_PAID

    logger.debug(
        "Installment %s of %s: paid %s (penalty +%s) -> %s",
        installment.installment_number, contract.contract_number, amount, charged,
        installment.status.value,
    )
    return PaymentResult(installment=installment, penalty_charged=charged)


def quick_settle(contract, installment, today, paid_at=None, receipt=None):
    """Pay off everything still owed on the installment, including today's penalty."""
    remaining = remaining_amount(installment) + accrued_penalty(contract, installment, today)
    if remaining <= 0 and is_settled(installment):
        raise AlreadySettledError(installment.installment_number, installment.id)
    if receipt is None:
        receipt = f"QUICKPAY-{today:%Y%m%d}-{installment.id or installment.installment_number}"
    return apply_payment(
        contract, installment, remaining, today,
        method=PaymentMethod.CASH, receipt=receipt, notes="تسویه سریع قسط", paid_at=paid_at,
    )


def sweep_overdue(installments, today):
    """
    Mark every PENDING installment whose due date has passed as OVERDUE.
    Partially paid and settled installments keep their status.
    return: number of installments changed
    """
    count = 0
    for inst in installments:
        if inst.status == InstallmentStatus.PENDING and inst.due_date < today:
            inst.status = InstallmentStatus.OVERDUE
            count += 1
    return count


def refresh_contract_status(contract, today):
    """
    Re-evaluate a contract after any of its installments changed.
    return: True if the status moved
    """
    if contract.status == ContractStatus.COMPLETED:
        return False
    installments = contract.installments
    if installments and all(is_settled(i) for i in installments):
        contract.status = ContractStatus.COMPLETED
        logger.info("Contract %s completed", contract.contract_number)
        return True
    if contract.status == ContractStatus.ACTIVE and any(is_overdue(i, today) for i in installments):
        contract.status = ContractStatus.OVERDUE
        return True
    return False


def cancel_contract(contract, reason, today):
    if contract.status == ContractStatus.COMPLETED:
        raise AlreadyCompletedError(contract.contract_number)
    contract.status = ContractStatus.CANCELLED
    note = f"[لغو شده در {format_solar(today)}]: {reason}"
    contract.description = f"{contract.description}\n{note}" if contract.description else note
    return contract
