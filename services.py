# services.py
# Database-facing operations. Each function works inside the caller's session,
# loads what the engine needs, runs the pure logic/ledger functions and
# commits. Row locks (with_for_update) keep a payment and the contract status
# re-evaluation for the same contract from interleaving.
import logging

import ledger
import logic
import stats
from calendar_helper import to_solar
from errors import NotFoundError
from models import (
    Customer, Contract, Installment, ContractStatus, InstallmentStatus, CustomerStatus
)

logger = logging.getLogger(__name__)


# Lookups
def get_customer(session, customer_id):
    customer = session.query(Customer).filter_by(id=customer_id).first()
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


def find_or_create_customer(session, name, mobile=None):
    name = name.strip()
    customer = session.query(Customer).filter_by(name=name).first()
    if not customer:
        customer = Customer(name=name, mobile=mobile, status=CustomerStatus.ACTIVE)
        try:
            session.add(customer)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("Customer %s created (%s)", customer.id, name)
    return customer


def get_contract(session, contract_id, lock=False):
    q = session.query(Contract).filter_by(id=contract_id)
    if lock:
        q = q.with_for_update().populate_existing()
    contract = q.first()
    if not contract:
        raise NotFoundError("Contract", contract_id)
    return contract


def get_contract_by_number(session, contract_number):
    contract = session.query(Contract).filter_by(contract_number=contract_number).first()
    if not contract:
        raise NotFoundError("Contract", contract_number)
    return contract


def get_installment(session, installment_id):
    inst = session.query(Installment).filter_by(id=installment_id).first()
    if not inst:
        raise NotFoundError("Installment", installment_id)
    return inst


def list_contracts(session, status=None, customer_id=None):
    q = session.query(Contract)
    if status is not None:
        q = q.filter(Contract.status == status)
    if customer_id is not None:
        q = q.filter(Contract.customer_id == customer_id)
    return q.order_by(Contract.created_at.desc(), Contract.id.desc()).all()


def contract_installments(session, contract_id):
    return (
        session.query(Installment)
        .filter_by(contract_id=contract_id)
        .order_by(Installment.installment_number)
        .all()
    )


def upcoming(session, today, days):
    installments = (
        session.query(Installment)
        .filter(Installment.status.in_([InstallmentStatus.PENDING, InstallmentStatus.OVERDUE,
                                        InstallmentStatus.PARTIALLY_PAID]))
        .all()
    )
    return stats.upcoming_installments(installments, today, days)


def next_contract_number(session, today):
    last = (
        session.query(Contract.contract_number)
        .order_by(Contract.contract_number.desc())
        .first()
    )
    solar_year = to_solar(today)[0]
    return logic.next_contract_number(last[0] if last else None, solar_year)


# Operations
def create_contract(session, customer_id, principal, annual_rate, count, start_date, today,
                    penalty_rate=None, description=None):
    get_customer(session, customer_id)
    contract = logic.generate_schedule(
        customer_id, principal, annual_rate, count, start_date,
        penalty_rate=penalty_rate, description=description,
        contract_number=next_contract_number(session, today),
    )
    try:
        session.add(contract)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Contract %s created: principal=%s rate=%s%% count=%s total=%s",
        contract.contract_number, principal, annual_rate, count, contract.total_amount,
    )
    return contract


def _lock_contract(session, contract_id):
    """
    Lock the contract row, then reload the contract and its installments so
    nothing read before the lock is written back.
    """
    contract = get_contract(session, contract_id, lock=True)
    (
        session.query(Installment)
        .filter_by(contract_id=contract_id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return contract


def _lock_installment(session, installment_id):
    contract_id = (
        session.query(Installment.contract_id)
        .filter(Installment.id == installment_id)
        .scalar()
    )
    if contract_id is None:
        raise NotFoundError("Installment", installment_id)
    contract = _lock_contract(session, contract_id)
    return contract, get_installment(session, installment_id)


def pay_installment(session, installment_id, amount, method, today, receipt=None, notes=None,
                    paid_at=None):
    try:
        contract, inst = _lock_installment(session, installment_id)
        result = ledger.apply_payment(
            contract, inst, amount, today,
            method=method, receipt=receipt, notes=notes, paid_at=paid_at,
        )
        if result.recheck_contract:
            ledger.refresh_contract_status(contract, today)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Payment of %s on installment %s (%s #%s), penalty +%s, status %s",
        amount, inst.id, contract.contract_number, inst.installment_number,
        result.penalty_charged, inst.status.value,
    )
    return inst


def quick_pay(session, installment_id, today, paid_at=None):
    try:
        contract, inst = _lock_installment(session, installment_id)
        result = ledger.quick_settle(contract, inst, today, paid_at=paid_at)
        ledger.refresh_contract_status(contract, today)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Installment %s (%s #%s) settled, penalty +%s",
        inst.id, contract.contract_number, inst.installment_number, result.penalty_charged,
    )
    return inst


def cancel_contract(session, contract_id, reason, today):
    try:
        contract = _lock_contract(session, contract_id)
        ledger.cancel_contract(contract, reason, today)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Contract %s cancelled: %s", contract.contract_number, reason)
    return contract


def sweep_overdue(session, today):
    """
    Flag late PENDING installments as OVERDUE and move ACTIVE contracts that
    now have a late installment (or are fully paid) to their next status.
    Each affected contract is locked while its installments are swept.
    return: number of installments flagged
    """
    late = (
        session.query(Installment.contract_id)
        .filter(Installment.status == InstallmentStatus.PENDING, Installment.due_date < today)
    )
    active = session.query(Contract.id).filter(Contract.status == ContractStatus.ACTIVE)
    contract_ids = sorted({row[0] for row in late} | {row[0] for row in active})

    flagged = changed = 0
    try:
        for contract_id in contract_ids:
            contract = _lock_contract(session, contract_id)
            flagged += ledger.sweep_overdue(contract.installments, today)
            if ledger.refresh_contract_status(contract, today):
                changed += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Overdue sweep %s: %s installments flagged, %s contracts updated", today, flagged, changed)
    return flagged


def dashboard_stats(session, today):
    return stats.aggregate(
        session.query(Contract).all(),
        session.query(Installment).all(),
        today,
        customers=session.query(Customer).all(),
    )


def payment_breakdown(session):
    return stats.payment_method_breakdown(
        session.query(Installment).filter(Installment.status == InstallmentStatus.PAID).all()
    )


def monthly_dues(session, solar_year):
    return stats.monthly_due_summary(session.query(Installment).all(), solar_year)
