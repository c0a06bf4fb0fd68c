# models.py
from sqlalchemy import (
    Column, Integer, BigInteger, String, Float, Date, ForeignKey, DateTime, Enum
)
from sqlalchemy.orm import relationship, declarative_base
import enum
import datetime

Base = declarative_base()


class LabeledEnum(enum.Enum):
    """Enum whose values carry a Persian display label."""

    def __new__(cls, value, label):
        obj = object.__new__(cls)
        obj._value_ = value
        obj.label = label
        return obj


class CustomerStatus(LabeledEnum):
    ACTIVE = ("ACTIVE", "فعال")
    INACTIVE = ("INACTIVE", "غیرفعال")
    BLOCKED = ("BLOCKED", "مسدود")
    PENDING = ("PENDING", "در انتظار")


class ContractStatus(LabeledEnum):
    DRAFT = ("DRAFT", "پیش‌نویس")
    ACTIVE = ("ACTIVE", "فعال")
    COMPLETED = ("COMPLETED", "تسویه شده")
    OVERDUE = ("OVERDUE", "معوق")
    CANCELLED = ("CANCELLED", "لغو شده")


class InstallmentStatus(LabeledEnum):
    PENDING = ("PENDING", "در انتظار پرداخت")
    PARTIALLY_PAID = ("PARTIALLY_PAID", "پرداخت ناقص")
    OVERDUE = ("OVERDUE", "سررسید گذشته")
    PAID = ("PAID", "پرداخت شده")
    # equivalent to PAID; only ever read from external data, never written
    COMPLETED = ("COMPLETED", "تسویه نهایی")


class PaymentMethod(LabeledEnum):
    CASH = ("CASH", "نقدی")
    CARD = ("CARD", "کارت به کارت")
    TRANSFER = ("TRANSFER", "حواله بانکی")
    CHEQUE = ("CHEQUE", "چک")
    POS = ("POS", "کارتخوان")


OPEN_STATUSES = (InstallmentStatus.PENDING, InstallmentStatus.OVERDUE, InstallmentStatus.PARTIALLY_PAID)
SETTLED_STATUSES = (InstallmentStatus.PAID, InstallmentStatus.COMPLETED)


def _enum_column(enum_cls, **kw):
    # store the enum value (e.g. "PAID"), not the python member name
    return Column(
        Enum(enum_cls, native_enum=False, length=20,
             values_callable=lambda e: [m.value for m in e]),
        **kw,
    )


class Customer(Base):
    __tablename__ = "customers"
    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    mobile = Column(String(20), unique=True, nullable=True)
    national_code = Column(String(10), unique=True, nullable=True)
    status = _enum_column(CustomerStatus, default=CustomerStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    contracts = relationship("Contract", back_populates="customer")


class Contract(Base):
    __tablename__ = "contracts"
    id = Column(Integer, primary_key=True)
    contract_number = Column(String(20), unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    principal_amount = Column(BigInteger, nullable=False)  # rial
    interest_rate = Column(Float, nullable=False)  # annual, percent
    interest_amount = Column(BigInteger)
    total_amount = Column(BigInteger, nullable=False)
    installment_count = Column(Integer, nullable=False)
    installment_amount = Column(BigInteger)
    start_date = Column(Date, nullable=False)  # stored as Gregorian date
    end_date = Column(Date)
    penalty_rate = Column(Float, default=0.5)  # daily, percent
    status = _enum_column(ContractStatus, default=ContractStatus.DRAFT, nullable=False)
    description = Column(String(500))

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    customer = relationship("Customer", back_populates="contracts")
    # installments keep only contract_id; the contract is the single owner
    installments = relationship(
        "Installment",
        order_by="Installment.installment_number",
        cascade="all, delete-orphan",
    )


class Installment(Base):
    __tablename__ = "installments"
    id = Column(Integer, primary_key=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(BigInteger, nullable=False)
    principal_portion = Column(BigInteger)
    interest_portion = Column(BigInteger)
    due_date = Column(Date, nullable=False, index=True)
    paid_amount = Column(BigInteger, default=0, nullable=False)
    penalty_amount = Column(BigInteger, default=0, nullable=False)
    payment_date = Column(DateTime, nullable=True)
    payment_method = _enum_column(PaymentMethod, nullable=True)
    receipt_number = Column(String(50), nullable=True)
    status = _enum_column(InstallmentStatus, default=InstallmentStatus.PENDING, nullable=False, index=True)
    notes = Column(String(500), nullable=True)
