# main.py
import logging
import datetime
import pytz

from telegram import (
    Update,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    ReplyKeyboardMarkup,
    KeyboardButton,
)
from telegram.ext import (
    Application, CommandHandler, ContextTypes, ConversationHandler,
    MessageHandler, CallbackQueryHandler, filters
)

import services
from db import init_db, SessionLocal
from calendar_helper import (
    build_month_keyboard, to_solar, shift_month, parse_solar, format_solar, format_solar_full,
    format_solar_datetime, month_name,
)
from errors import LedgerError
from logic import format_currency, format_rial, format_toman, toman_to_rial
from ledger import is_settled, remaining_amount
from models import PaymentMethod
from stats import contract_progress, contract_remaining_amount, paid_installments_count
from config import (
    BOT_TOKEN, TIMEZONE, ADMIN_CHAT_ID, DEFAULT_PENALTY_RATE, SWEEP_INTERVAL_HOURS,
    UPCOMING_DAYS, LOG_LEVEL,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

# Conversation states
(NEW_CUSTOMER, NEW_PRINCIPAL, NEW_RATE, NEW_COUNT, NEW_CALENDAR, NEW_PENALTY) = range(6)

CANCEL_HINT = "\n(برای لغو، /cancel را بزنید)"

METHOD_ALIASES = {m.value.lower(): m for m in PaymentMethod}
METHOD_ALIASES.update({m.label: m for m in PaymentMethod})


# Helpers
def get_session():
    return SessionLocal()


def get_local_today():
    tz = pytz.timezone(TIMEZONE)
    return datetime.datetime.now(tz).date()


def get_local_now():
    tz = pytz.timezone(TIMEZONE)
    return datetime.datetime.now(tz).replace(tzinfo=None)


def parse_amount(text):
    # accept "1,500,000" as well as "1500000"; a trailing "تومان" means toman
    text = text.strip().replace(",", "").replace("٬", "")
    if text.endswith("تومان"):
        return toman_to_rial(int(text[:-len("تومان")].strip()))
    return int(text)


def parse_method(text):
    if not text:
        return PaymentMethod.CASH
    method = METHOD_ALIASES.get(text.strip().lower())
    if method is None:
        raise ValueError(f"unknown payment method: {text}")
    return method


def render_installment_line(inst, today):
    status = inst.status.label
    if not is_settled(inst) and inst.due_date < today:
        status = f"⚠️ {status}"
    line = (
        f"قسط {inst.installment_number}: {format_currency(inst.amount)} ریال — "
        f"{format_solar(inst.due_date)} — {status}"
    )
    if inst.paid_amount:
        line += f" (پرداختی {format_currency(inst.paid_amount)})"
    if inst.penalty_amount:
        line += f" (جریمه {format_currency(inst.penalty_amount)})"
    if inst.payment_date:
        line += f" [{format_solar_datetime(inst.payment_date)}]"
    return line


def render_contract(contract, today):
    lines = [
        f"📄 قرارداد {contract.contract_number} — {contract.status.label}",
        f"👤 مشتری: {contract.customer.name if contract.customer else contract.customer_id}",
        f"💰 اصل: {format_currency(contract.principal_amount)} ریال",
        f"📈 نرخ سود سالانه: {contract.interest_rate}% — سود: {format_currency(contract.interest_amount)}",
        f"🧾 مبلغ کل: {format_currency(contract.total_amount)} ریال ({format_toman(contract.total_amount)})",
        f"📅 {contract.installment_count} قسط، از {format_solar(contract.start_date)} تا {format_solar(contract.end_date)}",
        f"⏱ جریمه روزانه: {contract.penalty_rate}%",
        f"✅ پیشرفت: {contract_progress(contract)}% ({paid_installments_count(contract)}/{contract.installment_count})",
        f"💳 مانده: {format_rial(max(contract_remaining_amount(contract), 0))}",
        "",
        "📊 لیست اقساط:",
    ]
    lines.extend(render_installment_line(i, today) for i in contract.installments)
    if contract.description:
        lines.extend(["", contract.description])
    return "\n".join(lines)


def render_dashboard(stats):
    by_status = "، ".join(f"{k}: {v}" for k, v in sorted(stats.contracts_by_status.items())) or "—"
    return "\n".join([
        f"📊 داشبورد — {stats.today_solar}",
        f"👥 مشتریان: {stats.total_customers} (فعال {stats.active_customers})",
        f"📄 قراردادها: {stats.total_contracts} (فعال {stats.active_contracts})",
        f"   {by_status}",
        f"⏰ اقساط معوق: {stats.overdue_installments}",
        f"💼 کل مطالبات: {format_currency(stats.total_receivable)} ریال",
        f"💵 وصول شده: {format_currency(stats.total_received)} ریال",
        f"⚠️ مبلغ معوق: {format_currency(stats.total_overdue)} ریال",
        f"🧾 جریمه‌ها: {format_currency(stats.total_penalty)} ریال",
        f"📈 درصد وصول: {stats.collection_percentage}%",
    ])


def render_method_breakdown(breakdown):
    if not breakdown:
        return "💳 هنوز قسطی به طور کامل پرداخت نشده است."
    lines = ["💳 وصولی به تفکیک روش پرداخت:"]
    for method, (count, total) in sorted(breakdown.items(), key=lambda kv: kv[0].value):
        lines.append(f"• {method.label}: {count} قسط، {format_rial(total)}")
    return "\n".join(lines)


def render_monthly_dues(summary, solar_year):
    lines = [f"🗓 سررسیدهای سال {solar_year}:"]
    for month, total in summary.items():
        if total:
            lines.append(f"• {month_name(month)}: {format_rial(total)}")
    if len(lines) == 1:
        lines.append("• بدون سررسید")
    return "\n".join(lines)


def main_reply_keyboard():
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton("➕ قرارداد جدید"), KeyboardButton("📄 قراردادها")],
            [KeyboardButton("📅 سررسیدهای نزدیک"), KeyboardButton("📊 داشبورد")],
        ],
        resize_keyboard=True,
    )


def due_range_markup():
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("1 روز آینده", callback_data="due|1"),
            InlineKeyboardButton("3 روز آینده", callback_data="due|3"),
            InlineKeyboardButton(f"{UPCOMING_DAYS} روز آینده", callback_data=f"due|{UPCOMING_DAYS}"),
        ],
    ])


def penalty_markup():
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(f"{DEFAULT_PENALTY_RATE}% (پیش‌فرض)", callback_data="pen|default"),
        InlineKeyboardButton("1%", callback_data="pen|1"),
        InlineKeyboardButton("بدون جریمه", callback_data="pen|0"),
    ]])


async def reply(update: Update, text, reply_markup=None):
    if getattr(update, "callback_query", None):
        await update.callback_query.edit_message_text(text, reply_markup=reply_markup)
    else:
        await update.message.reply_text(text, reply_markup=reply_markup)


# Handlers
async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(
        "سلام! 👋\nاز دکمه‌های پایین برای ثبت قرارداد، مشاهده اقساط و داشبورد استفاده کن.\n"
        "ثبت پرداخت: /pay <شناسه قسط> <مبلغ> [روش]\n"
        "لغو قرارداد: /cancelcontract <شماره قرارداد> <دلیل>",
        reply_markup=main_reply_keyboard()
    )


# New contract conversation
async def newcontract_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data.clear()
    await update.message.reply_text("نام مشتری را وارد کنید:" + CANCEL_HINT)
    return NEW_CUSTOMER


async def newcontract_customer(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data['customer'] = update.message.text.strip()
    await update.message.reply_text("مبلغ اصل قرارداد به ریال:" + CANCEL_HINT)
    return NEW_PRINCIPAL


async def newcontract_principal(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        principal = parse_amount(update.message.text)
    except ValueError:
        await update.message.reply_text("مبلغ نامعتبر است، لطفاً فقط عدد وارد کنید." + CANCEL_HINT)
        return NEW_PRINCIPAL
    if principal <= 0:
        await update.message.reply_text("مبلغ باید بزرگ‌تر از صفر باشد." + CANCEL_HINT)
        return NEW_PRINCIPAL
    context.user_data['principal'] = principal
    await update.message.reply_text("نرخ سود سالانه (مثلاً 18):" + CANCEL_HINT)
    return NEW_RATE


async def newcontract_rate(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        rate = float(update.message.text.strip())
    except ValueError:
        await update.message.reply_text("نرخ نامعتبر است، دوباره وارد کن." + CANCEL_HINT)
        return NEW_RATE
    if not 0 <= rate <= 100:
        await update.message.reply_text("نرخ باید بین 0 و 100 باشد." + CANCEL_HINT)
        return NEW_RATE
    context.user_data['rate'] = rate
    await update.message.reply_text("تعداد اقساط (1 تا 60):" + CANCEL_HINT)
    return NEW_COUNT


async def newcontract_count(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        count = int(update.message.text.strip())
    except ValueError:
        await update.message.reply_text("تعداد نامعتبر است، یک عدد وارد کن." + CANCEL_HINT)
        return NEW_COUNT
    if not 1 <= count <= 60:
        await update.message.reply_text("تعداد اقساط باید بین 1 و 60 باشد." + CANCEL_HINT)
        return NEW_COUNT
    context.user_data['count'] = count

    y, m, _ = to_solar(get_local_today())
    kb = build_month_keyboard(y, m, prefix="cal")
    await update.message.reply_text("تاریخ شروع قرارداد را انتخاب کن (شمسی):" + CANCEL_HINT, reply_markup=kb)
    return NEW_CALENDAR


async def calendar_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    if query.data == "noop":
        return NEW_CALENDAR
    parts = query.data.split("|")  # cal|day|1403/08/25 or cal|prev|1403-8
    if parts[1] == "cancel":
        await query.edit_message_text("ثبت قرارداد لغو شد.")
        return ConversationHandler.END
    if parts[1] in ("prev", "next"):
        y, m = [int(x) for x in parts[2].split("-")]
        y, m = shift_month(y, m, -1 if parts[1] == "prev" else 1)
        await query.edit_message_reply_markup(build_month_keyboard(y, m, prefix="cal"))
        return NEW_CALENDAR
    if parts[1] == "day":
        context.user_data['start_date'] = parts[2]
        await query.edit_message_text(
            f"📅 تاریخ شروع: {parts[2]}\n\nنرخ جریمه دیرکرد روزانه را انتخاب کن 👇",
            reply_markup=penalty_markup()
        )
        return NEW_PENALTY
    return NEW_CALENDAR


async def penalty_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    choice = query.data.split("|")[1]
    penalty_rate = None if choice == "default" else float(choice)

    data = context.user_data
    today = get_local_today()
    session = get_session()
    try:
        customer = services.find_or_create_customer(session, data['customer'])
        contract = services.create_contract(
            session, customer.id, data['principal'], data['rate'], data['count'],
            parse_solar(data['start_date']), today, penalty_rate=penalty_rate,
        )
        text = "✅ قرارداد با موفقیت ثبت شد!\n\n" + render_contract(contract, today)
        await query.edit_message_text(text, reply_markup=contract_markup(contract))
    except LedgerError as e:
        await query.edit_message_text(f"⚠️ {e.message}")
    finally:
        session.close()
    context.user_data.clear()
    return ConversationHandler.END


async def newcontract_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data.clear()
    await update.message.reply_text("❌ فرآیند ثبت قرارداد لغو شد.", reply_markup=main_reply_keyboard())
    return ConversationHandler.END


# Contracts
def contract_markup(contract):
    buttons = []
    for inst in contract.installments:
        if not is_settled(inst):
            buttons.append([InlineKeyboardButton(
                f"💵 تسویه قسط {inst.installment_number} (#{inst.id})", callback_data=f"settle|{inst.id}"
            )])
    if buttons:
        # only the first few open installments, telegram caps the keyboard size
        buttons = buttons[:6]
        buttons.append([InlineKeyboardButton("🚫 لغو قرارداد", callback_data=f"contract|cancel|{contract.id}")])
    buttons.append([InlineKeyboardButton("🔙 بازگشت", callback_data="contracts|list")])
    return InlineKeyboardMarkup(buttons)


async def contracts_list(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if getattr(update, "callback_query", None):
        await update.callback_query.answer()
    session = get_session()
    try:
        contracts = services.list_contracts(session)
        if not contracts:
            await reply(update, "📄 هنوز هیچ قراردادی ثبت نشده است.")
            return
        lines = ["📄 فهرست قراردادها:"]
        buttons = []
        for c in contracts[:30]:
            name = c.customer.name if c.customer else c.customer_id
            lines.append(f"🔸 {c.contract_number} — {name} — {c.status.label}")
            buttons.append([InlineKeyboardButton(c.contract_number, callback_data=f"contract|detail|{c.id}")])
        await reply(update, "\n".join(lines), reply_markup=InlineKeyboardMarkup(buttons))
    finally:
        session.close()


async def contract_detail_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    contract_id = int(query.data.split("|")[2])
    session = get_session()
    try:
        contract = services.get_contract(session, contract_id)
        await query.edit_message_text(render_contract(contract, get_local_today()),
                                      reply_markup=contract_markup(contract))
    except LedgerError as e:
        await query.edit_message_text(f"⚠️ {e.message}")
    finally:
        session.close()


async def settle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    inst_id = int(query.data.split("|")[1])
    today = get_local_today()
    session = get_session()
    try:
        inst = services.quick_pay(session, inst_id, today, paid_at=get_local_now())
        contract = services.get_contract(session, inst.contract_id)
        text = (
            f"✅ قسط {inst.installment_number} تسویه شد "
            f"({format_currency(inst.paid_amount)} ریال، جریمه {format_currency(inst.penalty_amount)}).\n\n"
            + render_contract(contract, today)
        )
        await query.edit_message_text(text, reply_markup=contract_markup(contract))
    except LedgerError as e:
        await query.edit_message_text(f"⚠️ {e.message}")
    finally:
        session.close()


async def pay_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    args = context.args or []
    try:
        inst_id = int(args[0])
        amount = parse_amount(args[1])
        method = parse_method(" ".join(args[2:]) if len(args) > 2 else None)
    except (IndexError, ValueError):
        await update.message.reply_text("فرمت: /pay <شناسه قسط> <مبلغ به ریال> [cash|card|transfer|cheque|pos]")
        return
    session = get_session()
    try:
        inst = services.pay_installment(session, inst_id, amount, method, get_local_today(),
                                        paid_at=get_local_now())
        await update.message.reply_text(
            f"✅ پرداخت ثبت شد. قسط {inst.installment_number}: {inst.status.label}\n"
            f"مانده (با جریمه): {format_currency(max(remaining_amount(inst), 0))} ریال"
        )
    except LedgerError as e:
        await update.message.reply_text(f"⚠️ {e.message}")
    finally:
        session.close()


async def cancel_confirm_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    contract_id = int(query.data.split("|")[2])
    await query.edit_message_text(
        "❗ آیا مطمئن هستی که می‌خواهی این قرارداد را لغو کنی؟",
        reply_markup=InlineKeyboardMarkup([
            [InlineKeyboardButton("✅ بله، لغو کن", callback_data=f"cancelc|yes|{contract_id}")],
            [InlineKeyboardButton("❌ نه، منصرف شدم", callback_data=f"contract|detail|{contract_id}")],
        ])
    )


async def cancel_execute_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    contract_id = int(query.data.split("|")[2])
    session = get_session()
    try:
        contract = services.cancel_contract(session, contract_id, "لغو توسط اپراتور", get_local_today())
        await query.edit_message_text(f"🚫 قرارداد {contract.contract_number} لغو شد.")
    except LedgerError as e:
        await query.edit_message_text(f"⚠️ {e.message}")
    finally:
        session.close()


async def cancelcontract_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text("فرمت: /cancelcontract <شماره قرارداد> <دلیل>")
        return
    session = get_session()
    try:
        contract = services.get_contract_by_number(session, args[0])
        services.cancel_contract(session, contract.id, " ".join(args[1:]), get_local_today())
        await update.message.reply_text(f"🚫 قرارداد {contract.contract_number} لغو شد.")
    except LedgerError as e:
        await update.message.reply_text(f"⚠️ {e.message}")
    finally:
        session.close()


# Upcoming due dates and dashboard
async def open_due_menu(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text("کدام بازه زمانی را می‌خواهی؟", reply_markup=due_range_markup())


async def due_range_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    try:
        days = int(query.data.split("|")[1])
    except (IndexError, ValueError):
        await query.edit_message_text("بازه نامعتبر است. دوباره انتخاب کن.", reply_markup=due_range_markup())
        return

    today = get_local_today()
    session = get_session()
    try:
        installments = services.upcoming(session, today, days)
        if not installments:
            text = f"⏰ در {days} روز آینده هیچ قسطی سررسید نمی‌شود."
        else:
            lines = [f"⏰ سررسیدهای {days} روز آینده:"]
            for inst in installments:
                contract = services.get_contract(session, inst.contract_id)
                lines.append(
                    f"• {format_solar_full(inst.due_date)} — {contract.contract_number}\n"
                    f"  قسط {inst.installment_number} (#{inst.id}): {format_currency(inst.amount)} ریال"
                )
            text = "\n".join(lines)
        await query.edit_message_text(text, reply_markup=due_range_markup())
    finally:
        session.close()


async def dashboard(update: Update, context: ContextTypes.DEFAULT_TYPE):
    today = get_local_today()
    solar_year = to_solar(today)[0]
    session = get_session()
    try:
        text = "\n\n".join([
            render_dashboard(services.dashboard_stats(session, today)),
            render_method_breakdown(services.payment_breakdown(session)),
            render_monthly_dues(services.monthly_dues(session, solar_year), solar_year),
        ])
        await update.message.reply_text(text)
    finally:
        session.close()


# Scheduled job: flag overdue installments and contracts
async def overdue_sweep_job(context: ContextTypes.DEFAULT_TYPE):
    today = get_local_today()
    session = get_session()
    try:
        flagged = services.sweep_overdue(session, today)
    except Exception:
        session.rollback()
        logger.exception("Overdue sweep failed")
        return
    finally:
        session.close()

    if flagged and ADMIN_CHAT_ID:
        try:
            await context.bot.send_message(
                chat_id=ADMIN_CHAT_ID,
                text=f"⏰ {flagged} قسط در تاریخ {format_solar(today)} معوق شد.",
            )
        except Exception:
            logger.exception("Failed to notify admin about overdue installments")


# Setup application
def main():
    init_db()
    app = Application.builder().token(BOT_TOKEN).build()

    conv = ConversationHandler(
        entry_points=[
            CommandHandler("newcontract", newcontract_start),
            MessageHandler(filters.TEXT & ~filters.COMMAND & filters.Regex(r"^➕ قرارداد جدید$"), newcontract_start),
        ],
        states={
            NEW_CUSTOMER: [MessageHandler(filters.TEXT & ~filters.COMMAND, newcontract_customer)],
            NEW_PRINCIPAL: [MessageHandler(filters.TEXT & ~filters.COMMAND, newcontract_principal)],
            NEW_RATE: [MessageHandler(filters.TEXT & ~filters.COMMAND, newcontract_rate)],
            NEW_COUNT: [MessageHandler(filters.TEXT & ~filters.COMMAND, newcontract_count)],
            NEW_CALENDAR: [CallbackQueryHandler(calendar_callback, pattern=r"^(cal\|.*|noop)$")],
            NEW_PENALTY: [CallbackQueryHandler(penalty_callback, pattern=r"^pen\|")],
        },
        fallbacks=[CommandHandler("cancel", newcontract_cancel)],
        allow_reentry=True
    )

    app.add_handler(CommandHandler("start", start))
    app.add_handler(conv)
    app.add_handler(CommandHandler("contracts", contracts_list))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND & filters.Regex(r"^📄 قراردادها$"), contracts_list))
    app.add_handler(CommandHandler("dashboard", dashboard))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND & filters.Regex(r"^📊 داشبورد$"), dashboard))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND & filters.Regex(r"^📅 سررسیدهای نزدیک$"), open_due_menu))
    app.add_handler(CommandHandler("pay", pay_command))
    app.add_handler(CommandHandler("cancelcontract", cancelcontract_command))

    app.add_handler(CallbackQueryHandler(contracts_list, pattern=r"^contracts\|list$"))
    app.add_handler(CallbackQueryHandler(contract_detail_callback, pattern=r"^contract\|detail\|"))
    app.add_handler(CallbackQueryHandler(cancel_confirm_callback, pattern=r"^contract\|cancel\|"))
    app.add_handler(CallbackQueryHandler(cancel_execute_callback, pattern=r"^cancelc\|yes\|"))
    app.add_handler(CallbackQueryHandler(settle_callback, pattern=r"^settle\|"))
    app.add_handler(CallbackQueryHandler(due_range_callback, pattern=r"^due\|"))

    app.job_queue.run_repeating(overdue_sweep_job, interval=SWEEP_INTERVAL_HOURS * 60 * 60, first=10)

    logger.info("Bot started")
    app.run_polling()


if __name__ == "__main__":
    main()
