"""
app.py
Streamlit YTracker (owner-only): members, transactions, card balance, reports.
Run: streamlit run app.py
"""

from __future__ import annotations

import json
from datetime import date

import streamlit as st

import config
import utils
from errors import TrackerError
from models import (
    CARD_TRANSACTION_CATEGORIES,
    CARD_TRANSACTION_TYPES,
    CARD_TYPES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    PAYMENT_TYPES,
    RECORD_STATUSES,
    TRANSACTION_CATEGORIES,
    TRANSACTION_TYPES,
)
from store import FinanceStore

st.set_page_config(page_title="YTracker", layout="wide")

MEMBER_COLUMNS = [
    "id", "name", "paymentType", "paymentStatus", "currentAmount",
    "lastPaymentDate", "nextDueDate", "daysUntilDue", "isOverdue", "notes",
]
TRANSACTION_COLUMNS = [
    "id", "date", "type", "formattedAmount", "memberName", "description", "category", "paymentMethod", "status",
]
CARD_TRANSACTION_COLUMNS = [
    "id", "date", "type", "formattedAmount", "formattedBalanceAfter", "description", "category", "status",
]


def get_store() -> FinanceStore:
    if "store" not in st.session_state:
        st.session_state.store = FinanceStore.open(
            config.Config.DB_FILE,
            cost_source=config.Config.COST_SOURCE,
            default_cost=config.Config.DEFAULT_SUBSCRIPTION_COST,
        )
    return st.session_state.store


def attempt(action, success: str) -> bool:
    """Run a store mutation; show inline errors instead of raising."""
    try:
        action()
    except TrackerError as e:
        for msg in getattr(e, "errors", None) or [e.message]:
            st.error(msg)
        return False
    st.success(success)
    return True


def dashboard_page(store: FinanceStore):
    st.header("📊 Dashboard")

    snap = store.dashboard()
    money = snap["money"]

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total income", utils.format_money(snap["transactions"]["totalIncome"]))
    c2.metric("Total outgoing", utils.format_money(snap["transactions"]["totalOutgoing"]))
    c3.metric("Net balance", utils.format_money(snap["transactions"]["netBalance"]))
    c4.metric("Paid / unpaid", f"{snap['members']['paid']} / {snap['members']['unpaid']}")

    c5, c6, c7 = st.columns(3)
    c5.metric("Card balance", utils.format_money(money["cardBalance"]))
    c6.metric("Subscription cost", utils.format_money(money["subscriptionCost"]))
    c7.metric("Money needed", utils.format_money(money["moneyNeeded"]))

    st.divider()

    st.subheader("Upcoming payments (next 30 days)")
    upcoming = snap["upcomingPayments"]
    if upcoming:
        st.dataframe(utils.records_frame(upcoming, MEMBER_COLUMNS), use_container_width=True, hide_index=True)
    else:
        st.caption("No unpaid members due in the next 30 days.")

    overdue = store.overdue_members()
    if overdue:
        st.subheader("Overdue")
        st.dataframe(utils.records_frame(overdue, MEMBER_COLUMNS), use_container_width=True, hide_index=True)


def member_form(store: FinanceStore, existing=None):
    if existing:
        st.subheader(f"✏️ Edit Member ({existing.name})")
    else:
        st.subheader("➕ Add Member")

    today = date.today()
    col1, col2, col3 = st.columns(3)
    with col1:
        name = st.text_input("Name", value=(existing.name if existing else ""))
        payment_type = st.selectbox(
            "Payment type",
            options=list(PAYMENT_TYPES),
            index=(PAYMENT_TYPES.index(existing.payment_type) if existing else 0),
        )
        payment_status = st.selectbox(
            "Payment status",
            options=list(PAYMENT_STATUSES),
            index=(PAYMENT_STATUSES.index(existing.payment_status) if existing else 1),
        )

    with col2:
        last_payment = st.date_input(
            "Last payment date",
            value=(utils.parse_iso(existing.last_payment_date) if existing else today),
        ).isoformat()
        next_due = st.date_input(
            "Next due date",
            value=(utils.parse_iso(existing.next_due_date) if existing else utils.add_months(today, 1)),
        ).isoformat()
        is_owner = st.checkbox("Owner", value=(existing.is_owner if existing else False))

    with col3:
        monthly = st.number_input(
            "Monthly amount", min_value=0.0, step=0.01,
            value=float(existing.monthly_amount if existing else 3.79),
        )
        yearly = st.number_input(
            "Yearly amount", min_value=0.0, step=0.01,
            value=float(existing.yearly_amount if existing else 45.48),
        )
        notes = st.text_input("Notes", value=(existing.notes if existing else ""))

    payload = {
        "name": name,
        "paymentType": payment_type,
        "paymentStatus": payment_status,
        "lastPaymentDate": last_payment,
        "nextDueDate": next_due,
        "isOwner": is_owner,
        "monthlyAmount": monthly,
        "yearlyAmount": yearly,
        "notes": notes,
    }

    if st.button("Save", type="primary"):
        if existing:
            ok = attempt(lambda: store.update_member(existing.id, payload), "Member updated.")
        else:
            ok = attempt(lambda: store.create_member(payload), "Member added.")
        if ok:
            st.session_state.edit_member_id = None
            st.rerun()


def members_page(store: FinanceStore):
    st.header("👥 Members")

    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name)")
        status_filter = st.selectbox("Status", ["All", *PAYMENT_STATUSES])
        type_filter = st.selectbox("Payment type", ["All", *PAYMENT_TYPES])

    members = store.list_members(
        status=None if status_filter == "All" else status_filter,
        payment_type=None if type_filter == "All" else type_filter,
        search=search,
    )
    st.dataframe(utils.records_frame(members, MEMBER_COLUMNS), use_container_width=True, hide_index=True)

    st.divider()

    colA, colB = st.columns([1, 2])
    with colA:
        st.subheader("Select member")
        labels = {f"{m.name} - {m.payment_status}": m.id for m in members}
        selected = st.selectbox("Member", options=["(none)", *labels.keys()])

    with colB:
        if selected != "(none)":
            member_id = labels[selected]
            st.subheader("Member actions")
            c1, c2, c3 = st.columns(3)
            with c1:
                if st.button("Mark paid", type="primary"):
                    if attempt(lambda: store.mark_paid(member_id), "Marked as paid."):
                        st.rerun()
            with c2:
                if st.button("Edit"):
                    st.session_state.edit_member_id = member_id
                    st.rerun()
            with c3:
                delete_confirm = st.checkbox("Confirm delete (removes their transactions)", value=False)
                if st.button("Delete", type="secondary", disabled=not delete_confirm):
                    if attempt(lambda: store.delete_member(member_id), "Member deleted."):
                        st.rerun()

    st.divider()

    if st.session_state.get("edit_member_id"):
        try:
            existing = store.get_member(st.session_state.edit_member_id)
        except TrackerError:
            existing = None
            st.session_state.edit_member_id = None
        if existing:
            member_form(store, existing=existing)
        if st.button("Cancel edit"):
            st.session_state.edit_member_id = None
            st.rerun()
    else:
        member_form(store, existing=None)


def transaction_form(store: FinanceStore, members, existing=None):
    if existing:
        st.subheader(f"✏️ Edit Transaction ({existing.description})")
    else:
        st.subheader("Add transaction")

    member_options = {"(general cost)": None, **{m.name: m.id for m in members}}
    member_labels = list(member_options.keys())
    current_member = next((label for label, mid in member_options.items()
                           if existing and mid == existing.member_id), "(general cost)")
    key = existing.id if existing else "new"

    c1, c2, c3, c4 = st.columns(4)
    with c1:
        tx_type = st.selectbox(
            "Type", list(TRANSACTION_TYPES),
            index=(TRANSACTION_TYPES.index(existing.type) if existing else 0), key=f"tx_type_{key}",
        )
        amount = st.number_input(
            "Amount", min_value=0.0, step=0.01,
            value=float(existing.amount if existing else 3.79), key=f"tx_amount_{key}",
        )
    with c2:
        tx_date = st.date_input(
            "Date", value=(utils.parse_iso(existing.date) if existing else date.today()), key=f"tx_date_{key}",
        ).isoformat()
        member_label = st.selectbox(
            "Member", member_labels, index=member_labels.index(current_member), key=f"tx_member_{key}",
        )
    with c3:
        category = st.selectbox(
            "Category", list(TRANSACTION_CATEGORIES),
            index=TRANSACTION_CATEGORIES.index(existing.category if existing else "Other"), key=f"tx_category_{key}",
        )
        method = st.selectbox(
            "Payment method", list(PAYMENT_METHODS),
            index=PAYMENT_METHODS.index(existing.payment_method if existing else "Other"), key=f"tx_method_{key}",
        )
    with c4:
        description = st.text_input(
            "Description", value=(existing.description if existing else ""), key=f"tx_description_{key}",
        )
        receipt = st.text_input(
            "Receipt number", value=(existing.receipt_number or "" if existing else ""), key=f"tx_receipt_{key}",
        )

    payload = {
        "type": tx_type,
        "amount": amount,
        "date": tx_date,
        "memberId": member_options[member_label],
        "category": category,
        "paymentMethod": method,
        "description": description,
        "receiptNumber": receipt,
    }

    if st.button("Save transaction" if existing else "Record transaction", type="primary", key=f"tx_save_{key}"):
        if existing:
            ok = attempt(lambda: store.update_transaction(existing.id, payload), "Transaction updated.")
        else:
            ok = attempt(lambda: store.create_transaction(payload), "Transaction recorded.")
        if ok:
            st.session_state.edit_transaction_id = None
            st.rerun()


def transactions_page(store: FinanceStore):
    st.header("💸 Transactions")

    members = store.list_members()

    if st.session_state.get("edit_transaction_id"):
        try:
            existing = store.get_transaction(st.session_state.edit_transaction_id)
        except TrackerError:
            existing = None
            st.session_state.edit_transaction_id = None
        if existing:
            transaction_form(store, members, existing=existing)
        if st.button("Cancel edit"):
            st.session_state.edit_transaction_id = None
            st.rerun()
    else:
        transaction_form(store, members)

    st.divider()

    st.subheader("History")
    f1, f2 = st.columns(2)
    with f1:
        type_filter = st.selectbox("Filter type", ["All", *TRANSACTION_TYPES])
    with f2:
        member_filter = st.selectbox("Filter member", ["All", *[m.name for m in members]])
    member_id = next((m.id for m in members if m.name == member_filter), None)
    rows = store.list_transactions(type=None if type_filter == "All" else type_filter, member_id=member_id)
    if not rows:
        st.caption("No transactions yet.")
        return

    st.dataframe(utils.records_frame(rows, TRANSACTION_COLUMNS), use_container_width=True, hide_index=True)
    stats = store.transaction_stats()
    st.caption(
        f"Income {utils.format_money(stats['totalIncome'])} | "
        f"Outgoing {utils.format_money(stats['totalOutgoing'])} | "
        f"Net {utils.format_money(stats['netBalance'])}"
    )

    labels = {f"{t.date} - {t.description} ({t.formatted_amount}) #{t.id[:6]}": t.id for t in rows}
    selected = st.selectbox("Select transaction", ["(none)", *labels.keys()])
    if selected != "(none)":
        transaction_id = labels[selected]
        c1, c2 = st.columns(2)
        with c1:
            if st.button("Edit transaction"):
                st.session_state.edit_transaction_id = transaction_id
                st.rerun()
        with c2:
            confirm = st.checkbox("Confirm delete", value=False, key="tx_delete_confirm")
            if st.button("Delete transaction", disabled=not confirm):
                if attempt(lambda: store.delete_transaction(transaction_id), "Transaction deleted."):
                    st.rerun()


def card_details_form(store: FinanceStore, card=None):
    st.subheader("Card details")
    c1, c2, c3 = st.columns(3)
    with c1:
        card_name = st.text_input("Card name", value=(card.card_name if card else ""))
        last_four = st.text_input("Last four digits", value=(card.last_four_digits if card else ""))
    with c2:
        expiry = st.text_input("Expiry (MM/YY)", value=(card.expiry_date if card else ""))
        card_type = st.selectbox(
            "Card type", list(CARD_TYPES), index=(CARD_TYPES.index(card.card_type) if card else CARD_TYPES.index("Other"))
        )
    with c3:
        bank = st.text_input("Bank", value=(card.bank_name if card else ""))
        notes = st.text_input("Card notes", value=(card.notes if card else ""))

    payload = {
        "cardName": card_name,
        "lastFourDigits": last_four.strip(),
        "expiryDate": expiry.strip(),
        "cardType": card_type,
        "bankName": bank,
        "notes": notes,
    }
    if st.button("Save card", type="primary"):
        if card:
            ok = attempt(lambda: store.update_card(card.id, payload), "Card updated.")
        else:
            ok = attempt(lambda: store.create_card(payload), "Card saved.")
        if ok:
            st.rerun()


def card_page(store: FinanceStore):
    st.header("💳 Card")

    card = store.primary_card()
    if card:
        st.write(f"**{card.card_name}** {card.masked_card_number} | Expires **{card.expiry_date}** | "
                 f"Status **{card.status()}**")

    money = store.money_summary()
    c1, c2, c3 = st.columns(3)
    c1.metric("Current card balance", utils.format_money(money["cardBalance"]))
    c2.metric("Subscription cost", utils.format_money(money["subscriptionCost"]))
    c3.metric("Money needed", utils.format_money(money["moneyNeeded"]))

    st.divider()
    card_details_form(store, card)

    if not card:
        st.info("Save the card details to start tracking its balance.")
        return

    st.divider()
    st.subheader("Add card transaction")
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        tx_type = st.selectbox("Type", list(CARD_TRANSACTION_TYPES))
    with c2:
        amount = st.number_input("Amount", min_value=0.0, step=0.01, value=money["moneyNeeded"] or 18.99)
    with c3:
        tx_date = st.date_input("Date", value=date.today()).isoformat()
        category = st.selectbox("Category", list(CARD_TRANSACTION_CATEGORIES), index=CARD_TRANSACTION_CATEGORIES.index("Other"))
    with c4:
        description = st.text_input("Description", value="")

    if st.button("Apply", type="primary"):
        payload = {"type": tx_type, "amount": amount, "date": tx_date, "category": category, "description": description}
        if attempt(lambda: store.add_card_transaction(card.id, payload), "Card transaction applied."):
            st.rerun()

    st.subheader("Card balance transactions")
    rows = list(reversed(store.list_card_transactions(card.id)))
    if not rows:
        st.caption("No card transactions yet.")
        return
    st.dataframe(utils.records_frame(rows, CARD_TRANSACTION_COLUMNS), use_container_width=True, hide_index=True)

    labels = {f"{t.date} - {t.type} {t.formatted_amount} ({t.description}) #{t.id[:6]}": t for t in rows}
    selected = st.selectbox("Select card transaction", ["(none)", *labels.keys()])
    if selected != "(none)":
        card_transaction_form(store, card, labels[selected])


def card_transaction_form(store: FinanceStore, card, tx):
    st.caption("Amount and type stay as applied. Deleting does not change the card balance.")
    key = tx.id
    e1, e2, e3 = st.columns(3)
    with e1:
        tx_date = st.date_input("Transaction date", value=utils.parse_iso(tx.date), key=f"ctx_date_{key}").isoformat()
        description = st.text_input("Transaction description", value=tx.description, key=f"ctx_description_{key}")
    with e2:
        category = st.selectbox(
            "Transaction category", list(CARD_TRANSACTION_CATEGORIES),
            index=CARD_TRANSACTION_CATEGORIES.index(tx.category), key=f"ctx_category_{key}",
        )
        status = st.selectbox(
            "Status", list(RECORD_STATUSES), index=RECORD_STATUSES.index(tx.status), key=f"ctx_status_{key}",
        )
    with e3:
        reference = st.text_input("Reference number", value=(tx.reference_number or ""), key=f"ctx_reference_{key}")
        notes = st.text_input("Transaction notes", value=tx.notes, key=f"ctx_notes_{key}")

    payload = {
        "date": tx_date,
        "description": description,
        "category": category,
        "status": status,
        "referenceNumber": reference,
        "notes": notes,
    }
    s1, s2 = st.columns(2)
    with s1:
        if st.button("Save card transaction", type="primary"):
            if attempt(lambda: store.update_card_transaction(tx.id, payload, card_id=card.id),
                       "Card transaction updated."):
                st.rerun()
    with s2:
        confirm = st.checkbox("Confirm delete", value=False, key=f"ctx_delete_confirm_{key}")
        if st.button("Delete card transaction", disabled=not confirm):
            if attempt(lambda: store.delete_card_transaction(tx.id, card_id=card.id), "Card transaction deleted."):
                st.rerun()


def reports_page(store: FinanceStore):
    st.header("🧾 Reports")

    st.subheader("Export to CSV")
    c1, c2, c3 = st.columns(3)
    with c1:
        st.download_button(
            "Download members.csv",
            data=utils.to_csv_bytes(store.list_members(), MEMBER_COLUMNS),
            file_name="members.csv",
            mime="text/csv",
        )
    with c2:
        st.download_button(
            "Download transactions.csv",
            data=utils.to_csv_bytes(store.list_transactions(), TRANSACTION_COLUMNS),
            file_name="transactions.csv",
            mime="text/csv",
        )
    with c3:
        card = store.primary_card()
        st.download_button(
            "Download card_transactions.csv",
            data=utils.to_csv_bytes(store.list_card_transactions(card.id) if card else [], CARD_TRANSACTION_COLUMNS),
            file_name="card_transactions.csv",
            mime="text/csv",
        )

    st.divider()

    st.subheader("Income / outgoing by month")
    df = utils.monthly_summary(store.list_transactions())
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()

    st.subheader("Backup")
    st.download_button(
        "Download ytracker-data.json",
        data=json.dumps(store.export_state(), indent=2).encode("utf-8"),
        file_name="ytracker-data.json",
        mime="application/json",
    )
    upload = st.file_uploader("Restore from backup (replaces all data)", type=["json"])
    if upload is not None and st.button("Restore", type="secondary"):
        try:
            state = json.loads(upload.getvalue().decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            st.error("Backup file is not valid JSON.")
            return
        if attempt(lambda: store.import_state(state), "Backup restored."):
            st.rerun()


def settings_page(store: FinanceStore):
    st.header("⚙️ Settings")

    settings = store.get_settings()
    st.subheader("YouTube Premium cost")
    cost = st.number_input("Monthly cost (RM)", min_value=0.0, step=0.01, value=float(settings.youtube_premium_cost))
    st.caption(f"Last updated: {settings.last_updated} | Money needed uses: {store.cost_source}")
    if st.button("Update cost", type="primary"):
        if attempt(lambda: store.update_settings({"youtubePremiumCost": cost}), "Cost updated."):
            st.rerun()

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert sample members, transactions and a funded card (skips what already exists).")
    if st.button("Insert sample data"):
        if attempt(lambda: utils.insert_sample_data(store), "Sample data inserted."):
            st.rerun()


def main_app():
    store = get_store()
    st.sidebar.title("▶️ YTracker")

    pages = ["Dashboard", "Members", "Transactions", "Card", "Reports", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.session_state.page == "Dashboard":
        dashboard_page(store)
    elif st.session_state.page == "Members":
        members_page(store)
    elif st.session_state.page == "Transactions":
        transactions_page(store)
    elif st.session_state.page == "Card":
        card_page(store)
    elif st.session_state.page == "Reports":
        reports_page(store)
    elif st.session_state.page == "Settings":
        settings_page(store)


# --------- App entry ---------

def run():
    config.configure_logging()
    main_app()


if __name__ == "__main__":
    run()
