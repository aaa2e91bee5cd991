"""
Salvage Finance – Domain Models

Financial documents:
- Quotation / QuotationItem (non-binding offers, QUO-<year>-<seq>)
- Invoice / InvoiceItem (billable or payable documents, INV-<year>-<seq>)

Subsidiary ledgers touched by the lifecycle engine:
- LandEquipment (equipment stock: quantity + status)
- LandPurchase (scrap land: remaining_tonnage + scrap_tonnage_sold)
- IncomeRecord / Expense (journal, linked back to a document by reference_id)

Reference data (read-only for the engine):
- Company, Warehouse, Vessel, BankAccount

IMPORTANT:
- reference_id on journal rows is NOT a foreign key and NOT unique. Many rows may
  point at one document; reversal must always remove every match.
- Quotation and Invoice carry a version counter. Two sessions that both loaded the
  same document cannot both commit a status change.
"""

from __future__ import annotations

from datetime import datetime

from flask_login import UserMixin

from .extensions import db


# ---------------------------------------------------------------------
# Status / type vocabularies
# ---------------------------------------------------------------------
ITEM_TYPES = ("equipment_sale", "scrap_sale", "vessel_rental", "service", "other")

QUOTATION_STATUSES = ("draft", "sent", "approved", "rejected", "converted", "expired")

INVOICE_STATUSES = (
    "draft",
    "sent",
    "overdue",
    "partial",
    "paid",
    "deposit_paid",
    "cancelled",
    "cancelled_deposit_kept",
    "cancelled_refunded",
)

INVOICE_TYPES = ("income", "expense")

# Foreign keys a line item keeps, by item type. Everything else is cleared.
ITEM_TYPE_REFERENCES = {
    "equipment_sale": ("warehouse_id", "land_equipment_id"),
    "scrap_sale": ("land_id", "material_type"),
    "vessel_rental": ("vessel_id",),
    "service": (),
    "other": (),
}

ITEM_REFERENCE_FIELDS = ("warehouse_id", "land_equipment_id", "land_id", "material_type", "vessel_id")


def _iso(value):
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """Dashboard user. Capabilities come from the role (see security.ROLE_PERMISSIONS)."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    role = db.Column(db.String(30), nullable=False, default="storekeeper", index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"


# ---------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------
class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Warehouse(db.Model):
    __tablename__ = "warehouses"

    id = db.Column(db.Integer, primary_key=True)
    location = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Vessel(db.Model):
    __tablename__ = "vessels"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class BankAccount(db.Model):
    """Bank or cash account that receives payments and funds refunds."""

    __tablename__ = "bank_accounts"

    id = db.Column(db.Integer, primary_key=True)

    account_name = db.Column(db.String(120), nullable=False)
    bank_name = db.Column(db.String(120))
    account_type = db.Column(db.String(30), default="bank")
    status = db.Column(db.String(20), default="active", nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)


# ---------------------------------------------------------------------
# Subsidiary ledgers: equipment stock and land tonnage
# ---------------------------------------------------------------------
class LandEquipment(db.Model):
    """Equipment recovered from land/vessels and held for sale."""

    __tablename__ = "land_equipment"

    id = db.Column(db.Integer, primary_key=True)

    equipment_name = db.Column(db.String(255), nullable=False)
    warehouse_id = db.Column(
        db.Integer,
        db.ForeignKey("warehouses.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    quantity = db.Column(db.Float, nullable=False, default=1)
    unit = db.Column(db.String(30), default="unit")
    estimated_value = db.Column(db.Float, nullable=True)

    # available / in_warehouse / sold / ...
    status = db.Column(db.String(30), nullable=False, default="available", index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    warehouse = db.relationship("Warehouse", foreign_keys=[warehouse_id])

    def __repr__(self):
        return f"<LandEquipment {self.equipment_name} x{self.quantity} ({self.status})>"


class LandPurchase(db.Model):
    """Land bought for scrap recovery; tonnage is drawn down by scrap sales."""

    __tablename__ = "land_purchases"

    id = db.Column(db.Integer, primary_key=True)

    land_name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255))

    estimated_tonnage = db.Column(db.Float, nullable=True)
    remaining_tonnage = db.Column(db.Float, nullable=True, default=0)
    scrap_tonnage_sold = db.Column(db.Float, nullable=True, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<LandPurchase {self.land_name} remaining={self.remaining_tonnage}>"


# ---------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------
class IncomeRecord(db.Model):
    __tablename__ = "income_records"

    id = db.Column(db.Integer, primary_key=True)

    income_date = db.Column(db.Date, nullable=False, index=True)
    income_type = db.Column(db.String(30), nullable=False, default="invoice")
    source_type = db.Column(db.String(30), nullable=False, default="other")
    amount = db.Column(db.Float, nullable=False, default=0)
    description = db.Column(db.Text)

    customer_company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )
    payment_method = db.Column(db.String(30))

    # Added by a later migration; see journal.JournalWriter for the legacy shape.
    bank_account_id = db.Column(
        db.Integer,
        db.ForeignKey("bank_accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    reference_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "income_date": _iso(self.income_date),
            "income_type": self.income_type,
            "amount": self.amount,
            "description": self.description,
            "payment_method": self.payment_method,
            "bank_account_id": self.bank_account_id,
            "reference_id": self.reference_id,
        }


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)

    date = db.Column(db.Date, nullable=False, index=True)
    category = db.Column(db.String(50), default="other")
    description = db.Column(db.Text)
    amount = db.Column(db.Float, nullable=False, default=0)
    payment_method = db.Column(db.String(30))
    # pending / approved / paid / rejected
    status = db.Column(db.String(20), default="paid", nullable=False)

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )

    bank_account_id = db.Column(
        db.Integer,
        db.ForeignKey("bank_accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    reference_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": _iso(self.date),
            "category": self.category,
            "amount": self.amount,
            "description": self.description,
            "payment_method": self.payment_method,
            "bank_account_id": self.bank_account_id,
            "status": self.status,
            "reference_id": self.reference_id,
        }


# ---------------------------------------------------------------------
# Line items (structurally identical for quotations and invoices)
# ---------------------------------------------------------------------
class LineItemMixin:
    item_type = db.Column(db.String(30), nullable=False, default="service")
    description = db.Column(db.Text, nullable=False, default="")
    quantity = db.Column(db.Float, nullable=False, default=1)
    unit = db.Column(db.String(30), default="unit")
    unit_price = db.Column(db.Float, nullable=False, default=0)
    total_price = db.Column(db.Float, nullable=False, default=0)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    # Soft references selected by item_type (see ITEM_TYPE_REFERENCES)
    warehouse_id = db.Column(db.Integer, nullable=True)
    land_equipment_id = db.Column(db.Integer, nullable=True)
    land_id = db.Column(db.Integer, nullable=True)
    material_type = db.Column(db.String(80), nullable=True)
    vessel_id = db.Column(db.Integer, nullable=True)

    def line_fields(self) -> dict:
        """Copyable line content (everything but ids and the parent link)."""
        return {
            "item_type": self.item_type,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "sort_order": self.sort_order,
            "warehouse_id": self.warehouse_id,
            "land_equipment_id": self.land_equipment_id,
            "land_id": self.land_id,
            "material_type": self.material_type,
            "vessel_id": self.vessel_id,
        }

    def to_dict(self) -> dict:
        data = {"id": self.id}
        data.update(self.line_fields())
        return data


class QuotationItem(LineItemMixin, db.Model):
    __tablename__ = "quotation_items"

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(
        db.Integer,
        db.ForeignKey("quotations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    quotation = db.relationship("Quotation", back_populates="items")


class InvoiceItem(LineItemMixin, db.Model):
    __tablename__ = "invoice_items"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Source line when the invoice came from a quotation (no FK: quotation items are replaced on edit)
    quotation_item_id = db.Column(db.Integer, nullable=True)

    invoice = db.relationship("Invoice", back_populates="items")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["quotation_item_id"] = self.quotation_item_id
        return data


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------
class Quotation(db.Model):
    __tablename__ = "quotations"

    id = db.Column(db.Integer, primary_key=True)

    quotation_number = db.Column(db.String(30), nullable=False, unique=True, index=True)

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_name = db.Column(db.String(255))

    date = db.Column(db.Date, nullable=False, index=True)
    valid_until = db.Column(db.Date, nullable=True, index=True)

    status = db.Column(db.String(30), nullable=False, default="draft", index=True)

    subtotal = db.Column(db.Float, nullable=False, default=0)
    tax = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=False, default=0)

    payment_terms = db.Column(db.String(120))
    deposit_percent = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text)

    # Set exactly once, on conversion
    converted_to_invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = db.relationship("Company", foreign_keys=[company_id])

    items = db.relationship(
        "QuotationItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationItem.sort_order",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, with_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "quotation_number": self.quotation_number,
            "company_id": self.company_id,
            "client_name": self.client_name,
            "date": _iso(self.date),
            "valid_until": _iso(self.valid_until),
            "status": self.status,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "payment_terms": self.payment_terms,
            "deposit_percent": self.deposit_percent,
            "notes": self.notes,
            "converted_to_invoice_id": self.converted_to_invoice_id,
        }
        if with_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<Quotation {self.quotation_number} ({self.status})>"


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)

    invoice_number = db.Column(db.String(30), nullable=False, unique=True, index=True)
    invoice_type = db.Column(db.String(20), nullable=False, default="income", index=True)

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_name = db.Column(db.String(255))

    date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=True, index=True)

    status = db.Column(db.String(30), nullable=False, default="draft", index=True)

    payment_terms = db.Column(db.String(120))
    deposit_percent = db.Column(db.Float, nullable=True)

    subtotal = db.Column(db.Float, nullable=False, default=0)
    tax = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=False, default=0)

    notes = db.Column(db.Text)
    payment_method = db.Column(db.String(30))
    payment_bank_account_id = db.Column(
        db.Integer,
        db.ForeignKey("bank_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Deposit sub-record
    deposit_paid = db.Column(db.Boolean, nullable=False, default=False)
    deposit_paid_amount = db.Column(db.Float, nullable=True)
    deposit_paid_date = db.Column(db.Date, nullable=True)
    deposit_payment_method = db.Column(db.String(30))
    deposit_bank_account_id = db.Column(
        db.Integer,
        db.ForeignKey("bank_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    deposit_refunded = db.Column(db.Boolean, nullable=False, default=False)
    deposit_refund_date = db.Column(db.Date, nullable=True)
    deposit_refund_method = db.Column(db.String(30))
    deposit_refund_bank_account_id = db.Column(
        db.Integer,
        db.ForeignKey("bank_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    deposit_refund_notes = db.Column(db.Text)
    deposit_refund_source = db.Column(db.String(120))
    deposit_kept_as_income = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = db.relationship("Company", foreign_keys=[company_id])

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_income(self) -> bool:
        return self.invoice_type == "income"

    def to_dict(self, with_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_type": self.invoice_type,
            "company_id": self.company_id,
            "client_name": self.client_name,
            "date": _iso(self.date),
            "due_date": _iso(self.due_date),
            "status": self.status,
            "payment_terms": self.payment_terms,
            "deposit_percent": self.deposit_percent,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "notes": self.notes,
            "payment_method": self.payment_method,
            "payment_bank_account_id": self.payment_bank_account_id,
            "deposit": {
                "paid": self.deposit_paid,
                "amount": self.deposit_paid_amount,
                "date": _iso(self.deposit_paid_date),
                "method": self.deposit_payment_method,
                "bank_account_id": self.deposit_bank_account_id,
                "refunded": self.deposit_refunded,
                "refund_date": _iso(self.deposit_refund_date),
                "refund_method": self.deposit_refund_method,
                "refund_bank_account_id": self.deposit_refund_bank_account_id,
                "refund_notes": self.deposit_refund_notes,
                "refund_source": self.deposit_refund_source,
                "kept_as_income": self.deposit_kept_as_income,
            },
        }
        if with_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def __repr__(self):
        return f"<Invoice {self.invoice_number} ({self.invoice_type}, {self.status})>"


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which document, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(40), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
