"""
BuildBooks domain models

Contractor business records, all owned by a User:
- Client, Project, Purchase
- Estimate -> EstimateSection -> EstimateItem
- Invoice -> InvoiceItem, Payment
- ChangeOrder -> ChangeOrderItem
- AuditLog

Derived amounts (item totals, section subtotals, subtotal/tax/total, balance)
are always recomputed through buildbooks.engine in recalc_totals() and stored
rounded to the cent. Derived statuses (invoice overdue, change order expired)
are NEVER stored; to_dict(now) computes them at read time.

IMPORTANT:
- Payments are append-only (see the before_update listener at the bottom).
- Client/contractor snapshot fields on documents are captured once at creation
  and are not refreshed when the source Client/User changes.
"""

from __future__ import annotations

from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import event
from werkzeug.security import check_password_hash, generate_password_hash

from .engine import aggregator, lifecycle
from .engine.conversion import EstimateSource, InvoiceDraft, SourceItem
from .engine.errors import ValidationError
from .engine.money import ZERO, as_float, money, to_decimal
from .engine.summary import InvoiceFigures
from .engine.totals import reconcile, totals_from_subtotal
from .extensions import db
from .utils import iso, utcnow


def _amount(value) -> float | None:
    return as_float(value) if value is not None else None


def _join_address(*parts) -> str:
    return ", ".join(p for p in parts if p)


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user. Its profile is the contractor snapshot source."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(20), nullable=False, default="contractor")
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    company = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    address = db.Column(db.String(255))
    license_number = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    ROLES = ("admin", "contractor")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def contractor_snapshot(self) -> dict:
        return {
            "contractor_name": self.company or self.name,
            "contractor_address": self.address,
            "contractor_phone": self.phone,
            "contractor_email": self.email,
            "contractor_license": self.license_number,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "company": self.company,
            "phone": self.phone,
            "address": self.address,
            "license_number": self.license_number,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------
# Clients & projects
# ---------------------------------------------------------------------
class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    address = db.Column(db.String(255))
    city = db.Column(db.String(100))
    state = db.Column(db.String(50))
    zip_code = db.Column(db.String(20))
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Deleting a client detaches its documents; their snapshots keep the name
    estimates = db.relationship("Estimate", back_populates="client")
    invoices = db.relationship("Invoice", back_populates="client")
    change_orders = db.relationship("ChangeOrder", back_populates="client")

    def full_address(self) -> str:
        return _join_address(self.address, self.city, " ".join(p for p in (self.state, self.zip_code) if p))

    def client_snapshot(self) -> dict:
        return {
            "client_name": self.name,
            "client_address": self.full_address(),
            "client_email": self.email,
            "client_phone": self.phone,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "notes": self.notes,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Client {self.name}>"


class Project(db.Model):
    __tablename__ = "projects"

    STATUSES = ("planning", "active", "on-hold", "completed", "cancelled")

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    project_number = db.Column(db.String(50), index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    address = db.Column(db.String(255))
    city = db.Column(db.String(100))
    state = db.Column(db.String(50))
    zip_code = db.Column(db.String(20))

    status = db.Column(db.String(20), nullable=False, default="planning", index=True)
    start_date = db.Column(db.DateTime)
    end_date = db.Column(db.DateTime)

    # Budget: grows with approved estimates and approved change orders
    estimated_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    client = db.relationship("Client", backref=db.backref("projects", lazy=True))
    purchases = db.relationship("Purchase", back_populates="project", lazy=True)
    # Deleting a project detaches its estimates and invoices and removes its
    # change orders (project_id is required there)
    estimates = db.relationship("Estimate", back_populates="project")
    invoices = db.relationship("Invoice", back_populates="project")
    change_orders = db.relationship("ChangeOrder", back_populates="project", cascade="all, delete-orphan")

    @property
    def actual_cost(self) -> Decimal:
        """Real spend: purchases booked against the project."""
        return money(sum((to_decimal(p.amount) for p in self.purchases), ZERO))

    def full_address(self) -> str:
        return _join_address(self.address, self.city, " ".join(p for p in (self.state, self.zip_code) if p))

    def add_to_budget(self, amount) -> None:
        self.estimated_cost = money(to_decimal(self.estimated_cost) + to_decimal(amount))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_number": self.project_number,
            "name": self.name,
            "client_id": self.client_id,
            "description": self.description,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "status": self.status,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "estimated_cost": _amount(self.estimated_cost),
            "actual_cost": _amount(self.actual_cost),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Project {self.project_number} - {self.name}>"


class Purchase(db.Model):
    __tablename__ = "purchases"

    STATUSES = ("pending", "paid")

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)

    vendor = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    billable = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    invoice_number = db.Column(db.String(100))

    purchase_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    due_date = db.Column(db.DateTime)
    paid_date = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project = db.relationship("Project", back_populates="purchases")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "vendor": self.vendor,
            "description": self.description,
            "amount": _amount(self.amount),
            "billable": self.billable,
            "status": self.status,
            "invoice_number": self.invoice_number,
            "purchase_date": iso(self.purchase_date),
            "due_date": iso(self.due_date),
            "paid_date": iso(self.paid_date),
            "created_at": iso(self.created_at),
        }


# ---------------------------------------------------------------------
# Snapshot columns shared by estimates and invoices
# ---------------------------------------------------------------------
class SnapshotMixin:
    client_name = db.Column(db.String(255))
    client_address = db.Column(db.String(255))
    client_email = db.Column(db.String(255))
    client_phone = db.Column(db.String(50))

    contractor_name = db.Column(db.String(255))
    contractor_address = db.Column(db.String(255))
    contractor_phone = db.Column(db.String(50))
    contractor_email = db.Column(db.String(255))
    contractor_license = db.Column(db.String(100))

    SNAPSHOT_FIELDS = (
        "client_name",
        "client_address",
        "client_email",
        "client_phone",
        "contractor_name",
        "contractor_address",
        "contractor_phone",
        "contractor_email",
        "contractor_license",
    )

    def apply_snapshot(self, snapshot: dict) -> None:
        for name in self.SNAPSHOT_FIELDS:
            if name in snapshot:
                setattr(self, name, snapshot[name])

    def snapshot(self) -> dict:
        return {name: getattr(self, name) for name in self.SNAPSHOT_FIELDS}


# ---------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------
class Estimate(SnapshotMixin, db.Model):
    __tablename__ = "estimates"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    estimate_number = db.Column(db.String(50), index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_rate = db.Column(db.Numeric(7, 3), nullable=False)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    valid_until = db.Column(db.DateTime)
    terms = db.Column(db.Text)
    notes = db.Column(db.Text)

    project_name = db.Column(db.String(255))
    project_address = db.Column(db.String(255))

    # Legal compliance (home improvement contracts)
    cancellation_rights = db.Column(db.Text)
    warranty_info = db.Column(db.Text)

    sent_at = db.Column(db.DateTime)
    responded_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    sections = db.relationship(
        "EstimateSection",
        back_populates="estimate",
        cascade="all, delete-orphan",
        order_by="EstimateSection.order_index",
    )
    project = db.relationship("Project", back_populates="estimates")
    client = db.relationship("Client", back_populates="estimates")

    def recalc_totals(self):
        """Recompute item totals, section subtotals and document totals."""
        for section in self.sections:
            section.recalc_subtotal()

        subtotal = money(sum((to_decimal(s.subtotal) for s in self.sections), ZERO))
        totals = totals_from_subtotal(subtotal, self.tax_rate)

        self.subtotal = totals.subtotal
        self.tax_rate = totals.tax_rate
        self.tax = totals.tax
        self.total = totals.total

    def verified_total(self) -> Decimal:
        """Stored total checked against a fresh computation."""
        subtotal = aggregator.document_subtotal(s.lines() for s in self.sections)
        return reconcile(f"estimate {self.id} total", self.total, totals_from_subtotal(subtotal, self.tax_rate).total)

    def to_conversion_source(self) -> EstimateSource:
        return EstimateSource(
            id=self.id,
            estimate_number=self.estimate_number,
            project_id=self.project_id,
            client_id=self.client_id,
            tax_rate=to_decimal(self.tax_rate),
            sections=[
                [
                    SourceItem(
                        description=item.description,
                        quantity=to_decimal(item.quantity),
                        unit=item.unit,
                        unit_price=to_decimal(item.unit_price),
                        total=aggregator.effective_total(item.line()),
                        category=item.category,
                        line=item.line(),
                    )
                    for item in section.items
                ]
                for section in self.sections
            ],
            snapshot=self.snapshot(),
            stored_subtotal=to_decimal(self.subtotal),
            terms=self.terms,
        )

    def to_dict(self, include_sections: bool = True) -> dict:
        data = {
            "id": self.id,
            "estimate_number": self.estimate_number,
            "project_id": self.project_id,
            "client_id": self.client_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "subtotal": _amount(self.subtotal),
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else None,
            "tax": _amount(self.tax),
            "total": _amount(self.total),
            "valid_until": iso(self.valid_until),
            "terms": self.terms,
            "notes": self.notes,
            "project_name": self.project_name,
            "project_address": self.project_address,
            "cancellation_rights": self.cancellation_rights,
            "warranty_info": self.warranty_info,
            "sent_at": iso(self.sent_at),
            "responded_at": iso(self.responded_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        data.update(self.snapshot())
        if include_sections:
            data["sections"] = [s.to_dict() for s in self.sections]
        return data

    def __repr__(self):
        return f"<Estimate {self.estimate_number}>"


class EstimateSection(db.Model):
    __tablename__ = "estimate_sections"

    id = db.Column(db.Integer, primary_key=True)
    estimate_id = db.Column(
        db.Integer,
        db.ForeignKey("estimates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    estimate = db.relationship("Estimate", back_populates="sections")
    items = db.relationship(
        "EstimateItem",
        back_populates="section",
        cascade="all, delete-orphan",
        order_by="EstimateItem.id",
    )

    def lines(self) -> list:
        return [item.line() for item in self.items]

    def recalc_subtotal(self):
        for item in self.items:
            item.total = aggregator.effective_total(item.line())
        self.subtotal = aggregator.section_subtotal(self.lines())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "order": self.order_index,
            "subtotal": _amount(self.subtotal),
            "items": [i.to_dict() for i in self.items],
        }


class EstimateItem(db.Model):
    __tablename__ = "estimate_items"

    CATEGORIES = ("materials", "equipment", "labor")

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer,
        db.ForeignKey("estimate_sections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0"))
    unit = db.Column(db.String(50))
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Explicit override; when set it is authoritative over quantity * unit_price
    total_override = db.Column(db.Numeric(12, 2), nullable=True)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    category = db.Column(db.String(20), nullable=False, default="materials")
    margin = db.Column(db.Numeric(6, 2), nullable=False, default=Decimal("0.00"))
    waste_factor = db.Column(db.Numeric(6, 2), nullable=False, default=Decimal("0.00"))

    notes = db.Column(db.Text)
    brand = db.Column(db.String(120))
    model = db.Column(db.String(120))
    supplier = db.Column(db.String(255))
    lead_time_days = db.Column(db.Integer)

    section = db.relationship("EstimateSection", back_populates="items")

    def line(self):
        return aggregator.line_input(
            quantity=self.quantity,
            unit_price=self.unit_price,
            total=self.total_override,
            margin=self.margin,
            waste_factor=self.waste_factor,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": float(self.quantity) if self.quantity is not None else 0.0,
            "unit": self.unit,
            "unit_price": _amount(self.unit_price),
            "total": _amount(self.total),
            "total_override": _amount(self.total_override),
            "category": self.category,
            "margin": float(self.margin or 0),
            "waste_factor": float(self.waste_factor or 0),
            "notes": self.notes,
            "brand": self.brand,
            "model": self.model,
            "supplier": self.supplier,
            "lead_time_days": self.lead_time_days,
        }


# ---------------------------------------------------------------------
# Invoices & payments
# ---------------------------------------------------------------------
class Invoice(SnapshotMixin, db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    estimate_id = db.Column(db.Integer, db.ForeignKey("estimates.id", ondelete="SET NULL"), nullable=True, index=True)

    invoice_number = db.Column(db.String(50), index=True)

    # Stored status only (draft/sent/paid/cancelled). "overdue" is derived.
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    type = db.Column(db.String(20), nullable=False, default="final")

    issue_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    due_date = db.Column(db.DateTime, nullable=False)
    payment_terms = db.Column(db.String(100))

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_rate = db.Column(db.Numeric(7, 3), nullable=False)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Progress billing: when set, the amount is the pre-tax billed base
    progress_phase = db.Column(db.String(120))
    progress_percentage = db.Column(db.Numeric(6, 2))
    progress_amount = db.Column(db.Numeric(12, 2))

    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    notes = db.Column(db.Text)
    terms = db.Column(db.Text)
    late_fee_rate = db.Column(db.Numeric(6, 2))

    # Conversion retries with the same key return the same invoice
    idempotency_key = db.Column(db.String(255), nullable=True)

    sent_at = db.Column(db.DateTime)
    paid_date = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )
    estimate = db.relationship("Estimate", backref=db.backref("invoices", lazy=True))
    project = db.relationship("Project", back_populates="invoices")
    client = db.relationship("Client", back_populates="invoices")

    __table_args__ = (
        db.UniqueConstraint("owner_id", "estimate_id", "idempotency_key", name="uq_invoice_conversion_key"),
    )

    @classmethod
    def from_draft(cls, draft: InvoiceDraft, owner_id: int, idempotency_key: str | None = None) -> "Invoice":
        """Materialize a conversion result. Item totals are kept as overrides."""
        progress = draft.progress_billing or {}
        invoice = cls(
            owner_id=owner_id,
            estimate_id=draft.estimate_id,
            project_id=draft.project_id,
            client_id=draft.client_id,
            invoice_number=draft.invoice_number,
            status=draft.status,
            type=draft.type,
            issue_date=draft.issue_date,
            due_date=draft.due_date,
            payment_terms=draft.payment_terms,
            subtotal=draft.totals.subtotal,
            tax_rate=draft.totals.tax_rate,
            tax=draft.totals.tax,
            total=draft.totals.total,
            progress_phase=progress.get("phase"),
            progress_percentage=progress.get("percentage"),
            progress_amount=progress.get("amount"),
            amount_paid=draft.amount_paid,
            balance=draft.balance,
            notes=draft.notes,
            terms=draft.terms,
            idempotency_key=idempotency_key,
        )
        invoice.apply_snapshot(draft.snapshot)
        invoice.items = [
            InvoiceItem(
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                total_override=item.total,
                total=item.total,
                category=item.category if item.category in InvoiceItem.CATEGORIES else "other",
            )
            for item in draft.items
        ]
        return invoice

    def billing_base(self) -> Decimal:
        if self.progress_amount is not None:
            return money(self.progress_amount)
        return aggregator.section_subtotal(item.line() for item in self.items)

    def recalc_totals(self):
        """
        Recompute subtotal/tax/total from the billing base, then the balance.

        amount_paid is always the sum of recorded payments.
        """
        for item in self.items:
            item.total = aggregator.effective_total(item.line())

        totals = totals_from_subtotal(self.billing_base(), self.tax_rate)
        self.subtotal = totals.subtotal
        self.tax_rate = totals.tax_rate
        self.tax = totals.tax
        self.total = totals.total

        paid = money(sum((to_decimal(p.amount) for p in self.payments), ZERO))
        self.amount_paid = reconcile(f"invoice {self.id} amount_paid", self.amount_paid, paid)
        self.balance = money(totals.total - paid)

    def state(self) -> lifecycle.InvoiceState:
        return lifecycle.InvoiceState(
            status=self.status,
            total=to_decimal(self.total),
            amount_paid=to_decimal(self.amount_paid),
        )

    def effective_status(self, now) -> str:
        return lifecycle.invoice_status(self.status, self.due_date, self.balance, now)

    def figures(self) -> InvoiceFigures:
        return InvoiceFigures(
            status=self.status,
            total=to_decimal(self.total),
            balance=to_decimal(self.balance),
            due_date=self.due_date,
            paid_date=self.paid_date,
        )

    def progress_billing(self) -> dict | None:
        if self.progress_amount is None:
            return None
        return {
            "phase": self.progress_phase,
            "percentage": float(self.progress_percentage) if self.progress_percentage is not None else None,
            "amount": _amount(self.progress_amount),
        }

    def to_dict(self, now, include_children: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "project_id": self.project_id,
            "client_id": self.client_id,
            "estimate_id": self.estimate_id,
            "status": self.effective_status(now),
            "stored_status": self.status,
            "type": self.type,
            "issue_date": iso(self.issue_date),
            "due_date": iso(self.due_date),
            "days_overdue": lifecycle.days_overdue(self.due_date, now)
            if self.effective_status(now) == "overdue"
            else 0,
            "payment_terms": self.payment_terms,
            "subtotal": _amount(self.subtotal),
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else None,
            "tax": _amount(self.tax),
            "total": _amount(self.total),
            "progress_billing": self.progress_billing(),
            "amount_paid": _amount(self.amount_paid),
            "balance": _amount(self.balance),
            "notes": self.notes,
            "terms": self.terms,
            "late_fee_rate": float(self.late_fee_rate) if self.late_fee_rate is not None else None,
            "sent_at": iso(self.sent_at),
            "paid_date": iso(self.paid_date),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        data.update(self.snapshot())
        if include_children:
            data["items"] = [i.to_dict() for i in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data

    def __repr__(self):
        return f"<Invoice {self.invoice_number}>"


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"

    CATEGORIES = aggregator.LINE_CATEGORIES

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0"))
    unit = db.Column(db.String(50))
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_override = db.Column(db.Numeric(12, 2), nullable=True)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    category = db.Column(db.String(20), nullable=False, default="other")

    invoice = db.relationship("Invoice", back_populates="items")

    def line(self):
        return aggregator.line_input(self.quantity, self.unit_price, total=self.total_override)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": float(self.quantity) if self.quantity is not None else 0.0,
            "unit": self.unit,
            "unit_price": _amount(self.unit_price),
            "total": _amount(self.total),
            "category": self.category,
        }


class Payment(db.Model):
    """A recorded financial event. Append-only."""

    __tablename__ = "payments"

    METHODS = lifecycle.PAYMENT_METHODS

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    payment_method = db.Column(db.String(20), nullable=False, default="other")
    reference = db.Column(db.String(255))
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": _amount(self.amount),
            "payment_date": iso(self.payment_date),
            "payment_method": self.payment_method,
            "reference": self.reference,
            "notes": self.notes,
            "created_at": iso(self.created_at),
        }


@event.listens_for(Payment, "before_update")
def _payments_are_append_only(mapper, connection, target):
    raise ValidationError("Payments are append-only and cannot be modified.")


# ---------------------------------------------------------------------
# Change orders
# ---------------------------------------------------------------------
class ChangeOrder(db.Model):
    __tablename__ = "change_orders"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    change_order_number = db.Column(db.String(50), index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    reason = db.Column(db.Text)
    impact_on_schedule = db.Column(db.String(255))

    original_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    # Signed: negative for scope deletions
    change_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    new_total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Stored status only (pending/approved/declined). "expired" is derived.
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    approval_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)

    client_response = db.Column(db.String(20))
    client_response_date = db.Column(db.DateTime)
    client_response_notes = db.Column(db.Text)

    project_name = db.Column(db.String(255))
    client_name = db.Column(db.String(255))
    client_email = db.Column(db.String(255))

    sent_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "ChangeOrderItem",
        back_populates="change_order",
        cascade="all, delete-orphan",
        order_by="ChangeOrderItem.id",
    )
    project = db.relationship("Project", back_populates="change_orders")
    client = db.relationship("Client", back_populates="change_orders")

    def recalc_totals(self):
        """Items (when present) drive change_amount; new total follows."""
        if self.items:
            for item in self.items:
                item.total = aggregator.effective_total(item.line())
            self.change_amount = lifecycle.signed_change_amount((i.type, i.line()) for i in self.items)
        self.new_total_amount = lifecycle.new_total_amount(self.original_amount, self.change_amount)

    def state(self) -> lifecycle.ChangeOrderState:
        return lifecycle.ChangeOrderState(
            status=self.status,
            expires_at=self.expires_at,
            client_response=self.client_response,
        )

    def effective_status(self, now) -> str:
        return lifecycle.change_order_status(self.status, self.expires_at, self.client_response, now)

    def to_dict(self, now, include_token: bool = True) -> dict:
        data = {
            "id": self.id,
            "change_order_number": self.change_order_number,
            "project_id": self.project_id,
            "client_id": self.client_id,
            "project_name": self.project_name,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "title": self.title,
            "description": self.description,
            "reason": self.reason,
            "impact_on_schedule": self.impact_on_schedule,
            "original_amount": _amount(self.original_amount),
            "change_amount": _amount(self.change_amount),
            "new_total_amount": _amount(self.new_total_amount),
            "status": self.effective_status(now),
            "stored_status": self.status,
            "expires_at": iso(self.expires_at),
            "client_response": self.client_response,
            "client_response_date": iso(self.client_response_date),
            "client_response_notes": self.client_response_notes,
            "sent_at": iso(self.sent_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "items": [i.to_dict() for i in self.items],
        }
        if include_token:
            data["approval_token"] = self.approval_token
        return data

    def __repr__(self):
        return f"<ChangeOrder {self.change_order_number}>"


class ChangeOrderItem(db.Model):
    __tablename__ = "change_order_items"

    TYPES = lifecycle.CHANGE_ITEM_TYPES
    CATEGORIES = ("materials", "equipment", "labor", "permits", "other")

    id = db.Column(db.Integer, primary_key=True)
    change_order_id = db.Column(
        db.Integer,
        db.ForeignKey("change_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False, default=Decimal("0"))
    unit = db.Column(db.String(50))
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    type = db.Column(db.String(20), nullable=False, default="addition")
    category = db.Column(db.String(20), nullable=False, default="other")

    change_order = db.relationship("ChangeOrder", back_populates="items")

    def line(self):
        return aggregator.line_input(self.quantity, self.unit_price)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": float(self.quantity) if self.quantity is not None else 0.0,
            "unit": self.unit,
            "unit_price": _amount(self.unit_price),
            "total": _amount(self.total),
            "type": self.type,
            "category": self.category,
        }


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which record, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    email_snapshot = db.Column(db.String(255), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
