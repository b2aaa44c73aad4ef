"""
buildbooks/seed.py

Seed a demo contractor account with sample business records.

Rules:
- Safe to run multiple times (idempotent): the user is matched by email,
  clients by name and projects by name, all under that user.
- The sample estimate is only created once per project.
- All amounts go through recalc_totals(); nothing is hard-coded as a total.
"""

from __future__ import annotations

from decimal import Decimal

from .engine.numbering import ESTIMATE_PREFIX, PROJECT_PREFIX, document_number
from .engine.totals import DEFAULT_TAX_RATE
from .extensions import db
from .models import Client, Estimate, EstimateItem, EstimateSection, Project, User
from .utils import utcnow

DEMO_CLIENTS = [
    # name, email, phone, address, city, state, zip
    ("Maria Gonzalez", "maria.gonzalez@example.com", "(555) 123-4567", "123 Main Street", "Newark", "NJ", "07102"),
    ("Carlos Rodriguez", "carlos.rodriguez@example.com", "(555) 234-5678", "456 Business Ave", "Trenton", "NJ", "08608"),
]

DEMO_PROJECTS = [
    # name, client index, status, description
    ("Kitchen Remodel", 0, "active", "Full kitchen remodel with new cabinets and countertops"),
    ("Office Build-Out", 1, "planning", "Tenant improvement for a 2,000 sq ft office"),
]

DEMO_SECTIONS = [
    # section name, [(description, quantity, unit, unit_price, category)]
    (
        "Demolition",
        [
            ("Remove existing cabinets", Decimal("1"), "job", Decimal("450.00"), "labor"),
            ("Dumpster rental", Decimal("1"), "week", Decimal("300.00"), "equipment"),
        ],
    ),
    (
        "Cabinets & Countertops",
        [
            ("Shaker cabinets", Decimal("12"), "lf", Decimal("185.00"), "materials"),
            ("Quartz countertop", Decimal("45"), "sqft", Decimal("68.00"), "materials"),
            ("Installation", Decimal("24"), "hr", Decimal("75.00"), "labor"),
        ],
    ),
]


def _get_or_create_user(email: str, password: str) -> User:
    user = User.query.filter_by(email=email).first()
    if user:
        return user

    user = User(
        email=email,
        name="Demo Contractor",
        company="Demo Builders LLC",
        phone="(555) 000-1111",
        address="1 Builder Way, Newark, NJ 07102",
        license_number="13VH00000000",
        role="contractor",
        is_active=True,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def _sample_estimate(user: User, project: Project) -> Estimate:
    client = project.client
    estimate = Estimate(
        owner_id=user.id,
        project_id=project.id,
        client_id=client.id if client else None,
        estimate_number=document_number(ESTIMATE_PREFIX, utcnow()),
        name=f"{project.name} estimate",
        status="draft",
        tax_rate=DEFAULT_TAX_RATE,
        project_name=project.name,
        project_address=project.full_address(),
        terms="50% deposit, balance on completion.",
    )
    if client is not None:
        estimate.apply_snapshot(client.client_snapshot())
    estimate.apply_snapshot(user.contractor_snapshot())

    for order, (section_name, items) in enumerate(DEMO_SECTIONS):
        section = EstimateSection(name=section_name, order_index=order)
        section.items = [
            EstimateItem(description=desc, quantity=qty, unit=unit, unit_price=price, category=category)
            for desc, qty, unit, price, category in items
        ]
        estimate.sections.append(section)

    estimate.recalc_totals()
    return estimate


def seed_demo_data(email: str, password: str) -> User:
    """
    Create the demo user, clients, projects and one draft estimate per project.

    Idempotent behavior:
    - Existing records (matched by email / name) are reused, never duplicated.
    """
    user = _get_or_create_user(email, password)

    clients = []
    for name, client_email, phone, address, city, state, zip_code in DEMO_CLIENTS:
        client = Client.query.filter_by(owner_id=user.id, name=name).first()
        if not client:
            client = Client(
                owner_id=user.id,
                name=name,
                email=client_email,
                phone=phone,
                address=address,
                city=city,
                state=state,
                zip_code=zip_code,
            )
            db.session.add(client)
        clients.append(client)

    db.session.flush()

    for name, client_index, status, description in DEMO_PROJECTS:
        project = Project.query.filter_by(owner_id=user.id, name=name).first()
        if not project:
            client = clients[client_index]
            project = Project(
                owner_id=user.id,
                client=client,
                project_number=document_number(PROJECT_PREFIX, utcnow()),
                name=name,
                description=description,
                status=status,
                city=client.city,
                state=client.state,
                zip_code=client.zip_code,
            )
            db.session.add(project)
            db.session.flush()

        if not Estimate.query.filter_by(owner_id=user.id, project_id=project.id).first():
            db.session.add(_sample_estimate(user, project))

    db.session.commit()
    return user
