"""
Authentication Routes

Provides:
- /auth/signup
- /auth/login
- /auth/logout
- /auth/me (GET profile, PATCH profile)
- /auth/csrf-token

Rules:
- Only active users may log in.
- Credentials are validated via password hash; the hash never leaves the server.
- The profile is the contractor snapshot source for new estimates and invoices.
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ... import store
from ...engine.errors import ValidationError
from ...models import User
from ...utils import clean_text, json_body, require_text

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

MIN_PASSWORD_LENGTH = 8
PROFILE_FIELDS = ("name", "company", "phone", "address", "license_number")


# ============================================================
# SIGNUP
# ============================================================

@auth_bp.route("/signup", methods=["POST"])
def signup():
    """Create a contractor account and log it in."""
    data = json_body()

    email = require_text(data, "email").lower()
    name = require_text(data, "name")
    password = data.get("password") or ""

    if "@" not in email:
        raise ValidationError("'email' must be a valid email address.", field="email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"'password' must be at least {MIN_PASSWORD_LENGTH} characters.", field="password"
        )
    if User.query.filter_by(email=email).first():
        raise ValidationError("An account with this email already exists.", field="email")

    user = User(
        email=email,
        name=name,
        company=clean_text(data.get("company")),
        phone=clean_text(data.get("phone")),
        address=clean_text(data.get("address")),
        license_number=clean_text(data.get("license_number")),
        role="contractor",
        is_active=True,
    )
    user.set_password(password)
    store.create(user)

    login_user(user)
    return jsonify(user.to_dict()), 201


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate a user."""
    data = json_body()
    email = (clean_text(data.get("email")) or "").lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()

    if not user or not user.check_password(password):
        return jsonify({"error": "INVALID_CREDENTIALS", "message": "Wrong email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "ACCOUNT_DISABLED", "message": "This account is disabled."}), 403

    login_user(user, remember=bool(data.get("remember")))
    return jsonify(user.to_dict())


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    return jsonify({"message": "Logged out."})


# ============================================================
# PROFILE
# ============================================================

@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(current_user.to_dict())


@auth_bp.route("/me", methods=["PATCH"])
@login_required
def update_me():
    """
    Update the contractor profile.

    Existing documents keep their contractor snapshot; only documents
    created afterwards see the new values.
    """
    data = json_body()
    user = current_user._get_current_object()
    before = store.snapshot(user)

    for field in PROFILE_FIELDS:
        if field in data:
            setattr(user, field, clean_text(data.get(field)))
    if not user.name:
        raise ValidationError("'name' is required.", field="name")

    if data.get("password"):
        if len(data["password"]) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"'password' must be at least {MIN_PASSWORD_LENGTH} characters.", field="password"
            )
        user.set_password(data["password"])

    store.update(user, before)
    return jsonify(user.to_dict())


# ============================================================
# CSRF
# ============================================================

@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Token for the X-CSRFToken header on mutating requests."""
    return jsonify({"csrf_token": generate_csrf()})
