import logging

from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from . import auth_bp
from models import User
from workflow.errors import ValidationError

logger = logging.getLogger(__name__)


# ======================
# Auth Routes
# ======================
@auth_bp.route("/login", methods=["POST"])
def login():
    body = request.get_json(silent=True) or request.form
    email = (body.get("email") or "").strip().lower()
    password = body.get("password") or ""

    if not email or not password:
        raise ValidationError("email and password are required")

    user = User.query.filter_by(email=email).first()

    if user and user.is_active and user.check_password(password):
        login_user(user, remember=True)
        logger.info(f"Login ok | user={user.id}")
        return jsonify({"id": user.id, "name": user.full_name, "role": user.role})

    logger.warning(f"Login failed | email={email}")
    return jsonify({"error": "unauthorized", "message": "Invalid credentials"}), 401


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    uid = current_user.id
    logout_user()
    logger.info(f"Logout | user={uid}")
    return jsonify({"ok": True})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({
        "id": current_user.id,
        "email": current_user.email,
        "name": current_user.full_name,
        "role": current_user.role,
        "department": current_user.department,
        "manager_id": current_user.manager_id,
    })
