from flask import Blueprint

# =========================
# Blueprint
# =========================
admin_bp = Blueprint(
    "admin",
    __name__,
    url_prefix="/admin"
)

from . import routes  # noqa: E402,F401
