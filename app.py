import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask, current_app, jsonify, request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, login_manager, mail, migrate
from models import User
from workflow.errors import WorkflowError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


# ======================
# Logging
# ======================
def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
               for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    if app.config.get("LOG_TO_FILE") and not app.config.get("TESTING"):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "workflow.log"),
            maxBytes=app.config.get("LOG_FILE_MAX_BYTES", 1_000_000),
            backupCount=app.config.get("LOG_FILE_BACKUP_COUNT", 5),
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """SQLite only: enforce FKs and wait on locks instead of failing fast."""
    if type(dbapi_connection).__module__.split(".")[0] not in ("sqlite3", "pysqlite2"):
        return
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs behave
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


@event.listens_for(Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


# ======================
# App factory
# ======================
def create_app(config_object="config.DevConfig"):
    app = Flask(__name__)
    app.config.from_object(config_object)

    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        os.makedirs(app.instance_path, exist_ok=True)
        db_path = os.path.join(app.instance_path, "leave_workflow.db")
        app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{db_path}"

    configure_logging(app)

    # ======================
    # Extensions Init
    # ======================
    db.init_app(app)
    migrate.init_app(app, db)
    mail.init_app(app)
    login_manager.init_app(app)

    # ======================
    # Blueprints
    # ======================
    from auth import auth_bp
    from workflow import workflow_bp
    from delegation import delegation_bp
    from admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(delegation_bp)
    app.register_blueprint(admin_bp)

    from workflow.components import build_components
    app.extensions["workflow"] = build_components(app.config)

    register_error_handlers(app)
    register_hooks(app)

    logger.info(f"App created | config={config_object}")
    return app


# ======================
# Error Handlers
# ======================
def register_error_handlers(app):
    @app.errorhandler(WorkflowError)
    def _handle_workflow_error(err):
        logger.info(f"{err.code} | path={request.path} | {err}")
        return jsonify(err.to_dict()), err.http_status

    @app.errorhandler(401)
    def _handle_401(err):
        return jsonify({"error": "unauthorized", "message": "Login required"}), 401

    @app.errorhandler(403)
    def _handle_403(err):
        return jsonify({"error": "forbidden", "message": "You do not have permission"}), 403

    @app.errorhandler(404)
    def _handle_404(err):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404


# ======================
# Hooks
# ======================
def register_hooks(app):
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        db.session.remove()

    if app.config.get("ESCALATION_ON_REQUEST"):
        @app.before_request
        def _opportunistic_escalation():
            from services.escalation_service import run_escalation_if_needed

            if request.endpoint is None or request.endpoint == "static":
                return
            try:
                run_escalation_if_needed(current_app.extensions["workflow"].escalation)
            except SQLAlchemyError:
                # Keep serving even if the sweep fails
                db.session.rollback()
                logger.exception("Opportunistic escalation sweep failed")


# ======================
# Login Manager
# ======================
@login_manager.user_loader
def load_user(user_id):
    try:
        uid = int(user_id)
    except (TypeError, ValueError):
        logger.warning(f"user_loader invalid user_id: {user_id}")
        return None

    user = db.session.get(User, uid)
    if user is None:
        logger.warning(f"user_loader: user not found (id={uid})")
    return user


@login_manager.unauthorized_handler
def unauthorized():
    logger.warning(f"Unauthorized access | path={request.path}")
    return jsonify({"error": "unauthorized", "message": "Login required"}), 401


if __name__ == "__main__":
    create_app().run()
