import os


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class BaseConfig:
    # Security
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")

    # Database
    # None => app factory falls back to sqlite in the instance folder
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE_MAX_BYTES = int(os.getenv("LOG_FILE_MAX_BYTES", 1_000_000))
    LOG_FILE_BACKUP_COUNT = int(os.getenv("LOG_FILE_BACKUP_COUNT", 5))
    LOG_TO_FILE = True

    # Escalation defaults (CompanySetting rows override these at runtime)
    ESCALATION_DAYS_BEFORE_AUTO_APPROVAL = int(
        os.getenv("ESCALATION_DAYS_BEFORE_AUTO_APPROVAL", 3)
    )
    ESCALATION_ENABLED = _env_bool("ESCALATION_ENABLED", True)
    MAX_ESCALATION_LEVELS = int(os.getenv("MAX_ESCALATION_LEVELS", 3))
    AUTO_APPROVE_AFTER_MAX_ESCALATIONS = _env_bool(
        "AUTO_APPROVE_AFTER_MAX_ESCALATIONS", False
    )
    AUTO_SKIP_ABSENT_APPROVERS = _env_bool("AUTO_SKIP_ABSENT_APPROVERS", True)
    ESCALATION_OVERLOAD_THRESHOLD = int(os.getenv("ESCALATION_OVERLOAD_THRESHOLD", 10))
    ESCALATION_OVERLOAD_WINDOW_DAYS = int(os.getenv("ESCALATION_OVERLOAD_WINDOW_DAYS", 7))
    ESCALATION_USE_BUSINESS_DAYS = _env_bool("ESCALATION_USE_BUSINESS_DAYS", False)
    ESCALATION_THROTTLE_MINUTES = int(os.getenv("ESCALATION_THROTTLE_MINUTES", 10))
    ESCALATION_ON_REQUEST = _env_bool("ESCALATION_ON_REQUEST", False)

    # COLLAPSE / SELF_SIGN / SUBSTITUTE
    SELF_APPROVAL_POLICY = os.getenv("SELF_APPROVAL_POLICY", "SELF_SIGN")

    # Working days
    WORKING_DAYS_CACHE_TTL = int(os.getenv("WORKING_DAYS_CACHE_TTL", 3600))

    # Documents
    DOCUMENTS_DIR = os.getenv("DOCUMENTS_DIR", "generated_documents")
    COMPANY_NAME = os.getenv("COMPANY_NAME", "Company")

    # Mail
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 25))
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", False)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "leave@localhost")
    MAIL_SUPPRESS_SEND = _env_bool("MAIL_SUPPRESS_SEND", False)


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    DEBUG = False


class TestConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_TO_FILE = False
    MAIL_SUPPRESS_SEND = True
    ESCALATION_ON_REQUEST = False
    DOCUMENTS_DIR = os.getenv("TEST_DOCUMENTS_DIR", "/tmp/leave-workflow-test-docs")
