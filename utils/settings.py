from models import CompanySetting
from extensions import db


def get_setting(key, default=None):
    s = CompanySetting.query.filter_by(key=key).first()
    return s.value if s and s.value is not None else default


def set_setting(key, value, category=None, description=None, auto_commit=True):
    s = CompanySetting.query.filter_by(key=key).first()
    if s:
        s.value = None if value is None else str(value)
    else:
        s = CompanySetting(
            key=key,
            value=None if value is None else str(value),
            category=category,
            description=description,
        )
        db.session.add(s)

    db.session.flush()
    if auto_commit:
        db.session.commit()
    return s


def as_bool(raw, default=False):
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def as_int(raw, default=0):
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default
