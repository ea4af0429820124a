from datetime import datetime
import uuid

from extensions import db
from models import Notification, User


def notify(
    user_id,
    type,
    title,
    message,
    link=None,
    actor_id=None,
    event_key=None,
    auto_commit=True,
):
    """Writes one in-app notification. Fire-and-forget from the engine's point of view."""
    if not user_id:
        return None

    n = Notification(
        user_id=int(user_id),
        type=type,
        title=title,
        message=message,
        link=link,
        is_read=False,
        actor_id=actor_id,
        event_key=event_key or uuid.uuid4().hex,
        created_at=datetime.utcnow(),
    )
    db.session.add(n)

    if auto_commit:
        db.session.commit()
    return n


def notify_role(
    role,
    type,
    title,
    message,
    link=None,
    actor_id=None,
    exclude_user_id=None,
    auto_commit=True,
):
    """Notifies every active user holding ``role``; one shared event_key."""
    event_key = uuid.uuid4().hex

    # set => no duplicate rows if the same user comes back twice
    user_ids = {
        int(uid)
        for (uid,) in (
            db.session.query(User.id)
            .filter(User.role == role, User.is_active.is_(True))
            .all()
        )
    }
    user_ids.discard(exclude_user_id)

    for uid in user_ids:
        notify(uid, type, title, message, link=link, actor_id=actor_id,
               event_key=event_key, auto_commit=False)

    if auto_commit and user_ids:
        db.session.commit()
    return len(user_ids)
