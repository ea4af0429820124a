"""Post-commit side effects run independently of each other."""
from extensions import db
from models import Notification
from utils.events import notify
from utils.outbox import SideEffectOutbox


def test_failing_effect_does_not_stop_the_rest(make_user):
    user = make_user()
    calls = []

    def broken():
        raise RuntimeError("smtp down")

    outbox = SideEffectOutbox()
    outbox.add("first", calls.append, 1)
    outbox.add("broken", broken)
    outbox.add("notify", notify, user.id, "INFO", "Hello", "Still delivered")

    assert outbox.dispatch() == 1
    assert calls == [1]
    assert Notification.query.filter_by(user_id=user.id).count() == 1
    assert outbox.dispatch() == 0


def test_failed_effect_rolls_back_its_own_writes(make_user):
    user = make_user()

    def half_written():
        notify(user.id, "INFO", "Partial", "never committed", auto_commit=False)
        raise RuntimeError("boom")

    outbox = SideEffectOutbox().add("partial", half_written)
    assert outbox.dispatch() == 1

    db.session.commit()
    assert Notification.query.filter_by(user_id=user.id).count() == 0


def test_dispatch_runs_each_effect_once(app):
    calls = []
    outbox = SideEffectOutbox().add("once", calls.append, "x")
    outbox.dispatch()
    outbox.dispatch()
    assert calls == ["x"]

