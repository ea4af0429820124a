import logging

from extensions import db

logger = logging.getLogger(__name__)


class SideEffectOutbox:
    """Side effects queued during a state transition and run after it commits.

    Each effect runs on its own: a failure is logged, the session is rolled
    back and dispatch moves on to the next effect. Nothing raised by an effect
    reaches the caller.
    """

    def __init__(self, session=None):
        self.session = session or db.session
        self._effects = []

    def add(self, name, fn, *args, **kwargs):
        self._effects.append((name, fn, args, kwargs))
        return self

    def __bool__(self):
        return True

    def dispatch(self):
        """Runs every queued effect once. Returns the number that failed."""
        effects, self._effects = self._effects, []
        failures = 0

        for name, fn, args, kwargs in effects:
            try:
                fn(*args, **kwargs)
            except Exception:
                failures += 1
                logger.exception(f"Side effect failed | effect={name}")
                try:
                    self.session.rollback()
                except Exception:
                    logger.exception("Rollback after side-effect failure failed")

        if failures:
            logger.warning(f"Outbox dispatched with {failures} failure(s) out of {len(effects)}")
        return failures
