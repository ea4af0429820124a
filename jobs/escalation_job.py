"""
Escalation sweep for cron / task schedulers:

    python -m jobs.escalation_job
"""
import logging
import os
import sys

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from app import create_app  # noqa: E402
from workflow.components import get_components  # noqa: E402

logger = logging.getLogger(__name__)


def run_escalation(config_object=None):
    app = create_app(config_object or os.environ.get("APP_CONFIG", "config.DevConfig"))

    with app.app_context():
        result = get_components().escalation.sweep()

        if result.escalated or result.auto_approved:
            print(f"Escalated {result.escalated} approvals, auto-approved {result.auto_approved}")
        else:
            print("No approvals to escalate")

        return result


if __name__ == "__main__":
    run_escalation()
