"""
init_db.py
----------
Create the schema and seed a small organisation for local development.
DEVELOPMENT USE ONLY

    python init_db.py            # create + seed (keeps existing rows)
    python init_db.py --reset    # drop everything first
"""

import os
import sys
from datetime import date

DEFAULT_PASSWORD = os.environ.get("SEED_PASSWORD", "password123")

# (email, name, role, department, position, manager email, director email)
SEED_USERS = [
    ("ceo@example.com", "Layla Haddad", "EXECUTIVE", "Executive Office", "Chief Executive Officer", None, None),
    ("coo@example.com", "Omar Nasser", "EXECUTIVE", "Executive Office", "Chief Operating Officer", None, None),
    ("admin@example.com", "System Admin", "ADMIN", "IT", "Administrator", None, None),
    ("hr@example.com", "Rana Saleh", "HR", "Human Resources", "HR Manager", "coo@example.com", None),
    ("director.eng@example.com", "Karim Aziz", "DEPARTMENT_DIRECTOR", "Engineering", "Engineering Director",
     "ceo@example.com", None),
    ("manager.eng@example.com", "Sara Yousef", "MANAGER", "Engineering", "Team Lead",
     "director.eng@example.com", "director.eng@example.com"),
    ("dev1@example.com", "Ali Mansour", "EMPLOYEE", "Engineering", "Software Engineer",
     "manager.eng@example.com", "director.eng@example.com"),
    ("dev2@example.com", "Nour Khalil", "EMPLOYEE", "Engineering", "Software Engineer",
     "manager.eng@example.com", "director.eng@example.com"),
]

# (code, name, is_special_leave, requires_balance, yearly entitlement)
SEED_LEAVE_TYPES = [
    ("ANNUAL", "Annual Leave", False, True, 21),
    ("SICK", "Sick Leave", False, True, 14),
    ("MARRIAGE", "Marriage Leave", True, False, 0),
    ("BEREAVEMENT", "Bereavement Leave", True, False, 0),
]

# order matters: it is the signature order on the PDF
DEFAULT_PLACEMENTS = [
    ("EMPLOYEE", "Employee"),
    ("DIRECT_MANAGER", "Direct Manager"),
    ("DEPARTMENT_HEAD", "Department Head"),
    ("HR", "Human Resources"),
    ("EXECUTIVE", "Executive"),
    ("ANOTHER_EXECUTIVE", "Executive (second)"),
]


def seed_users(db, User):
    by_email = {u.email: u for u in User.query.all()}

    for email, name, role, dept, position, _, _ in SEED_USERS:
        if email in by_email:
            continue
        u = User(email=email, name=name, role=role, department=dept, position=position, is_active=True)
        u.set_password(DEFAULT_PASSWORD)
        db.session.add(u)
        by_email[email] = u
    db.session.flush()

    for email, _, _, _, _, manager_email, director_email in SEED_USERS:
        u = by_email[email]
        if manager_email and u.manager_id is None:
            u.manager_id = by_email[manager_email].id
        if director_email and u.department_director_id is None:
            u.department_director_id = by_email[director_email].id

    db.session.commit()
    return list(by_email.values())


def seed_leave_types(db, LeaveType, LeaveBalance, users):
    year = date.today().year
    existing = {lt.code: lt for lt in LeaveType.query.all()}

    for code, name, special, requires_balance, entitled in SEED_LEAVE_TYPES:
        lt = existing.get(code)
        if lt is None:
            lt = LeaveType(code=code, name=name, is_special_leave=special, requires_balance=requires_balance)
            db.session.add(lt)
            db.session.flush()

        if not requires_balance:
            continue

        for u in users:
            found = LeaveBalance.query.filter_by(user_id=u.id, leave_type_id=lt.id, year=year).first()
            if found is None:
                db.session.add(LeaveBalance(
                    user_id=u.id, leave_type_id=lt.id, year=year,
                    entitled=entitled, used=0, pending=0, available=entitled,
                ))

    db.session.commit()


def seed_document_template(db, DocumentTemplate, SignaturePlacement):
    if DocumentTemplate.query.filter(DocumentTemplate.leave_type_id.is_(None)).first():
        return

    tpl = DocumentTemplate(name="Standard leave form", leave_type_id=None, version=1, is_active=True)
    for i, (role, label) in enumerate(DEFAULT_PLACEMENTS):
        tpl.signature_placements.append(
            SignaturePlacement(signer_role=role, label=label, is_required=True, order_index=i * 10)
        )
    db.session.add(tpl)
    db.session.commit()


def init_database(reset=False):
    from app import create_app
    from extensions import db
    from models import DocumentTemplate, LeaveBalance, LeaveType, SignaturePlacement, User
    from services.escalation_service import EscalationConfig
    from workflow.rules import seed_default_rules

    app = create_app(os.environ.get("APP_CONFIG", "config.DevConfig"))

    with app.app_context():
        if reset:
            print("Dropping all tables...")
            db.drop_all()

        # =========================
        # Tables
        # =========================
        print("Creating database tables...")
        db.create_all()

        # =========================
        # Seed data
        # =========================
        users = seed_users(db, User)
        print(f"Users: {len(users)}")

        seed_leave_types(db, LeaveType, LeaveBalance, users)
        print("Leave types and balances ready")

        created = seed_default_rules()
        print(f"Workflow rules seeded: {created}")

        EscalationConfig.initialize_default_settings()
        print("Escalation settings initialized")

        seed_document_template(db, DocumentTemplate, SignaturePlacement)
        print("Default document template ready")

        print(f"Done. Seed users log in with password: {DEFAULT_PASSWORD}")


if __name__ == "__main__":
    init_database(reset="--reset" in sys.argv)
