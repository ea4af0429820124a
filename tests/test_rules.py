"""Workflow rule resolution: matching, priority and per-role defaults."""
import pytest

from extensions import db
from models import WorkflowRule
from workflow.errors import ConfigurationError
from workflow.roles import ApprovalRole, normalize_role
from workflow.rules import (
    RequestContext,
    ResolvedWorkflow,
    WorkflowRuleResolver,
    matches_conditions,
    parse_levels,
    seed_default_rules,
)


def _rule(name, conditions, levels, priority=0, is_active=True):
    r = WorkflowRule(
        name=name,
        conditions=conditions,
        approval_levels=[{"role": lvl, "required": True} for lvl in levels],
        priority=priority,
        is_active=is_active,
    )
    db.session.add(r)
    db.session.commit()
    return r


def _roles(workflow):
    return [lvl.role for lvl in workflow.approval_levels]


class TestRoleNormalization:

    @pytest.mark.parametrize("raw, expected", [
        ("manager", ApprovalRole.DIRECT_MANAGER),
        ("DIRECT_MANAGER", ApprovalRole.DIRECT_MANAGER),
        ("department_director", ApprovalRole.DEPARTMENT_HEAD),
        ("dept-head", ApprovalRole.DEPARTMENT_HEAD),
        ("hr_manager", ApprovalRole.HR),
        ("ceo", ApprovalRole.EXECUTIVE),
        ("requester", ApprovalRole.EMPLOYEE),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_role(raw) == expected

    def test_unknown_role_raises(self):
        with pytest.raises(ConfigurationError):
            normalize_role("janitor")

    def test_parse_levels_drops_unknown_tags(self):
        levels, errors = parse_levels([{"role": "manager"}, {"role": "janitor"}, "hr"], "mixed")
        assert [lvl.role for lvl in levels] == [ApprovalRole.DIRECT_MANAGER, ApprovalRole.HR]
        assert len(errors) == 1


class TestConditionMatching:

    def test_days_greater_than_is_exclusive(self, make_user):
        user = make_user()
        cond = {"daysGreaterThan": 5}
        assert not matches_conditions(cond, RequestContext(requester=user, total_days=5))
        assert matches_conditions(cond, RequestContext(requester=user, total_days=6))

    def test_days_less_than_is_exclusive(self, make_user):
        user = make_user()
        cond = {"daysLessThan": 3}
        assert not matches_conditions(cond, RequestContext(requester=user, total_days=3))
        assert matches_conditions(cond, RequestContext(requester=user, total_days=2.5))

    def test_role_leave_type_and_department(self, make_user):
        user = make_user("MANAGER", department="Finance")
        ctx = RequestContext(requester=user, leave_type_code="ANNUAL", department="Finance")

        assert matches_conditions({"userRole": ["manager"], "leaveType": "annual"}, ctx)
        assert not matches_conditions({"userRole": ["EMPLOYEE"]}, ctx)
        assert not matches_conditions({"department": ["Engineering"]}, ctx)

    def test_special_leave_flag(self, make_user):
        user = make_user()
        assert matches_conditions({"isSpecialLeave": True}, RequestContext(requester=user, is_special_leave=True))
        assert not matches_conditions({"isSpecialLeave": True}, RequestContext(requester=user))

    def test_empty_conditions_match_everything(self, make_user):
        assert matches_conditions({}, RequestContext(requester=make_user()))


class TestResolver:

    def test_highest_priority_match_wins(self, make_user):
        user = make_user()
        _rule("low", {"userRole": ["EMPLOYEE"]}, ["EMPLOYEE", "DIRECT_MANAGER"], priority=10)
        _rule("high", {"userRole": ["EMPLOYEE"]}, ["EMPLOYEE", "HR"], priority=50)

        wf = WorkflowRuleResolver().resolve(RequestContext(requester=user, total_days=2))
        assert wf.name == "high"
        assert _roles(wf) == [ApprovalRole.EMPLOYEE, ApprovalRole.HR]

    def test_inactive_rules_are_ignored(self, make_user):
        user = make_user()
        _rule("off", {}, ["HR"], priority=99, is_active=False)

        wf = WorkflowRuleResolver().resolve(RequestContext(requester=user))
        assert wf.name == "Default Rule"

    def test_long_leave_rule_only_above_threshold(self, make_user):
        user = make_user()
        _rule("long", {"daysGreaterThan": 5}, ["DIRECT_MANAGER", "HR"], priority=50)
        resolver = WorkflowRuleResolver()

        assert resolver.resolve(RequestContext(requester=user, total_days=5)).name == "Default Rule"
        assert resolver.resolve(RequestContext(requester=user, total_days=6)).name == "long"

    def test_unknown_role_in_rule_is_reported(self, make_user):
        user = make_user()
        _rule("broken", {}, ["DIRECT_MANAGER", "JANITOR"], priority=5)

        wf = WorkflowRuleResolver().resolve(RequestContext(requester=user))
        assert _roles(wf) == [ApprovalRole.DIRECT_MANAGER]
        assert wf.configuration_errors

    def test_snapshot_round_trip_keeps_levels(self, make_user):
        user = make_user()
        _rule("snap", {}, ["EMPLOYEE", "DIRECT_MANAGER"], priority=5)
        wf = WorkflowRuleResolver().resolve(RequestContext(requester=user))

        restored = ResolvedWorkflow.from_snapshot(wf.to_snapshot())
        assert restored == wf


class TestDefaultWorkflows:

    def test_employee_goes_to_direct_manager(self, org):
        wf = WorkflowRuleResolver().default_workflow(org["E"])
        assert _roles(wf) == [ApprovalRole.EMPLOYEE, ApprovalRole.DIRECT_MANAGER]

    def test_manager_with_director_adds_department_head(self, make_user):
        x = make_user("EXECUTIVE")
        d = make_user("DEPARTMENT_DIRECTOR", manager=x)
        boss = make_user("MANAGER", manager=d)
        m = make_user("MANAGER", manager=boss, director=d)

        wf = WorkflowRuleResolver().default_workflow(m)
        assert _roles(wf) == [ApprovalRole.EMPLOYEE, ApprovalRole.DIRECT_MANAGER, ApprovalRole.DEPARTMENT_HEAD]

    def test_manager_reporting_to_executive_skips_department_head(self, make_user):
        x = make_user("EXECUTIVE")
        d = make_user("DEPARTMENT_DIRECTOR", manager=x)
        m = make_user("MANAGER", manager=x, director=d)

        wf = WorkflowRuleResolver().default_workflow(m)
        assert _roles(wf) == [ApprovalRole.EMPLOYEE, ApprovalRole.DIRECT_MANAGER]

    def test_director_goes_to_executive(self, org):
        wf = WorkflowRuleResolver().default_workflow(org["D"])
        assert _roles(wf) == [ApprovalRole.EMPLOYEE, ApprovalRole.EXECUTIVE]

    def test_executive_goes_to_another_executive(self, org):
        wf = WorkflowRuleResolver().default_workflow(org["X"])
        assert _roles(wf) == [ApprovalRole.EMPLOYEE, ApprovalRole.ANOTHER_EXECUTIVE]


class TestSeed:

    def test_seed_default_rules_once(self, app):
        assert seed_default_rules() == 6
        assert seed_default_rules() == 0
        assert WorkflowRule.query.count() == 6

    def test_seeded_special_leave_rule_wins(self, make_user):
        seed_default_rules()
        user = make_user()
        wf = WorkflowRuleResolver().resolve(
            RequestContext(requester=user, leave_type_code="MARRIAGE", is_special_leave=True, total_days=3)
        )
        assert wf.name == "Special Leave - HR Verification Required"
