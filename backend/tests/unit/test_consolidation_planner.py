"""
Test consolidation planning and the safety gate
"""

import re
from unittest.mock import Mock

import pytest

from agentgrid.consolidation import (
    ConsolidationOpportunity,
    ConsolidationPlanner,
    ContentOverlapResolution,
    DuplicateFieldConsolidation,
    FieldRename,
    Level,
    SimilarFieldMerge,
    common_target_name,
    format_duration,
)
from agentgrid.core.exceptions import NoOpportunities, UnsafePlan


def opportunity(fields, kind="duplicate", priority="high", risk="low", complexity="low"):
    return ConsolidationOpportunity(
        kind=kind,
        fields=tuple(fields),
        priority=priority,
        risk=risk,
        complexity=complexity,
    )


@pytest.fixture
def planner(fast_settings):
    return ConsolidationPlanner(fast_settings)


class TestHelpers:
    """Test naming and formatting helpers"""

    def test_common_target_name(self):
        """Test the first word shared by every field name becomes the target"""
        assert common_target_name(["Contacts.Email Address", "Leads.Email"]) == "Email"
        assert common_target_name(["Contacts.Work Email Address", "Leads.Email Address"]) == "Email"
        assert common_target_name(["Contacts.Customer Email", "Contacts.Customer Email Address"]) == "Customer"

    def test_common_target_name_matches_inside_words(self):
        """Test a word contained in a longer word still counts as shared"""
        assert common_target_name(["Contacts.Email", "Contacts.Emails_Old"]) == "Email"

    def test_common_target_name_fallback(self):
        """Test unrelated names fall back to Consolidated_{first}"""
        assert common_target_name(["Contacts.Phone", "Contacts.Mobile"]) == "Consolidated_Phone"

    def test_format_duration(self):
        """Test minute and hour formatting"""
        assert format_duration(17) == "17 minutes"
        assert format_duration(59) == "59 minutes"
        assert format_duration(60) == "1h 0m"
        assert format_duration(106) == "1h 46m"


class TestSelection:
    """Test auto-selection and explicit selection"""

    def test_auto_select_only_safe_high_priority(self, planner):
        """Test auto-select keeps high priority, low risk, low complexity"""
        opportunities = [
            opportunity(["Contacts.Email", "Contacts.E-mail"]),
            opportunity(["Contacts.Phone", "Contacts.Phone Number"], priority="medium"),
            opportunity(["Leads.Name", "Leads.Full Name"], complexity="medium"),
        ]

        plan = planner.create_plan(opportunities)

        assert plan.opportunities == [opportunities[0]]
        assert plan.total_operations == 1

    def test_auto_select_capped(self, planner):
        """Test auto-select takes at most the configured limit"""
        opportunities = [opportunity([f"T{i}.A", f"T{i}.B"]) for i in range(7)]

        plan = planner.create_plan(opportunities)

        assert len(plan.opportunities) == 5

    def test_nothing_selectable(self, planner):
        """Test NoOpportunities when auto-select finds nothing"""
        with pytest.raises(NoOpportunities) as exc_info:
            planner.create_plan([opportunity(["T.A", "T.B"], risk="medium")])

        assert exc_info.value.error_code == "PLAN_001"

    def test_empty_input(self, planner):
        """Test NoOpportunities for an empty list"""
        with pytest.raises(NoOpportunities):
            planner.create_plan([])

    def test_explicit_selection(self, planner):
        """Test indexes select opportunities regardless of auto-select rules"""
        opportunities = [
            opportunity(["T.A", "T.B"]),
            opportunity(["T.C", "T.D"], priority="low", risk="medium"),
        ]

        plan = planner.create_plan(opportunities, selection=[1])

        assert plan.opportunities == [opportunities[1]]

    def test_accepts_dicts(self, planner):
        """Test raw analyzer dicts are validated into opportunities"""
        plan = planner.create_plan(
            [{"kind": "duplicate", "fields": ["T.Email", "T.Email 2"], "priority": "high", "risk": "low", "complexity": "low"}]
        )

        assert plan.phases[0].operations[0].target_field == "Email"


class TestPhases:
    """Test phase layout and high-risk exclusion"""

    def test_low_before_medium(self, planner):
        """Test the low-risk phase precedes the medium-risk phase"""
        opportunities = [
            opportunity(["T.C", "T.D"], risk="medium"),
            opportunity(["T.A", "T.B"]),
        ]

        plan = planner.create_plan(opportunities, selection=[0, 1])

        assert [p.name for p in plan.phases] == ["Low-Risk Consolidations", "Medium-Risk Consolidations"]
        assert plan.phases[0].risk_level == Level.LOW

    def test_empty_phases_omitted(self, planner):
        """Test a plan with only medium-risk work has one phase"""
        plan = planner.create_plan([opportunity(["T.A", "T.B"], risk="medium")], selection=[0])

        assert [p.name for p in plan.phases] == ["Medium-Risk Consolidations"]

    def test_high_risk_excluded(self, planner):
        """Test high-risk opportunities are listed as excluded, never phased"""
        opportunities = [opportunity(["T.A", "T.B"]), opportunity(["T.X", "T.Y"], risk="high")]

        plan = planner.create_plan(opportunities, selection=[0, 1])

        assert plan.excluded == [opportunities[1]]
        assert plan.total_operations == 1
        assert plan.risk_assessment.level == Level.HIGH

    def test_only_high_risk_is_unsafe(self, planner):
        """Test UnsafePlan when exclusion leaves nothing to run"""
        with pytest.raises(UnsafePlan):
            planner.create_plan([opportunity(["T.X", "T.Y"], risk="high")], selection=[0])

    def test_operation_kinds(self, planner):
        """Test each opportunity kind converts to its operation"""
        opportunities = [
            opportunity(["T.Email", "T.Email Address"], kind="duplicate"),
            opportunity(["T.Phone", "T.Phone Number"], kind="similar"),
            opportunity(["T.Notes", "T.Description"], kind="content-overlap"),
            opportunity(["T.Fone", "T.Phone"], kind="rename"),
        ]

        plan = planner.create_plan(opportunities, selection=[0, 1, 2, 3])
        operations = plan.phases[0].operations

        assert [type(op) for op in operations] == [
            DuplicateFieldConsolidation,
            SimilarFieldMerge,
            ContentOverlapResolution,
            FieldRename,
        ]
        assert operations[1].field1 == "T.Phone"
        assert operations[3].old_name == "Fone"
        assert operations[3].new_name == "Phone"

    def test_estimated_records(self, planner):
        """Test 100 records are estimated per affected table"""
        plan = planner.create_plan([opportunity(["Contacts.Email", "Leads.Email"])])

        operation = plan.phases[0].operations[0]
        assert operation.affected_tables == ("Contacts", "Leads")
        assert operation.estimated_records == 200


class TestPlanContents:
    """Test risk, duration, rollback plan and id"""

    def test_plan_id_format(self, planner):
        """Test ids look like consolidation-plan-{timestamp}-{hex}"""
        plan = planner.create_plan([opportunity(["T.A", "T.B"])])

        assert re.fullmatch(r"consolidation-plan-\d+-[0-9a-f]{8}", plan.id)

    def test_plan_created_logged(self, planner):
        """Test a created plan is logged as a consolidation event"""
        planner.log = Mock()

        plan = planner.create_plan([opportunity(["T.A", "T.B"])])

        planner.log.consolidation_event.assert_called_once()
        assert planner.log.consolidation_event.call_args.args == ("plan_created",)
        assert planner.log.consolidation_event.call_args.kwargs["plan_id"] == plan.id

    def test_duration_single_low(self, planner):
        """Test 5n + 10 + 2n for one low-risk operation"""
        plan = planner.create_plan([opportunity(["T.A", "T.B"])])

        assert plan.estimated_minutes == 17
        assert plan.estimated_duration == "17 minutes"

    def test_duration_with_medium_risk(self, planner):
        """Test medium-risk operations add five minutes each"""
        opportunities = [opportunity([f"T.A{i}", f"T.B{i}"], risk="medium") for i in range(8)]

        plan = planner.create_plan(opportunities, selection=list(range(8)))

        assert plan.estimated_minutes == 106
        assert plan.estimated_duration == "1h 46m"

    def test_risk_levels(self, planner):
        """Test more than two medium-risk operations raise the level to medium"""
        two = [opportunity([f"T.A{i}", f"T.B{i}"], risk="medium") for i in range(2)]
        three = [opportunity([f"T.A{i}", f"T.B{i}"], risk="medium") for i in range(3)]

        assert planner.create_plan(two, selection=[0, 1]).risk_assessment.level == Level.LOW
        assert planner.create_plan(three, selection=[0, 1, 2]).risk_assessment.level == Level.MEDIUM

    def test_risk_factors(self, planner):
        """Test wide table impact and complex operations are flagged"""
        opportunities = [
            opportunity([f"T{i}.A", f"T{i + 1}.A"], complexity="high") for i in range(0, 6, 2)
        ]

        assessment = planner.create_plan(opportunities, selection=[0, 1, 2]).risk_assessment

        assert assessment.factors == [
            "High table impact: 6 tables affected",
            "Complex operations: 3 high-complexity consolidations",
        ]
        assert assessment.mitigations

    def test_safety_checks_and_rollback_plan(self, planner):
        """Test every plan carries safety checks and rollback points"""
        plan = planner.create_plan([opportunity(["T.A", "T.B"]), opportunity(["T.C", "T.D"])])

        assert "Comprehensive backup before execution" in plan.safety_checks
        assert plan.rollback_plan["backup_strategy"] == "comprehensive-pre-execution"
        assert [p["point"] for p in plan.rollback_plan["rollback_points"]] == [
            "after-opportunity-1",
            "after-opportunity-2",
        ]
        assert plan.validation_steps[0] == "Pre-execution data integrity baseline"
        assert plan.to_dict()["id"] == plan.id


class TestSafetyGate:
    """Test operation and table caps"""

    def test_too_many_operations(self, planner):
        """Test more than 20 operations is rejected"""
        opportunities = [opportunity([f"T.A{i}", f"T.B{i}"]) for i in range(21)]

        with pytest.raises(UnsafePlan) as exc_info:
            planner.create_plan(opportunities, selection=list(range(21)))

        assert exc_info.value.violations == ["Too many operations in single plan (max 20)"]
        assert exc_info.value.error_code == "PLAN_002"

    def test_too_many_tables(self, planner):
        """Test more than 10 affected tables is rejected"""
        opportunities = [opportunity([f"T{i}.A", f"U{i}.A"]) for i in range(6)]

        with pytest.raises(UnsafePlan) as exc_info:
            planner.create_plan(opportunities, selection=list(range(6)))

        assert exc_info.value.violations == ["Too many tables affected (max 10)"]

    def test_limits_from_settings(self, fast_settings):
        """Test the caps follow configuration"""
        fast_settings.CONSOLIDATION_MAX_OPERATIONS = 1
        planner = ConsolidationPlanner(fast_settings)

        with pytest.raises(UnsafePlan):
            planner.create_plan([opportunity(["T.A", "T.B"]), opportunity(["T.C", "T.D"])])
