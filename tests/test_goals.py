"""
Test suite for advisor goals

Tests goal upserts, progress updates, fulfillment ratings and the
performance report.
"""

import pytest
from decimal import Decimal

from microfinance.audit import AuditEventType
from microfinance.errors import NotFoundError, UnauthorizedError, ValidationError
from microfinance.goals import GoalManager, fulfillment, percentage, rate
from microfinance.models import GoalRating


PERIOD = "2024-03"


@pytest.fixture
def goals(store, audit, clock):
    return GoalManager(store, audit, clock=clock)


@pytest.fixture
def goal(goals, staff):
    return goals.upsert_goal(staff.admin_p, staff.advisor.id, PERIOD,
                             meta_clientes=10, meta_cobranza="5000",
                             meta_morosidad="5", meta_cartera="20000")


class TestFulfillment:
    """Test percentages and ratings"""

    def test_percentage(self):
        assert percentage(5, 10) == Decimal("50")
        assert percentage(Decimal("7500"), Decimal("5000")) == Decimal("150")
        assert percentage(3, 0) == Decimal("0")

    @pytest.mark.parametrize("average,expected", [
        (Decimal("120"), GoalRating.SOBRESALIENTE),
        (Decimal("100"), GoalRating.SOBRESALIENTE),
        (Decimal("99.99"), GoalRating.OBJETIVO),
        (Decimal("80"), GoalRating.OBJETIVO),
        (Decimal("79.99"), GoalRating.MEJORABLE),
        (Decimal("0"), GoalRating.MEJORABLE),
    ])
    def test_rate(self, average, expected):
        assert rate(average) == expected

    def test_delinquency_is_reported_but_not_rated(self, goals, goal, staff):
        updated = goals.update_progress(staff.admin_p, goal.id, actual_clientes=10,
                                        actual_cobranza="4000", actual_morosidad="10",
                                        actual_cartera="24000")
        result = fulfillment(updated)
        assert result.porcentajes["clientes"] == Decimal("100")
        assert result.porcentajes["cobranza"] == Decimal("80")
        assert result.porcentajes["morosidad"] == Decimal("200")
        assert result.porcentajes["cartera"] == Decimal("120")
        assert result.promedio == Decimal("100")
        assert result.calificacion == GoalRating.SOBRESALIENTE

    def test_to_dict(self, goal):
        data = fulfillment(goal).to_dict()
        assert data["meta_id"] == goal.id
        assert data["metas"]["cobranza"] == {"meta": "5000.00", "actual": "0",
                                              "porcentaje": "0.00"}
        assert data["promedio_cumplimiento"] == "0.00"
        assert data["calificacion"] == "mejorable"


class TestUpsertGoal:
    """Test goal creation and replacement"""

    def test_create(self, goal, staff, audit):
        assert goal.asesor_id == staff.advisor.id
        assert goal.meta_clientes == 10
        assert goal.meta_cobranza == Decimal("5000.00")
        assert goal.actual_cobranza == Decimal("0")
        events = audit.get_events_for_entity("goal", goal.id)
        assert [e.event_type for e in events] == [AuditEventType.GOAL_SAVED]

    def test_upsert_replaces_targets_and_keeps_actuals(self, goals, goal, staff):
        goals.update_progress(staff.admin_p, goal.id, actual_clientes=4)
        replaced = goals.upsert_goal(staff.manager_p, staff.advisor.id, PERIOD,
                                     meta_clientes=12, meta_cobranza="6000",
                                     meta_morosidad="4", meta_cartera="25000")
        assert replaced.id == goal.id
        assert replaced.meta_clientes == 12
        assert replaced.actual_clientes == 4
        assert len(goals.list_goals(staff.admin_p, periodo=PERIOD)) == 1

    @pytest.mark.parametrize("periodo", ["2024-13", "2024-3", "03-2024", ""])
    def test_invalid_period(self, goals, staff, periodo):
        with pytest.raises(ValidationError):
            goals.upsert_goal(staff.admin_p, staff.advisor.id, periodo, 1, "1", "1", "1")

    def test_target_validation(self, goals, staff):
        with pytest.raises(ValidationError):
            goals.upsert_goal(staff.admin_p, staff.advisor.id, PERIOD, -1, "1", "1", "1")
        with pytest.raises(ValidationError):
            goals.upsert_goal(staff.admin_p, staff.advisor.id, PERIOD, "10", "1", "1", "1")
        with pytest.raises(ValidationError):
            goals.upsert_goal(staff.admin_p, staff.advisor.id, PERIOD, 1, "-1", "1", "1")

    def test_only_advisors_get_goals(self, goals, staff):
        with pytest.raises(ValidationError):
            goals.upsert_goal(staff.admin_p, staff.supervisor.id, PERIOD, 1, "1", "1", "1")
        with pytest.raises(NotFoundError):
            goals.upsert_goal(staff.admin_p, "missing", PERIOD, 1, "1", "1", "1")

    def test_only_admins_set_goals(self, goals, staff):
        with pytest.raises(UnauthorizedError):
            goals.upsert_goal(staff.supervisor_p, staff.advisor.id, PERIOD, 1, "1", "1", "1")


class TestProgress:
    """Test progress updates"""

    def test_supervisor_updates_supervised_advisor(self, goals, goal, staff):
        updated = goals.update_progress(staff.supervisor_p, goal.id, actual_cobranza="1250.5")
        assert updated.actual_cobranza == Decimal("1250.50")

    def test_progress_permissions(self, goals, goal, staff):
        with pytest.raises(UnauthorizedError):
            goals.update_progress(staff.advisor_p, goal.id, actual_clientes=1)
        other = goals.upsert_goal(staff.admin_p, staff.other_advisor.id, PERIOD,
                                  1, "1", "1", "1")
        with pytest.raises(UnauthorizedError):
            goals.update_progress(staff.supervisor_p, other.id, actual_clientes=1)

    def test_empty_update_is_a_no_op(self, goals, goal, staff, audit):
        assert goals.update_progress(staff.admin_p, goal.id) == goal
        assert len(audit.get_events_for_entity("goal", goal.id)) == 1

    def test_missing_goal(self, goals, staff):
        with pytest.raises(NotFoundError):
            goals.update_progress(staff.admin_p, "missing", actual_clientes=1)


class TestVisibilityAndReport:
    """Test scoped listing and the performance report"""

    @pytest.fixture
    def team_goals(self, goals, goal, staff):
        other = goals.upsert_goal(staff.admin_p, staff.other_advisor.id, PERIOD,
                                  meta_clientes=10, meta_cobranza="1000",
                                  meta_morosidad="5", meta_cartera="1000")
        goals.update_progress(staff.admin_p, other.id, actual_clientes=10,
                              actual_cobranza="1000", actual_morosidad="5",
                              actual_cartera="1000")
        goals.update_progress(staff.admin_p, goal.id, actual_clientes=5,
                              actual_cobranza="2500", actual_cartera="10000")
        return goal, other

    def test_list_scope(self, goals, team_goals, staff):
        goal, other = team_goals
        assert {g.id for g in goals.list_goals(staff.admin_p)} == {goal.id, other.id}
        assert [g.id for g in goals.list_goals(staff.supervisor_p)] == [goal.id]
        with pytest.raises(UnauthorizedError):
            goals.list_goals(staff.supervisor_p, asesor_id=staff.other_advisor.id)
        with pytest.raises(UnauthorizedError):
            goals.list_goals(staff.advisor_p)

    def test_performance_report(self, goals, team_goals, staff):
        report = goals.performance_report(staff.admin_p, PERIOD)
        assert report["total_asesores"] == 2
        assert report["promedios"]["clientes"] == Decimal("75.00")
        assert report["promedios"]["morosidad"] == Decimal("50.00")
        assert report["distribucion"] == {"sobresaliente": 1, "objetivo": 0, "mejorable": 1}

    def test_empty_period(self, goals, staff):
        report = goals.performance_report(staff.admin_p, "2023-01")
        assert report["total_asesores"] == 0
        assert report["asesores"] == []
        assert set(report["promedios"].values()) == {Decimal("0.00")}
