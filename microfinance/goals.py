"""
Goals Module

Monthly advisor goals (metas) and their fulfillment. Each goal carries four
target/actual pairs: clients, collections, delinquency percent and portfolio.

Fulfillment per metric is ``actual / target * 100`` (0 when the target is 0).
Delinquency is reported the same way and is left out of the average that
drives the rating.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditEventType, AuditTrail
from .currency import ZERO, round_money, to_decimal
from .datastore import DataStore, new_id, utcnow
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .models import PERIOD_PATTERN, Goal, GoalRating, Role
from .policy import (
    Principal, can_manage_goals, can_update_goal_progress, can_view_goals, require,
    scope_advisor_ids
)

logger = get_logger(__name__)

HUNDRED = Decimal("100")
OUTSTANDING_THRESHOLD = Decimal("100")
TARGET_THRESHOLD = Decimal("80")

METRICS = ("clientes", "cobranza", "morosidad", "cartera")
RATED_METRICS = ("clientes", "cobranza", "cartera")


@dataclass
class GoalFulfillment:
    """Fulfillment percentages of one goal"""
    goal: Goal
    porcentajes: Dict[str, Decimal]
    promedio: Decimal
    calificacion: GoalRating

    def to_dict(self) -> Dict[str, Any]:
        metas = {}
        for metric in METRICS:
            metas[metric] = {
                "meta": str(getattr(self.goal, f"meta_{metric}")),
                "actual": str(getattr(self.goal, f"actual_{metric}")),
                "porcentaje": str(round_money(self.porcentajes[metric])),
            }
        return {
            "meta_id": self.goal.id,
            "asesor_id": self.goal.asesor_id,
            "periodo": self.goal.periodo,
            "metas": metas,
            "promedio_cumplimiento": str(round_money(self.promedio)),
            "calificacion": self.calificacion.value,
        }


def percentage(actual, target) -> Decimal:
    """``actual / target * 100``; 0 when the target is 0"""
    target = Decimal(target)
    if target == 0:
        return ZERO
    return Decimal(actual) / target * HUNDRED


def rate(average: Decimal) -> GoalRating:
    if average >= OUTSTANDING_THRESHOLD:
        return GoalRating.SOBRESALIENTE
    if average >= TARGET_THRESHOLD:
        return GoalRating.OBJETIVO
    return GoalRating.MEJORABLE


def fulfillment(goal: Goal) -> GoalFulfillment:
    """Per-metric fulfillment, the rated average and the rating"""
    porcentajes = {
        metric: percentage(getattr(goal, f"actual_{metric}"), getattr(goal, f"meta_{metric}"))
        for metric in METRICS
    }
    promedio = sum((porcentajes[m] for m in RATED_METRICS), ZERO) / len(RATED_METRICS)
    return GoalFulfillment(goal=goal, porcentajes=porcentajes, promedio=promedio,
                           calificacion=rate(promedio))


def _non_negative(value, field: str, integer: bool = False):
    if integer:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must be an integer", field=field)
        amount = value
    else:
        amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return amount


class GoalManager:
    """Creates goals, records progress and reports performance"""

    def __init__(self, store: DataStore, audit_trail: Optional[AuditTrail] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.audit = audit_trail
        self.clock = clock or utcnow

    def _log(self, event_type: AuditEventType, goal: Goal, principal: Principal, **metadata):
        if self.audit:
            self.audit.log_event(
                event_type=event_type,
                entity_type="goal",
                entity_id=goal.id,
                metadata=metadata,
                user_id=principal.id
            )

    def upsert_goal(self, principal: Principal, asesor_id: str, periodo: str,
                    meta_clientes: int, meta_cobranza, meta_morosidad, meta_cartera) -> Goal:
        """
        Create or replace the targets of an advisor for a period (YYYY-MM).
        Actuals start at zero and are kept when the targets are replaced.
        """
        require(can_manage_goals(principal), "manage goals", principal)
        if not PERIOD_PATTERN.match(periodo or ""):
            raise ValidationError("periodo must use the YYYY-MM format", field="periodo")
        advisor = self.store.get_user(asesor_id)
        if advisor is None:
            raise NotFoundError("user", asesor_id)
        if advisor.rol != Role.ADVISOR:
            raise ValidationError("Goals can only be assigned to advisors", field="asesor_id")

        targets = {
            "meta_clientes": _non_negative(meta_clientes, "meta_clientes", integer=True),
            "meta_cobranza": round_money(_non_negative(meta_cobranza, "meta_cobranza")),
            "meta_morosidad": round_money(_non_negative(meta_morosidad, "meta_morosidad")),
            "meta_cartera": round_money(_non_negative(meta_cartera, "meta_cartera")),
        }

        existing = self.store.list_goals({"asesor_id": asesor_id, "periodo": periodo})
        if existing:
            goal = self.store.update_goal(existing[0].id, targets)
        else:
            now = self.clock()
            goal = self.store.insert_goal(Goal(
                id=new_id(),
                created_at=now,
                updated_at=now,
                asesor_id=asesor_id,
                periodo=periodo,
                created_by=principal.id,
                **targets
            ))
        self._log(AuditEventType.GOAL_SAVED, goal, principal, periodo=periodo, **targets)
        log_action(logger, "info", "Goal saved", user_id=principal.id,
                   action="upsert_goal", resource=f"goal:{goal.id}",
                   extra={"asesor_id": asesor_id, "periodo": periodo})
        return goal

    def update_progress(self, principal: Principal, goal_id: str,
                        actual_clientes: Optional[int] = None, actual_cobranza=None,
                        actual_morosidad=None, actual_cartera=None) -> Goal:
        """Record actual values for a goal"""
        goal = self.store.get_goal(goal_id)
        if goal is None:
            raise NotFoundError("goal", goal_id)
        require(can_update_goal_progress(principal, goal.asesor_id),
                "update goal progress", principal, goal_id)

        patch: Dict[str, Any] = {}
        if actual_clientes is not None:
            patch["actual_clientes"] = _non_negative(actual_clientes, "actual_clientes",
                                                     integer=True)
        for name, value in (("actual_cobranza", actual_cobranza),
                            ("actual_morosidad", actual_morosidad),
                            ("actual_cartera", actual_cartera)):
            if value is not None:
                patch[name] = round_money(_non_negative(value, name))
        if not patch:
            return goal
        updated = self.store.update_goal(goal_id, patch)
        self._log(AuditEventType.GOAL_PROGRESS_UPDATED, updated, principal, **patch)
        return updated

    def list_goals(self, principal: Principal, periodo: Optional[str] = None,
                   asesor_id: Optional[str] = None) -> List[Goal]:
        """Goals the principal may view"""
        require(can_view_goals(principal, asesor_id), "view goals", principal)
        filters: Dict[str, Any] = {}
        if periodo:
            filters["periodo"] = periodo
        if asesor_id:
            filters["asesor_id"] = asesor_id
        scope = scope_advisor_ids(principal)
        return [
            g for g in self.store.list_goals(filters)
            if scope is None or g.asesor_id in scope
        ]

    def performance_report(self, principal: Principal, periodo: str) -> Dict[str, Any]:
        """
        Fulfillment of every visible advisor for ``periodo`` with per-metric
        averages and the distribution of ratings.
        """
        goals = self.list_goals(principal, periodo=periodo)
        results = [fulfillment(g) for g in goals]
        count = len(results)

        promedios = {}
        for metric in METRICS:
            total = sum((r.porcentajes[metric] for r in results), ZERO)
            promedios[metric] = round_money(total / count) if count else ZERO

        distribucion = {rating.value: 0 for rating in GoalRating}
        for r in results:
            distribucion[r.calificacion.value] += 1

        return {
            "periodo": periodo,
            "total_asesores": count,
            "asesores": results,
            "promedios": promedios,
            "distribucion": distribucion,
        }
