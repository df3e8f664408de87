"""Assignment engine: binds unassigned orders to agents.

Policy: among eligible agents (active, assignable role, online unless the
caller allows offline agents, below capacity) pick the lowest utilization,
then the agent assigned least recently (never-assigned first), then agent id.
An order whose products are followed by some agents only goes to those agents.

The write path locks the chosen agent row, re-counts that agent's open
orders under the lock and claims the order with a conditional update that
only matches while the order is still unassigned. Two concurrent calls for
the same agent serialize on the row lock, so capacity cannot be exceeded, and
two concurrent calls for the same order cannot both match the update.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.models import RESOLVED_STATUSES, Agent, AgentActivity, Order, OrderStatus
from orderdesk.services.agent_service import (
    AgentWorkload,
    agents_following_products,
    count_open_orders,
    list_agent_workloads,
    open_order_counts,
    order_product_names,
)
from orderdesk.timeutils import utcnow

logger = get_logger("assignment_service")

_NEVER_ASSIGNED = datetime.min.replace(tzinfo=timezone.utc)


class FailureReason(str, Enum):
    NO_ELIGIBLE_AGENT = "NoEligibleAgent"
    ORDER_ALREADY_ASSIGNED = "OrderAlreadyAssigned"
    ORDER_NOT_FOUND = "OrderNotFound"
    AGENT_NOT_FOUND = "AgentNotFound"
    AGENT_NOT_ASSIGNABLE = "AgentNotAssignable"


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_ASSIGNED = "already_assigned"
    AGENT_FULL = "agent_full"
    AGENT_UNAVAILABLE = "agent_unavailable"


@dataclass
class AssignmentResult:
    order_id: str
    success: bool
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    @classmethod
    def assigned(cls, order_id, agent: Agent) -> "AssignmentResult":
        return cls(
            order_id=str(order_id),
            success=True,
            agent_id=str(agent.id),
            agent_name=agent.name,
            message=f"Assigned to {agent.name}",
        )

    @classmethod
    def failed(cls, order_id, reason: FailureReason, message: str) -> "AssignmentResult":
        return cls(order_id=str(order_id), success=False, reason=reason, message=message)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reason"] = self.reason.value if self.reason else None
        return data


@dataclass
class AutoAssignSummary:
    total_processed: int
    successful_assignments: int
    failed_assignments: int
    cancelled: bool
    results: list[AssignmentResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "successful_assignments": self.successful_assignments,
            "failed_assignments": self.failed_assignments,
            "cancelled": self.cancelled,
            "results": [result.to_dict() for result in self.results],
        }


def rank_candidates(workloads: list[AgentWorkload]) -> list[AgentWorkload]:
    eligible = [item for item in workloads if item.has_capacity]
    return sorted(
        eligible,
        key=lambda item: (item.utilization, item.last_assigned_at or _NEVER_ASSIGNED, str(item.agent.id)),
    )


def claim_order(db: Session, order_id, agent_id, now: Optional[datetime] = None) -> ClaimOutcome:
    """Try to bind ``order_id`` to ``agent_id`` inside the caller's transaction.

    The caller commits on CLAIMED and rolls back otherwise.
    """
    agent = (
        db.query(Agent)
        .filter(Agent.id == agent_id, Agent.is_active.is_(True))
        .with_for_update()
        .first()
    )
    if agent is None:
        return ClaimOutcome.AGENT_UNAVAILABLE

    if count_open_orders(db, agent.id) >= agent.max_orders:
        return ClaimOutcome.AGENT_FULL

    result = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.assigned_agent_id.is_(None))
        .values(
            assigned_agent_id=agent.id,
            assigned_at=now or utcnow(),
            status=OrderStatus.ASSIGNED.value,
            updated_at=now or utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return ClaimOutcome.ALREADY_ASSIGNED
    return ClaimOutcome.CLAIMED


def _load_unassigned_order(db: Session, order_id) -> tuple[Optional[Order], Optional[AssignmentResult]]:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        return None, AssignmentResult.failed(order_id, FailureReason.ORDER_NOT_FOUND, "Order not found")
    if order.assigned_agent_id is not None:
        return order, AssignmentResult.failed(
            order_id, FailureReason.ORDER_ALREADY_ASSIGNED, "Order is already assigned"
        )
    return order, None


def assign_order(
    db: Session,
    order_id,
    include_offline: bool = False,
    now: Optional[datetime] = None,
) -> AssignmentResult:
    now = now or utcnow()
    order, failure = _load_unassigned_order(db, order_id)
    if failure:
        return failure

    scoped_agents = agents_following_products(db, order_product_names(db, order.id))
    candidates = rank_candidates(
        list_agent_workloads(db, include_offline=include_offline, now=now, agent_ids=scoped_agents)
    )
    for candidate in candidates:
        outcome = claim_order(db, order.id, candidate.agent.id, now)
        if outcome == ClaimOutcome.CLAIMED:
            db.commit()
            logger.info(
                f"Order {order.reference} assigned to {candidate.agent.agent_code}",
                extra={
                    "context": {
                        "order_id": str(order.id),
                        "agent_id": str(candidate.agent.id),
                        "open_orders": candidate.open_orders + 1,
                        "max_orders": candidate.agent.max_orders,
                    }
                },
            )
            return AssignmentResult.assigned(order.id, candidate.agent)
        db.rollback()
        if outcome == ClaimOutcome.ALREADY_ASSIGNED:
            return AssignmentResult.failed(
                order_id, FailureReason.ORDER_ALREADY_ASSIGNED, "Order was assigned concurrently"
            )

    logger.info(
        "No eligible agent for order",
        extra={
            "context": {
                "order_id": str(order_id),
                "include_offline": include_offline,
                "product_scoped": scoped_agents is not None,
            }
        },
    )
    return AssignmentResult.failed(
        order_id, FailureReason.NO_ELIGIBLE_AGENT, "No online agent with free capacity"
    )


def manual_assign_order(
    db: Session,
    order_id,
    agent_id,
    admin_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AssignmentResult:
    """Admin override: assign an unassigned order to a specific agent, online or not."""
    now = now or utcnow()
    order, failure = _load_unassigned_order(db, order_id)
    if failure:
        return failure

    agent = db.query(Agent).filter(Agent.id == agent_id).first()
    if agent is None:
        return AssignmentResult.failed(order_id, FailureReason.AGENT_NOT_FOUND, "Agent not found")
    if not agent.is_active or agent.role not in settings.assignable_role_list:
        return AssignmentResult.failed(
            order_id, FailureReason.AGENT_NOT_ASSIGNABLE, "Agent is inactive or cannot take orders"
        )

    outcome = claim_order(db, order.id, agent.id, now)
    if outcome != ClaimOutcome.CLAIMED:
        db.rollback()
        if outcome == ClaimOutcome.ALREADY_ASSIGNED:
            return AssignmentResult.failed(
                order_id, FailureReason.ORDER_ALREADY_ASSIGNED, "Order was assigned concurrently"
            )
        return AssignmentResult.failed(
            order_id, FailureReason.AGENT_NOT_ASSIGNABLE, "Agent is at capacity or unavailable"
        )

    db.add(
        AgentActivity(
            id=uuid.uuid4(),
            agent_id=agent.id,
            order_id=order.id,
            activity_type="ORDER_ASSIGNED",
            description=f"Order {order.reference} assigned manually",
            metadata_json={"admin_id": admin_id, "manual": True},
        )
    )
    db.commit()
    logger.info(
        f"Order {order.reference} manually assigned to {agent.agent_code}",
        extra={"context": {"order_id": str(order.id), "agent_id": str(agent.id), "admin_id": admin_id}},
    )
    return AssignmentResult.assigned(order.id, agent)


def auto_assign_unassigned_orders(
    db: Session,
    limit: Optional[int] = None,
    include_offline: bool = False,
    cancel_event: Optional[threading.Event] = None,
    now: Optional[datetime] = None,
) -> AutoAssignSummary:
    """Assign up to ``limit`` of the most recent unassigned orders, oldest of them first."""
    limit = limit or settings.auto_assign_limit
    rows = (
        db.query(Order.id)
        .filter(Order.assigned_agent_id.is_(None), Order.status.notin_(RESOLVED_STATUSES))
        .order_by(Order.created_at.desc())
        .limit(limit)
        .all()
    )
    order_ids = [row.id for row in reversed(rows)]

    results: list[AssignmentResult] = []
    cancelled = False
    for order_id in order_ids:
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            break
        results.append(assign_order(db, order_id, include_offline=include_offline, now=now))

    successful = sum(1 for result in results if result.success)
    summary = AutoAssignSummary(
        total_processed=len(results),
        successful_assignments=successful,
        failed_assignments=len(results) - successful,
        cancelled=cancelled,
        results=results,
    )
    logger.info(
        "Auto-assignment finished",
        extra={
            "context": {
                "candidates": len(order_ids),
                "processed": summary.total_processed,
                "assigned": summary.successful_assignments,
                "failed": summary.failed_assignments,
                "cancelled": cancelled,
            }
        },
    )
    return summary


def get_assignment_stats(db: Session, now: Optional[datetime] = None) -> dict[str, Any]:
    counts = open_order_counts(db)
    workloads = list_agent_workloads(db, include_offline=True, now=now, counts=counts)
    online = sum(1 for item in workloads if item.is_online)
    return {
        "total_agents": len(workloads),
        "online_agents": online,
        "offline_agents": len(workloads) - online,
        "unassigned_orders": counts.get(None, 0),
        "total_assigned_orders": sum(count for agent_id, count in counts.items() if agent_id is not None),
        "agent_workloads": [item.to_dict() for item in workloads],
    }
