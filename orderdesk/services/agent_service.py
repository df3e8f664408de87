"""Agent registry and workload tracking.

Online status is derived from ``last_activity_at``; the Redis keys written on
heartbeat are a liveness hint for other consumers and are never used for
capacity decisions. Workload counts are always read from the orders table.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

import redis
from sqlalchemy import func
from sqlalchemy.orm import Session

from orderdesk.cache import delete_keys, get_cache
from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.models import (
    RESOLVED_STATUSES,
    Agent,
    AgentActivity,
    AgentProductAssignment,
    AgentRole,
    Order,
    OrderItem,
)
from orderdesk.services.result import Result
from orderdesk.timeutils import ensure_timezone, utcnow

logger = get_logger("agent_service")

ACTIVITY_KEY = "orderdesk:agent:activity:{agent_id}"
SESSION_KEY = "orderdesk:agent:session:{agent_id}"


@dataclass
class AgentWorkload:
    agent: Agent
    open_orders: int
    is_online: bool
    last_assigned_at: Optional[datetime] = None

    @property
    def utilization(self) -> float:
        if not self.agent.max_orders:
            return 1.0
        return self.open_orders / self.agent.max_orders

    @property
    def has_capacity(self) -> bool:
        return self.open_orders < (self.agent.max_orders or 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": str(self.agent.id),
            "agent_code": self.agent.agent_code,
            "agent_name": self.agent.name,
            "is_online": self.is_online,
            "assigned_orders": self.open_orders,
            "max_orders": self.agent.max_orders,
            "utilization_rate": round(self.utilization * 100, 2),
        }


def online_threshold() -> timedelta:
    return timedelta(minutes=settings.agent_online_threshold_minutes)


def is_agent_online(agent: Agent, now: Optional[datetime] = None) -> bool:
    last_activity = ensure_timezone(agent.last_activity_at)
    if last_activity is None:
        return False
    now = now or utcnow()
    return now - last_activity < online_threshold()


def open_order_filter():
    return Order.status.notin_(RESOLVED_STATUSES)


def count_open_orders(db: Session, agent_id) -> int:
    return (
        db.query(func.count(Order.id))
        .filter(Order.assigned_agent_id == agent_id, open_order_filter())
        .scalar()
        or 0
    )


def open_order_counts(db: Session) -> dict[Any, int]:
    """Open (unresolved) order counts keyed by agent id; the ``None`` key holds unassigned orders."""
    rows = (
        db.query(Order.assigned_agent_id, func.count(Order.id))
        .filter(open_order_filter())
        .group_by(Order.assigned_agent_id)
        .all()
    )
    return {agent_id: count for agent_id, count in rows}


def last_assignment_times(db: Session, agent_ids: Iterable) -> dict[Any, datetime]:
    agent_ids = list(agent_ids)
    if not agent_ids:
        return {}
    rows = (
        db.query(Order.assigned_agent_id, func.max(Order.assigned_at))
        .filter(Order.assigned_agent_id.in_(agent_ids))
        .group_by(Order.assigned_agent_id)
        .all()
    )
    return {agent_id: ensure_timezone(assigned_at) for agent_id, assigned_at in rows if assigned_at}


def get_assignable_agents(db: Session, roles: Optional[list[str]] = None) -> list[Agent]:
    roles = roles or settings.assignable_role_list
    return (
        db.query(Agent)
        .filter(Agent.is_active.is_(True), Agent.role.in_(roles))
        .order_by(Agent.agent_code)
        .all()
    )


def list_agent_workloads(
    db: Session,
    *,
    include_offline: bool = True,
    now: Optional[datetime] = None,
    counts: Optional[dict[Any, int]] = None,
    agent_ids: Optional[set] = None,
) -> list[AgentWorkload]:
    now = now or utcnow()
    agents = get_assignable_agents(db)
    if agent_ids is not None:
        agents = [agent for agent in agents if agent.id in agent_ids]
    if counts is None:
        counts = open_order_counts(db)
    last_assigned = last_assignment_times(db, [agent.id for agent in agents])

    workloads = []
    for agent in agents:
        online = is_agent_online(agent, now)
        if not include_offline and not online:
            continue
        workloads.append(
            AgentWorkload(
                agent=agent,
                open_orders=counts.get(agent.id, 0),
                is_online=online,
                last_assigned_at=last_assigned.get(agent.id),
            )
        )
    return workloads


def list_agents_for_manual_assignment(db: Session, now: Optional[datetime] = None) -> list[dict[str, Any]]:
    workloads = list_agent_workloads(db, include_offline=True, now=now)
    workloads.sort(key=lambda item: (item.utilization, item.agent.agent_code))
    return [item.to_dict() | {"available": item.has_capacity} for item in workloads]


def order_product_names(db: Session, order_id) -> list[str]:
    rows = db.query(OrderItem.title).filter(OrderItem.order_id == order_id).distinct().all()
    return sorted(row.title for row in rows if row.title)


def agents_following_products(db: Session, product_names: Iterable[str]) -> Optional[set]:
    """Ids of agents following any of ``product_names``.

    ``None`` means the order is not product-scoped: it has no products, or no
    agent follows any of them, and every assignable agent is a candidate.
    """
    product_names = list(product_names)
    if not product_names:
        return None
    rows = (
        db.query(AgentProductAssignment.agent_id)
        .filter(
            AgentProductAssignment.product_name.in_(product_names),
            AgentProductAssignment.is_active.is_(True),
        )
        .distinct()
        .all()
    )
    return {row.agent_id for row in rows} or None


def get_agent_products(db: Session, agent_id) -> Result[list[str]]:
    if not db.query(Agent.id).filter(Agent.id == agent_id).first():
        return Result.failure("Agent not found", "AgentNotFound")
    rows = (
        db.query(AgentProductAssignment.product_name)
        .filter(AgentProductAssignment.agent_id == agent_id, AgentProductAssignment.is_active.is_(True))
        .order_by(AgentProductAssignment.product_name)
        .all()
    )
    return Result.success([row.product_name for row in rows])


def set_agent_products(db: Session, agent_id, product_names: Iterable[str]) -> Result[list[str]]:
    """Replace the products an agent follows."""
    agent = db.query(Agent).filter(Agent.id == agent_id).first()
    if not agent:
        return Result.failure("Agent not found", "AgentNotFound")
    names = sorted({name.strip() for name in product_names if name and name.strip()})

    db.query(AgentProductAssignment).filter(AgentProductAssignment.agent_id == agent.id).delete(
        synchronize_session=False
    )
    db.add_all(
        AgentProductAssignment(id=uuid.uuid4(), agent_id=agent.id, product_name=name, is_active=True)
        for name in names
    )
    db.commit()
    logger.info(
        f"Products assigned to {agent.agent_code}",
        extra={"context": {"agent_id": str(agent.id), "products": names}},
    )
    return Result.success(names)


def list_known_products(db: Session) -> list[str]:
    rows = db.query(OrderItem.title).distinct().order_by(OrderItem.title).all()
    return [row.title for row in rows]


def create_agent(
    db: Session,
    *,
    agent_code: str,
    name: str,
    role: str = AgentRole.AGENT_SUIVI.value,
    max_orders: int = 50,
) -> Result[Agent]:
    role = role.upper()
    if role not in {item.value for item in AgentRole}:
        return Result.failure(f"Unknown role {role}", "INVALID_ROLE")
    if max_orders <= 0:
        return Result.failure("max_orders must be positive", "INVALID_CAPACITY")
    if db.query(Agent).filter(Agent.agent_code == agent_code).first():
        return Result.failure(f"Agent code {agent_code} already exists", "AGENT_CODE_TAKEN")

    agent = Agent(id=uuid.uuid4(), agent_code=agent_code, name=name, role=role, max_orders=max_orders)
    db.add(agent)
    db.commit()
    db.refresh(agent)
    logger.info(f"Agent created: {agent_code}", extra={"context": {"agent_id": str(agent.id), "role": role}})
    return Result.success(agent)


def deactivate_agent(db: Session, agent_id) -> Result[Agent]:
    agent = db.query(Agent).filter(Agent.id == agent_id).first()
    if not agent:
        return Result.failure("Agent not found", "AgentNotFound")
    agent.is_active = False
    db.commit()
    delete_keys(get_cache(), ACTIVITY_KEY.format(agent_id=agent.id), SESSION_KEY.format(agent_id=agent.id))
    logger.info("Agent deactivated", extra={"context": {"agent_id": str(agent.id)}})
    return Result.success(agent)


def update_agent_activity(
    db: Session,
    agent_id,
    session_token: Optional[str],
    now: Optional[datetime] = None,
) -> Result[datetime]:
    """Record an agent heartbeat. Repeating it only moves ``last_activity_at`` forward."""
    agent = db.query(Agent).filter(Agent.id == agent_id).first()
    if not agent:
        return Result.failure("Agent not found", "AgentNotFound")

    now = now or utcnow()
    current = ensure_timezone(agent.last_activity_at)
    if current is None or now > current:
        agent.last_activity_at = now
    db.commit()

    cache = get_cache()
    if cache is not None:
        ttl_seconds = int(online_threshold().total_seconds())
        try:
            cache.setex(ACTIVITY_KEY.format(agent_id=agent.id), ttl_seconds, now.isoformat())
            if session_token:
                cache.setex(SESSION_KEY.format(agent_id=agent.id), ttl_seconds, session_token)
        except redis.RedisError as exc:
            logger.warning(
                "Agent liveness cache update failed",
                extra={"context": {"agent_id": str(agent.id), "error": str(exc)}},
            )

    return Result.success(ensure_timezone(agent.last_activity_at))


def set_agent_offline(db: Session, agent_id) -> Result[Agent]:
    agent = db.query(Agent).filter(Agent.id == agent_id).first()
    if not agent:
        return Result.failure("Agent not found", "AgentNotFound")

    agent.last_activity_at = None
    db.add(
        AgentActivity(
            id=uuid.uuid4(),
            agent_id=agent.id,
            activity_type="WENT_OFFLINE",
            description="Agent marked offline",
        )
    )
    db.commit()
    delete_keys(get_cache(), ACTIVITY_KEY.format(agent_id=agent.id), SESSION_KEY.format(agent_id=agent.id))
    logger.info("Agent set offline", extra={"context": {"agent_id": str(agent.id)}})
    return Result.success(agent)
