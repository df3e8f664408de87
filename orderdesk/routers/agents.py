from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.errors import ConflictError, NotFoundError, ValidationError
from orderdesk.routers.deps import ok, rate_limit, require_admin_token
from orderdesk.schemas import AgentCreate, AgentProductsUpdate
from orderdesk.services.agent_service import (
    create_agent,
    deactivate_agent,
    get_agent_products,
    list_known_products,
    set_agent_offline,
    set_agent_products,
    update_agent_activity,
)

router = APIRouter(
    prefix="/api/agents",
    tags=["agents"],
    dependencies=[Depends(rate_limit), Depends(require_admin_token)],
)


def _agent_summary(agent) -> dict:
    return {
        "id": str(agent.id),
        "agent_code": agent.agent_code,
        "name": agent.name,
        "role": agent.role,
        "max_orders": agent.max_orders,
        "is_active": agent.is_active,
    }


@router.post("", status_code=201)
def register_agent(request: AgentCreate, db: Session = Depends(get_db)):
    result = create_agent(
        db,
        agent_code=request.agent_code,
        name=request.name,
        role=request.role,
        max_orders=request.max_orders,
    )
    if not result.ok:
        if result.error_code == "AGENT_CODE_TAKEN":
            raise ConflictError(result.error, result.error_code)
        raise ValidationError(result.error, result.error_code)
    return ok(_agent_summary(result.value))


@router.post("/{agent_id}/deactivate")
def deactivate(agent_id: UUID, db: Session = Depends(get_db)):
    result = deactivate_agent(db, agent_id)
    if not result.ok:
        raise NotFoundError(result.error, result.error_code)
    return ok(_agent_summary(result.value))


@router.post("/{agent_id}/heartbeat")
def heartbeat(
    agent_id: UUID,
    db: Session = Depends(get_db),
    x_session_token: Optional[str] = Header(default=None, alias="X-Session-Token"),
):
    result = update_agent_activity(db, agent_id, x_session_token)
    if not result.ok:
        raise NotFoundError(result.error, result.error_code)
    return ok({"agent_id": str(agent_id), "last_activity_at": result.value.isoformat()})


@router.post("/{agent_id}/offline")
def go_offline(agent_id: UUID, db: Session = Depends(get_db)):
    result = set_agent_offline(db, agent_id)
    if not result.ok:
        raise NotFoundError(result.error, result.error_code)
    return ok({"agent_id": str(agent_id), "is_online": False})


@router.get("/products")
def known_products(db: Session = Depends(get_db)):
    return ok(list_known_products(db))


@router.get("/{agent_id}/products")
def agent_products(agent_id: UUID, db: Session = Depends(get_db)):
    result = get_agent_products(db, agent_id)
    if not result.ok:
        raise NotFoundError(result.error, result.error_code)
    return ok({"agent_id": str(agent_id), "product_names": result.value})


@router.put("/{agent_id}/products")
def replace_agent_products(agent_id: UUID, request: AgentProductsUpdate, db: Session = Depends(get_db)):
    result = set_agent_products(db, agent_id, request.product_names)
    if not result.ok:
        raise NotFoundError(result.error, result.error_code)
    return ok({"agent_id": str(agent_id), "product_names": result.value})
