"""Assignment engine endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.routers.deps import ok, rate_limit, require_admin_token
from orderdesk.schemas import AssignOrderRequest, AutoAssignRequest, ManualAssignRequest
from orderdesk.services.agent_service import list_agents_for_manual_assignment
from orderdesk.services.assignment_service import (
    assign_order,
    auto_assign_unassigned_orders,
    get_assignment_stats,
    manual_assign_order,
)

router = APIRouter(
    prefix="/api/assignments",
    tags=["assignments"],
    dependencies=[Depends(rate_limit), Depends(require_admin_token)],
)


@router.get("/stats")
def assignment_stats(db: Session = Depends(get_db)):
    return ok(get_assignment_stats(db))


@router.get("/agents")
def agents_for_manual_assignment(db: Session = Depends(get_db)):
    return ok(list_agents_for_manual_assignment(db))


@router.post("/orders/{order_id}")
def assign(order_id: UUID, request: Optional[AssignOrderRequest] = None, db: Session = Depends(get_db)):
    include_offline = request.include_offline if request else False
    result = assign_order(db, order_id, include_offline=include_offline)
    return {"success": result.success, "data": result.to_dict()}


@router.post("/orders/{order_id}/manual")
def assign_manually(order_id: UUID, request: ManualAssignRequest, db: Session = Depends(get_db)):
    result = manual_assign_order(db, order_id, request.agent_id, admin_id=request.admin_id)
    return {"success": result.success, "data": result.to_dict()}


@router.post("/auto")
def auto_assign(request: Optional[AutoAssignRequest] = None, db: Session = Depends(get_db)):
    request = request or AutoAssignRequest()
    summary = auto_assign_unassigned_orders(db, limit=request.limit, include_offline=request.include_offline)
    return ok(summary.to_dict())
