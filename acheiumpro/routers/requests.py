from typing import NoReturn, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from acheiumpro.auth import require_actor
from acheiumpro.models import (
    Proposal,
    ProposalCreateRequest,
    RequestStatusUpdateRequest,
    ServiceRequest,
    ServiceRequestCreate,
    User,
)
from acheiumpro.services.marketplace_store import (
    MarketplaceConflictError,
    MarketplaceError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceTransactionError,
    marketplace_store,
)
from acheiumpro.services.notification_dispatcher import notification_dispatcher
from acheiumpro.services.proposal_workflow import proposal_workflow

router = APIRouter(prefix="/requests", tags=["requests"])


def raise_marketplace_http_error(exc: MarketplaceError) -> NoReturn:
    if isinstance(exc, MarketplaceNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, MarketplacePermissionError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, MarketplaceConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, MarketplaceTransactionError):
        raise HTTPException(status_code=500, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


@router.post("", response_model=dict)
def create_request(payload: ServiceRequestCreate, actor: User = Depends(require_actor)):
    try:
        created = marketplace_store.create_request(
            actor=actor,
            title=payload.title,
            description=payload.description,
            category=payload.category,
            location=payload.location,
            urgency=payload.urgency,
            budget=payload.budget,
            scheduled_at=payload.scheduled_at,
        )
    except MarketplacePermissionError:
        # Non-clients are treated as unauthenticated for this route
        raise HTTPException(status_code=401, detail="Unauthorized")
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    return {"success": True, "id": created.id}


@router.get("", response_model=list[ServiceRequest])
def list_requests(
    status: Optional[str] = Query(default=None),
    actor: User = Depends(require_actor),
):
    try:
        return marketplace_store.list_requests(actor=actor, status=status)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{request_id}", response_model=ServiceRequest)
def get_request(request_id: int, actor: User = Depends(require_actor)):
    try:
        return marketplace_store.get_request(actor=actor, request_id=request_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.patch("/{request_id}", response_model=dict)
def update_request_status(
    request_id: int,
    payload: RequestStatusUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        proposal_workflow.set_request_status(
            actor=actor,
            request_id=request_id,
            new_status=payload.status,
            scheduled_at=payload.scheduled_at,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"message": "Request updated successfully"}


@router.post("/{request_id}/cancel", response_model=dict)
def cancel_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        proposal_workflow.cancel_request(actor=actor, request_id=request_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"success": True}


@router.delete("/{request_id}", response_model=dict)
def delete_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        proposal_workflow.delete_request(actor=actor, request_id=request_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"success": True}


@router.get("/{request_id}/proposals", response_model=list[Proposal])
def list_proposals(request_id: int, actor: User = Depends(require_actor)):
    try:
        return marketplace_store.list_proposals(actor=actor, request_id=request_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/{request_id}/proposals", response_model=dict)
def submit_proposal(
    request_id: int,
    payload: ProposalCreateRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        proposal = proposal_workflow.submit_proposal(
            actor=actor,
            request_id=request_id,
            proposed_price=payload.proposed_price,
            message=payload.message,
        )
    except MarketplacePermissionError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"success": True, "id": proposal.id}
