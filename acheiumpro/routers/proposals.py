from fastapi import APIRouter, BackgroundTasks, Depends

from acheiumpro.auth import require_actor
from acheiumpro.models import ProposalActionRequest, User
from acheiumpro.routers.requests import raise_marketplace_http_error
from acheiumpro.services.marketplace_store import MarketplaceError
from acheiumpro.services.notification_dispatcher import notification_dispatcher
from acheiumpro.services.proposal_workflow import proposal_workflow

router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.patch("/{proposal_id}", response_model=dict)
def resolve_proposal(
    proposal_id: int,
    payload: ProposalActionRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        proposal_workflow.resolve_proposal(actor=actor, proposal_id=proposal_id, action=payload.action)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"success": True}


@router.delete("/{proposal_id}", response_model=dict)
def withdraw_proposal(
    proposal_id: int,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        proposal_workflow.withdraw_proposal(actor=actor, proposal_id=proposal_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"success": True}
