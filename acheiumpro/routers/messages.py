from fastapi import APIRouter, BackgroundTasks, Depends

from acheiumpro.auth import require_actor
from acheiumpro.models import MessageCreateRequest, User
from acheiumpro.routers.requests import raise_marketplace_http_error
from acheiumpro.services.activity_workflow import activity_workflow
from acheiumpro.services.marketplace_store import MarketplaceError
from acheiumpro.services.message_store import message_store
from acheiumpro.services.notification_dispatcher import notification_dispatcher

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/{request_id}", response_model=dict)
def list_messages(request_id: int, actor: User = Depends(require_actor)):
    try:
        messages = message_store.list_messages(actor=actor, request_id=request_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    return {"messages": [message.model_dump(mode="json") for message in messages]}


@router.post("/{request_id}", response_model=dict)
def post_message(
    request_id: int,
    payload: MessageCreateRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        message = activity_workflow.post_message(
            actor=actor,
            request_id=request_id,
            content=payload.content,
            attachment_url=payload.attachment_url,
            attachment_type=payload.attachment_type,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"message": message.model_dump(mode="json")}
