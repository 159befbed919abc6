from fastapi import APIRouter, BackgroundTasks, Depends

from acheiumpro.auth import require_actor
from acheiumpro.models import Payment, PaymentCreateRequest, PaymentStatusUpdateRequest, User
from acheiumpro.routers.requests import raise_marketplace_http_error
from acheiumpro.services.activity_workflow import activity_workflow
from acheiumpro.services.marketplace_store import MarketplaceError
from acheiumpro.services.notification_dispatcher import notification_dispatcher
from acheiumpro.services.payment_store import payment_store

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("", response_model=dict)
def list_payments(actor: User = Depends(require_actor)):
    payments = payment_store.list_payments(actor=actor)
    return {"payments": [payment.model_dump(mode="json") for payment in payments]}


@router.post("", response_model=dict)
def create_payment(
    payload: PaymentCreateRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        payment = activity_workflow.create_payment(
            actor=actor,
            request_id=payload.request_id,
            amount=payload.amount,
            checkout_url=payload.checkout_url,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"paymentId": payment.id}


@router.patch("/{payment_id}", response_model=Payment)
def update_payment(
    payment_id: int,
    payload: PaymentStatusUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        payment = activity_workflow.update_payment(actor=actor, payment_id=payment_id, status=payload.status)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return payment
