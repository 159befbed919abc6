from fastapi import APIRouter, BackgroundTasks, Depends

from acheiumpro.auth import require_actor
from acheiumpro.models import Appointment, AppointmentUpdateRequest, User
from acheiumpro.routers.requests import raise_marketplace_http_error
from acheiumpro.services.activity_workflow import activity_workflow
from acheiumpro.services.marketplace_store import MarketplaceError, marketplace_store
from acheiumpro.services.notification_dispatcher import notification_dispatcher

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get("", response_model=list[Appointment])
def list_appointments(actor: User = Depends(require_actor)):
    return marketplace_store.list_appointments(actor=actor)


@router.patch("/{appointment_id}", response_model=dict)
def update_appointment(
    appointment_id: int,
    payload: AppointmentUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        activity_workflow.update_appointment(
            actor=actor,
            appointment_id=appointment_id,
            status=payload.status,
            scheduled_for=payload.scheduled_for,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"message": "Appointment updated successfully"}


@router.delete("/{appointment_id}", response_model=dict)
def delete_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    actor: User = Depends(require_actor),
):
    try:
        activity_workflow.delete_appointment(actor=actor, appointment_id=appointment_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    background_tasks.add_task(notification_dispatcher.dispatch_pending)
    return {"message": "Appointment deleted successfully"}
