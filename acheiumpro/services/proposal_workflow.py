import logging
from typing import Any, Dict, Iterable, Optional

from acheiumpro.models import Proposal, ServiceRequest, User
from acheiumpro.services.marketplace_store import (
    MarketplaceStore,
    ProposalResolution,
    RequestStatusChange,
    marketplace_store,
)
from acheiumpro.services.notification_store import NotificationStore, notification_store

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "pending": "pendente",
    "accepted": "aceita",
    "in_progress": "em andamento",
    "completed": "concluída",
    "rejected": "recusada",
    "cancelled": "cancelada",
}


class NotifyingWorkflow:
    """Base for workflows that notify people after a store call returns.

    The store does all the work inside its transaction. Notifications are
    sent only after it returns, and a notification failure is logged without
    failing the action.
    """

    def __init__(self, notifications: NotificationStore):
        self.notifications = notifications

    def _notify(
        self,
        user_id: Optional[int],
        title: str,
        body: str,
        metadata: Dict[str, Any],
        channels: Optional[Iterable[str]] = None,
    ) -> None:
        if user_id is None:
            return
        try:
            self.notifications.trigger(
                user_id=user_id,
                title=title,
                body=body,
                channels=channels,
                metadata=metadata,
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to trigger notification %r for user %s", title, user_id)


class ProposalWorkflow(NotifyingWorkflow):
    """Request and proposal state changes plus the notifications they cause."""

    def __init__(self, store: MarketplaceStore, notifications: NotificationStore):
        super().__init__(notifications)
        self.store = store

    def resolve_proposal(self, actor: User, proposal_id: int, action: str) -> ProposalResolution:
        resolution = self.store.resolve_proposal(actor=actor, proposal_id=proposal_id, action=action)
        request_id = resolution.request.id
        metadata = {"requestId": request_id, "proposalId": proposal_id}
        if resolution.action == "accept":
            self._notify(
                resolution.proposal.provider_id,
                "Proposta aceita",
                f"Sua proposta para a solicitação #{request_id} foi aceita.",
                metadata,
            )
            for provider_id in resolution.rejected_provider_ids:
                self._notify(
                    provider_id,
                    "Proposta rejeitada",
                    f"Outra proposta foi escolhida para a solicitação #{request_id}.",
                    {"requestId": request_id},
                )
        else:
            self._notify(
                resolution.proposal.provider_id,
                "Proposta rejeitada",
                f"Sua proposta para a solicitação #{request_id} foi rejeitada.",
                metadata,
            )
        return resolution

    def set_request_status(
        self,
        actor: User,
        request_id: int,
        new_status: str,
        scheduled_at: Optional[str] = None,
    ) -> RequestStatusChange:
        change = self.store.set_request_status(
            actor=actor,
            request_id=request_id,
            new_status=new_status,
            scheduled_at=scheduled_at,
        )
        request = change.request
        label = STATUS_LABELS.get(request.status.value, request.status.value)
        for user_id in {request.client_id, request.provider_id} - {actor.id, None}:
            self._notify(
                user_id,
                "Solicitação atualizada",
                f"A solicitação #{request.id} agora está {label}.",
                {"requestId": request.id, "status": request.status.value},
            )
        return change

    def cancel_request(self, actor: User, request_id: int) -> RequestStatusChange:
        change = self.store.cancel_request(actor=actor, request_id=request_id)
        request = change.request
        for user_id in {request.client_id, request.provider_id} - {actor.id, None}:
            self._notify(
                user_id,
                "Solicitação cancelada",
                f"A solicitação #{request.id} foi cancelada.",
                {"requestId": request.id},
            )
        return change

    def submit_proposal(
        self,
        actor: User,
        request_id: int,
        proposed_price: float,
        message: Optional[str] = None,
    ) -> Proposal:
        proposal, request = self.store.submit_proposal(
            actor=actor,
            request_id=request_id,
            proposed_price=proposed_price,
            message=message,
        )
        self._notify(
            request.client_id,
            "Nova proposta",
            f"O prestador {actor.name} enviou uma proposta para sua solicitação.",
            {"requestId": request_id, "proposalId": proposal.id},
        )
        return proposal

    def withdraw_proposal(self, actor: User, proposal_id: int) -> Proposal:
        proposal, request = self.store.withdraw_proposal(actor=actor, proposal_id=proposal_id)
        self._notify(
            request.client_id,
            "Proposta removida",
            f"Uma proposta para sua solicitação #{request.id} foi removida.",
            {"requestId": request.id},
        )
        return proposal

    def delete_request(self, actor: User, request_id: int) -> ServiceRequest:
        request = self.store.delete_request(actor=actor, request_id=request_id)
        if request.provider_id is not None and request.provider_id != actor.id:
            self._notify(
                request.provider_id,
                "Solicitação removida",
                f"A solicitação #{request.id} foi removida pelo cliente.",
                {"requestId": request.id},
            )
        return request


proposal_workflow = ProposalWorkflow(store=marketplace_store, notifications=notification_store)
