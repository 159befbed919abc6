from typing import Optional

from acheiumpro.models import Appointment, Message, Payment, PaymentStatus, User
from acheiumpro.services.marketplace_store import MarketplaceStore, marketplace_store
from acheiumpro.services.message_store import MessageStore, message_store
from acheiumpro.services.notification_store import NotificationStore, notification_store
from acheiumpro.services.payment_store import PaymentStore, payment_store
from acheiumpro.services.proposal_workflow import NotifyingWorkflow

PAYMENT_STATUS_MESSAGES = {
    PaymentStatus.AWAITING_PAYMENT: "O pagamento voltou para o status aguardando pagamento.",
    PaymentStatus.PAID: "O pagamento foi confirmado.",
    PaymentStatus.REFUSED: "O pagamento foi marcado como recusado.",
}

APPOINTMENT_STATUS_LABELS = {
    "confirmed": "confirmado",
    "completed": "concluído",
    "cancelled": "cancelado",
}


def _counterpart(actor: User, client_id: int, provider_id: int) -> int:
    if actor.id == client_id:
        return provider_id
    if actor.id == provider_id:
        return client_id
    # Admin changes reach the client
    return client_id


class ActivityWorkflow(NotifyingWorkflow):
    """Messages, payments and appointment changes between the two parties of a request."""

    def __init__(
        self,
        appointments: MarketplaceStore,
        messages: MessageStore,
        payments: PaymentStore,
        notifications: NotificationStore,
    ):
        super().__init__(notifications)
        self.appointments = appointments
        self.messages = messages
        self.payments = payments

    def post_message(
        self,
        actor: User,
        request_id: int,
        content: Optional[str] = None,
        attachment_url: Optional[str] = None,
        attachment_type: Optional[str] = None,
    ) -> Message:
        message = self.messages.post_message(
            actor=actor,
            request_id=request_id,
            content=content,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
        )
        if message.recipient_id != actor.id:
            self._notify(
                message.recipient_id,
                "Nova mensagem",
                message.content or "Você recebeu um novo anexo.",
                {"requestId": request_id},
                channels=["in_app", "webpush"],
            )
        return message

    def create_payment(
        self,
        actor: User,
        request_id: int,
        amount: float,
        checkout_url: Optional[str] = None,
    ) -> Payment:
        payment = self.payments.create_payment(
            actor=actor,
            request_id=request_id,
            amount=amount,
            checkout_url=checkout_url,
        )
        self._notify(
            payment.client_id,
            "Novo pagamento disponível",
            "Um novo pagamento foi gerado para sua solicitação.",
            {"requestId": request_id, "paymentId": payment.id},
            channels=["in_app", "email"],
        )
        return payment

    def update_payment(self, actor: User, payment_id: int, status: str) -> Payment:
        payment = self.payments.update_status(actor=actor, payment_id=payment_id, status=status)
        self._notify(
            _counterpart(actor, payment.client_id, payment.provider_id),
            "Atualização de pagamento",
            PAYMENT_STATUS_MESSAGES[payment.status],
            {"requestId": payment.request_id, "paymentId": payment.id},
            channels=["in_app", "email"],
        )
        return payment

    def update_appointment(
        self,
        actor: User,
        appointment_id: int,
        status: str,
        scheduled_for: Optional[str] = None,
    ) -> Appointment:
        appointment = self.appointments.update_appointment(
            actor=actor,
            appointment_id=appointment_id,
            status=status,
            scheduled_for=scheduled_for,
        )
        label = APPOINTMENT_STATUS_LABELS.get(appointment.status.value, appointment.status.value)
        self._notify(
            _counterpart(actor, appointment.client_id, appointment.provider_id),
            "Agendamento atualizado",
            f"O agendamento da solicitação #{appointment.request_id} agora está {label}.",
            {"requestId": appointment.request_id, "appointmentId": appointment.id},
        )
        return appointment

    def delete_appointment(self, actor: User, appointment_id: int) -> Appointment:
        appointment = self.appointments.delete_appointment(actor=actor, appointment_id=appointment_id)
        self._notify(
            _counterpart(actor, appointment.client_id, appointment.provider_id),
            "Agendamento removido",
            f"O agendamento da solicitação #{appointment.request_id} foi removido.",
            {"requestId": appointment.request_id},
        )
        return appointment


activity_workflow = ActivityWorkflow(
    appointments=marketplace_store,
    messages=message_store,
    payments=payment_store,
    notifications=notification_store,
)
