"""Authorization decisions for marketplace operations.

Each operation asks exactly one of these functions. They take the actor and
the rows the operation already loaded, and never touch the database.
"""

from typing import Any, Mapping, Optional

from acheiumpro.models import RequestStatus, Role, User


def is_admin(actor: User) -> bool:
    return actor.role == Role.ADMIN


def owns_request(actor: User, request_row: Mapping[str, Any]) -> bool:
    return actor.role == Role.CLIENT and actor.id == request_row["client_id"]


def is_assigned_provider(actor: User, request_row: Mapping[str, Any]) -> bool:
    provider_id: Optional[int] = request_row["provider_id"]
    return actor.role == Role.PROVIDER and provider_id is not None and actor.id == provider_id


def can_create_request(actor: User) -> bool:
    return actor.role == Role.CLIENT


def can_view_request(actor: User, request_row: Mapping[str, Any]) -> bool:
    if is_admin(actor) or owns_request(actor, request_row) or is_assigned_provider(actor, request_row):
        return True
    return actor.role == Role.PROVIDER and request_row["status"] == RequestStatus.PENDING.value


def can_manage_request(actor: User, request_row: Mapping[str, Any]) -> bool:
    """Cancel or delete a request."""
    return is_admin(actor) or owns_request(actor, request_row)


def can_set_request_status(actor: User, request_row: Mapping[str, Any]) -> bool:
    return is_admin(actor) or is_assigned_provider(actor, request_row)


def can_list_proposals(actor: User, request_row: Mapping[str, Any]) -> bool:
    return is_admin(actor) or actor.role == Role.PROVIDER or owns_request(actor, request_row)


def can_submit_proposal(actor: User) -> bool:
    return actor.role == Role.PROVIDER


def can_resolve_proposal(actor: User, request_row: Mapping[str, Any]) -> bool:
    return is_admin(actor) or owns_request(actor, request_row)


def can_withdraw_proposal(actor: User, proposal_row: Mapping[str, Any]) -> bool:
    return is_admin(actor) or (actor.role == Role.PROVIDER and actor.id == proposal_row["provider_id"])


def can_manage_appointment(actor: User, appointment_row: Mapping[str, Any]) -> bool:
    return is_admin(actor) or actor.id in (appointment_row["client_id"], appointment_row["provider_id"])


def can_join_thread(actor: User, request_row: Mapping[str, Any]) -> bool:
    """Read or post in the message thread of a request."""
    return is_admin(actor) or owns_request(actor, request_row) or is_assigned_provider(actor, request_row)


def can_review(actor: User) -> bool:
    return actor.role == Role.CLIENT


def can_moderate_reviews(actor: User) -> bool:
    return is_admin(actor)


def can_create_payment(actor: User, request_row: Mapping[str, Any]) -> bool:
    return is_assigned_provider(actor, request_row)


def can_update_payment(actor: User, payment_row: Mapping[str, Any]) -> bool:
    return is_admin(actor) or actor.id in (payment_row["client_id"], payment_row["provider_id"])
