import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from acheiumpro.models import Role
from acheiumpro.services.marketplace_store import (
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceStore,
    MarketplaceValidationError,
)
from acheiumpro.services.message_store import MessageStore
from acheiumpro.services.payment_store import PaymentStore
from acheiumpro.services.review_store import ReviewStore
from acheiumpro.services.user_store import UserStore


@pytest.fixture
def env(tmp_path):
    db_path = str(tmp_path / "activity.sqlite3")
    users = UserStore(db_path=db_path)
    marketplace = MarketplaceStore(db_path=db_path)

    def user(role, name):
        return users.create_user(name=name, email=f"{name.lower()}@example.com", password="secret123", role=role)

    client = user(Role.CLIENT, "Cliente")
    provider = user(Role.PROVIDER, "Prestador")
    request = marketplace.create_request(
        actor=client, title="Montar armário", description="Armário de cozinha", category="montador", location="Natal"
    )
    return {
        "db_path": db_path,
        "users": users,
        "user": user,
        "marketplace": marketplace,
        "messages": MessageStore(db_path=db_path),
        "reviews": ReviewStore(db_path=db_path),
        "payments": PaymentStore(db_path=db_path),
        "client": client,
        "provider": provider,
        "request": request,
    }


def _assign(env):
    marketplace = env["marketplace"]
    proposal, _ = marketplace.submit_proposal(actor=env["provider"], request_id=env["request"].id, proposed_price=90)
    marketplace.resolve_proposal(actor=env["client"], proposal_id=proposal.id, action="accept")


def _complete(env):
    _assign(env)
    marketplace = env["marketplace"]
    marketplace.set_request_status(actor=env["provider"], request_id=env["request"].id, new_status="accepted")
    marketplace.set_request_status(actor=env["provider"], request_id=env["request"].id, new_status="completed")


def test_thread_requires_assigned_provider(env):
    messages = env["messages"]
    with pytest.raises(MarketplaceNotFoundError):
        messages.list_messages(actor=env["client"], request_id=env["request"].id)
    with pytest.raises(MarketplaceNotFoundError):
        messages.post_message(actor=env["client"], request_id=env["request"].id, content="Olá")


def test_thread_between_client_and_provider(env):
    _assign(env)
    messages = env["messages"]
    request_id = env["request"].id

    first = messages.post_message(actor=env["client"], request_id=request_id, content="  Olá  ")
    second = messages.post_message(
        actor=env["provider"],
        request_id=request_id,
        attachment_url="https://cdn.example.com/orcamento.pdf",
        attachment_type="application/pdf",
    )

    assert first.content == "Olá"
    assert first.recipient_id == env["provider"].id
    assert first.sender_name == "Cliente"
    assert second.content is None
    assert second.recipient_id == env["client"].id
    thread = messages.list_messages(actor=env["provider"], request_id=request_id)
    assert [m.id for m in thread] == [first.id, second.id]


def test_thread_rejects_outsiders_and_empty_messages(env):
    _assign(env)
    outsider = env["user"](Role.PROVIDER, "Intruso")
    messages = env["messages"]
    request_id = env["request"].id

    with pytest.raises(MarketplacePermissionError):
        messages.list_messages(actor=outsider, request_id=request_id)
    with pytest.raises(MarketplaceValidationError):
        messages.post_message(actor=env["client"], request_id=request_id, content="   ")


def test_review_requires_completed_service(env):
    reviews = env["reviews"]
    with pytest.raises(MarketplacePermissionError):
        reviews.submit_review(actor=env["client"], provider_id=env["provider"].id, rating=5)
    with pytest.raises(MarketplacePermissionError):
        reviews.submit_review(actor=env["provider"], provider_id=env["provider"].id, rating=5)

    _complete(env)
    with pytest.raises(MarketplaceValidationError):
        reviews.submit_review(actor=env["client"], provider_id=env["provider"].id, rating=6)

    review, created = reviews.submit_review(
        actor=env["client"], provider_id=env["provider"].id, rating=4, comment="Bom"
    )
    assert created is True
    assert review.client_name == "Cliente"

    updated, created = reviews.submit_review(actor=env["client"], provider_id=env["provider"].id, rating=2)
    assert created is False
    assert updated.id == review.id
    assert updated.rating == 2
    assert updated.comment is None
    assert len(reviews.list_reviews(env["provider"].id)) == 1
    assert reviews.list_reviews(env["provider"].id, client_id=env["provider"].id) == []


def test_review_stats_and_moderation(env):
    reviews = env["reviews"]
    empty = reviews.stats_for(env["provider"].id)
    assert empty.user_name == "Prestador"
    assert empty.total_reviews == 0
    assert empty.average_rating == 0
    assert empty.rating_distribution == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}

    _complete(env)
    review, _ = reviews.submit_review(actor=env["client"], provider_id=env["provider"].id, rating=5)
    stats = reviews.stats_for(env["provider"].id)
    assert stats.total_reviews == 1
    assert stats.average_rating == 5
    assert stats.rating_distribution[5] == 1

    admin = env["user"](Role.ADMIN, "Admin")
    with pytest.raises(MarketplacePermissionError):
        reviews.delete_review(actor=env["client"], review_id=review.id)
    reviews.delete_review(actor=admin, review_id=review.id)
    with pytest.raises(MarketplaceNotFoundError):
        reviews.delete_review(actor=admin, review_id=review.id)
    assert reviews.stats_for(999999).total_reviews == 0


def test_payment_lifecycle(env):
    payments = env["payments"]
    request_id = env["request"].id
    with pytest.raises(MarketplaceNotFoundError):
        payments.create_payment(actor=env["provider"], request_id=request_id, amount=90)

    _assign(env)
    with pytest.raises(MarketplacePermissionError):
        payments.create_payment(actor=env["client"], request_id=request_id, amount=90)
    with pytest.raises(MarketplaceValidationError):
        payments.create_payment(actor=env["provider"], request_id=request_id, amount=0)

    payment = payments.create_payment(
        actor=env["provider"], request_id=request_id, amount=90, checkout_url="https://pay.example.com/abc"
    )
    assert payment.status == "awaiting_payment"
    assert payment.client_id == env["client"].id
    assert payment.description == "Armário de cozinha"

    paid = payments.update_status(actor=env["client"], payment_id=payment.id, status="paid")
    assert paid.status == "paid"

    # Creating again resets the same payment row
    again = payments.create_payment(actor=env["provider"], request_id=request_id, amount=110)
    assert again.id == payment.id
    assert again.amount == 110
    assert again.status == "awaiting_payment"

    outsider = env["user"](Role.CLIENT, "Outro")
    with pytest.raises(MarketplacePermissionError):
        payments.update_status(actor=outsider, payment_id=payment.id, status="paid")
    with pytest.raises(MarketplaceValidationError):
        payments.update_status(actor=env["client"], payment_id=payment.id, status="refunded")
    with pytest.raises(MarketplaceNotFoundError):
        payments.update_status(actor=env["client"], payment_id=payment.id + 100, status="paid")

    assert [p.id for p in payments.list_payments(actor=env["client"])] == [payment.id]
    assert [p.id for p in payments.list_payments(actor=env["provider"])] == [payment.id]
    assert payments.list_payments(actor=outsider) == []
