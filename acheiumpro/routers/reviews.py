from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from acheiumpro.auth import require_actor
from acheiumpro.models import ReviewCreateRequest, ReviewStats, User
from acheiumpro.routers.requests import raise_marketplace_http_error
from acheiumpro.services.marketplace_store import MarketplaceError
from acheiumpro.services.review_store import review_store

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("", response_model=dict)
def list_reviews(
    provider_id: int = Query(alias="providerId", gt=0),
    client_id: Optional[int] = Query(default=None, alias="clientId", gt=0),
):
    reviews = review_store.list_reviews(provider_id=provider_id, client_id=client_id)
    return {"reviews": [review.model_dump(mode="json") for review in reviews]}


@router.get("/stats", response_model=ReviewStats)
def review_stats(user_id: int = Query(gt=0)):
    return review_store.stats_for(user_id)


@router.post("", response_model=dict)
def submit_review(payload: ReviewCreateRequest, response: Response, actor: User = Depends(require_actor)):
    try:
        review, created = review_store.submit_review(
            actor=actor,
            provider_id=payload.provider_id,
            rating=payload.rating,
            comment=payload.comment,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    if created:
        response.status_code = 201
        return {"message": "Avaliação criada com sucesso", "reviewId": review.id}
    return {"message": "Avaliação atualizada com sucesso", "reviewId": review.id}


@router.delete("/{review_id}", response_model=dict)
def delete_review(review_id: int, actor: User = Depends(require_actor)):
    try:
        review_store.delete_review(actor=actor, review_id=review_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
    return {"ok": True}
