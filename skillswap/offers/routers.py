import logging

from fastapi import APIRouter, Depends

from skillswap.core.dependencies import get_current_user_id, get_offer_negotiator
from skillswap.core.errors import Unauthorized
from .service import OfferNegotiator
from .schemas import (
    AcceptOfferResponseModel,
    CreateOfferModel,
    CreateOfferResponseModel,
    GetOffersResponseModel,
    OfferData,
    RejectOfferResponseModel,
    WithdrawOfferResponseModel,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=CreateOfferResponseModel, status_code=201)
def create_offer(
    data: CreateOfferModel,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    """
    Propose a skill swap inside a conversation.

    The caller becomes the offer's sender. A `pending` offer is written,
    then a chat message pointing at it (`offer_id` set, empty content), then
    the receiver is notified. If the offer cannot be stored nothing else
    happens.

    **Input**
    - `conversation_id`, `receiver_id`: the conversation and its other participant
    - `swap_id` (optional): the swap listing this offer answers. Without it,
      accepting the offer creates a brand-new swap.
    - `title`, `skill_offered`, `skill_wanted`, `session_days`, `duration`
    - `category`, `format`, `address`, `schedule`, `notes` (optional)

    **Errors**
    - 403: Caller is not a participant of the conversation
    - 404: Conversation or swap not found
    - 422: Receiver is not the other participant
    - 503: Database error
    """
    return offers.create(user_id, data)


@router.get("/pending", response_model=GetOffersResponseModel, status_code=200)
def get_pending_offers(
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    """Pending offers the caller has received, newest first."""
    return {"offers": offers.pending_for_user(user_id)}


@router.get("/swap/{swap_id}", response_model=GetOffersResponseModel, status_code=200)
def get_offers_for_swap(
    swap_id: str,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    rows = [
        row
        for row in offers.list_by_swap(swap_id)
        if user_id in (row["sender_id"], row["receiver_id"])
    ]
    return {"offers": rows}


@router.get(
    "/conversation/{conversation_id}",
    response_model=GetOffersResponseModel,
    status_code=200,
)
def get_offers_for_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    offers.conversations.require_participant(conversation_id, user_id)
    return {"offers": offers.list_by_conversation(conversation_id)}


@router.get("/{offer_id}", response_model=OfferData, status_code=200)
def get_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    offer = offers.get(offer_id)
    if user_id not in (offer["sender_id"], offer["receiver_id"]):
        raise Unauthorized("You are not part of this offer")
    return offer


@router.post("/{offer_id}/accept", response_model=AcceptOfferResponseModel, status_code=200)
def accept_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    """
    Accept a pending offer. Only the receiver can do this.

    On success the linked swap is activated with the sender as partner (or a
    new swap is created for chat-first offers), every other pending offer on
    the same swap is rejected, a confirmation message is posted and the
    sender is notified.

    **Errors**
    - 403: Caller is not the receiver
    - 404: Offer or swap not found
    - 409: Offer is no longer pending, or the conversation already has an
      accepted offer
    - 503: Database error
    """
    return offers.accept(offer_id, user_id)


@router.post("/{offer_id}/reject", response_model=RejectOfferResponseModel, status_code=200)
def reject_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    """
    Decline a pending offer. Only the receiver can do this.

    **Errors**
    - 403: Caller is not the receiver
    - 404: Offer not found
    - 409: Offer is no longer pending
    """
    return {"offer": offers.reject(offer_id, user_id)}


@router.post("/{offer_id}/withdraw", response_model=WithdrawOfferResponseModel, status_code=200)
def withdraw_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    offers: OfferNegotiator = Depends(get_offer_negotiator),
):
    """
    Take back a pending offer. Only the sender can do this; the offer ends up
    `rejected`.

    **Errors**
    - 403: Caller is not the sender
    - 404: Offer not found
    - 409: Offer is no longer pending
    """
    return {"offer": offers.withdraw(offer_id, user_id)}
