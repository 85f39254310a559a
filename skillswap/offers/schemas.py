from enum import Enum
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import List, Optional

from skillswap.chat.schemas import MessageData


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Create offer
class CreateOfferModel(BaseModel):
    conversation_id: UUID
    swap_id: Optional[UUID] = None
    receiver_id: UUID
    title: str = Field(min_length=1, max_length=200)
    skill_offered: str = Field(min_length=1)
    skill_wanted: str = Field(min_length=1)
    session_days: List[str] = Field(default_factory=list)
    duration: str = Field(min_length=1)
    category: Optional[str] = None
    format: Optional[str] = None
    address: Optional[str] = None
    schedule: Optional[str] = None
    notes: Optional[str] = None


class OfferData(BaseModel):
    id: str
    conversation_id: str
    swap_id: Optional[str] = None
    sender_id: str
    receiver_id: str
    title: str
    skill_offered: str
    skill_wanted: str
    session_days: List[str] = Field(default_factory=list)
    duration: str
    category: Optional[str] = None
    format: Optional[str] = None
    address: Optional[str] = None
    schedule: Optional[str] = None
    notes: Optional[str] = None
    status: OfferStatus
    created_at: datetime
    updated_at: datetime


class SwapData(BaseModel):
    id: str
    user_id: str
    partner_id: Optional[str] = None
    title: str
    status: str
    conversation_id: Optional[str] = None
    origin_offer_id: Optional[str] = None


class CreateOfferResponseModel(BaseModel):
    offer: OfferData
    message: MessageData


# Accept / reject / withdraw
class AcceptOfferResponseModel(BaseModel):
    offer: OfferData
    swap: SwapData
    rejected_offer_ids: List[str]


class RejectOfferResponseModel(BaseModel):
    offer: OfferData


class WithdrawOfferResponseModel(BaseModel):
    offer: OfferData


class GetOffersResponseModel(BaseModel):
    offers: List[OfferData]
