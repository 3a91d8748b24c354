from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
from models import BidStatus, GigStatus, NotificationType


# ------- Gigs -------
class GigCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    budget: float = Field(..., gt=0)
    admins: List[Optional[int]] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value


class GigResponse(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str
    budget: float
    status: GigStatus
    admin_ids: List[int] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GigSummary(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str
    budget: float
    status: GigStatus

    class Config:
        from_attributes = True


class GigListResponse(BaseModel):
    gigs: List[GigResponse]
    count: int
    total: int
    total_pages: int = Field(..., serialization_alias="totalPages")
    current_page: int = Field(..., serialization_alias="currentPage")


class AdminCreate(BaseModel):
    email: EmailStr


# ------- Bids -------
class BidCreate(BaseModel):
    gig_id: int = Field(..., alias="gigId")
    message: str = Field(..., min_length=1, max_length=2000)
    price: float = Field(..., gt=0)

    class Config:
        populate_by_name = True


class BidResponse(BaseModel):
    id: int
    gig_id: int
    freelancer_id: int
    message: str
    price: float
    status: BidStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MyBidResponse(BidResponse):
    gig: GigSummary


class HireResponse(BaseModel):
    message: str
    bid: BidResponse
    gig: GigResponse


# ------- Notifications -------
class NotificationResponse(BaseModel):
    id: int
    user_id: int
    type: NotificationType
    message: str
    data: Optional[dict] = None
    read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MarkAllReadResponse(BaseModel):
    updated: int
