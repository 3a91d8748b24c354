from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, Boolean, JSON, TypeDecorator, UniqueConstraint
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()


class EnumValue(TypeDecorator):
    """Stores enum values ("open") rather than member names ("OPEN")."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, self.enum_class):
            return value.value
        return self.enum_class(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return self.enum_class(value)


class GigStatus(str, enum.Enum):
    OPEN = "open"
    ASSIGNED = "assigned"


class BidStatus(str, enum.Enum):
    PENDING = "pending"
    HIRED = "hired"
    REJECTED = "rejected"


class NotificationType(str, enum.Enum):
    HIRED = "hired"
    ADMIN_ASSIGNED = "adminAssigned"


class Gig(Base):
    __tablename__ = "gigs"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    title = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False)
    budget = Column(Float, nullable=False)
    status = Column(EnumValue(GigStatus, length=20), nullable=False, default=GigStatus.OPEN, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    admin_links = relationship(
        "GigAdmin",
        back_populates="gig",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="GigAdmin.created_at",
    )
    bids = relationship("Bid", back_populates="gig")

    @property
    def admin_ids(self) -> list[int]:
        return [link.user_id for link in self.admin_links]


class GigAdmin(Base):
    """Membership of a user in a gig's admin set; the owner is never a member."""
    __tablename__ = "gig_admins"

    gig_id = Column(Integer, ForeignKey("gigs.id"), primary_key=True)
    user_id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    gig = relationship("Gig", back_populates="admin_links")


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (
        UniqueConstraint("gig_id", "freelancer_id", name="uq_bids_gig_freelancer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    gig_id = Column(Integer, ForeignKey("gigs.id"), nullable=False, index=True)
    freelancer_id = Column(Integer, nullable=False, index=True)
    message = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    status = Column(EnumValue(BidStatus, length=20), nullable=False, default=BidStatus.PENDING, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    gig = relationship("Gig", back_populates="bids")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    type = Column(EnumValue(NotificationType, length=30), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)  # {"gigId": ..., "bidId": ...}
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
