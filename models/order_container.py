"""
Order container SQLAlchemy models: the physical containers a forwarder booked,
with the house bills (HBLs) carried inside each one.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from core.database import Base


class CargoReleaseStatus(PyEnum):
    """Customs cargo release states reported by the backend."""
    NOT_REQUESTED = "NOT_REQUESTED"
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class OrderContainer(Base):
    """
    A container on a booking order.

    `cargo_release_status` is stored as a free string because upstream feeds
    are not guaranteed to send normalized values.
    """
    __tablename__ = "order_containers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    container_no = Column(String(11), nullable=True, index=True)
    forwarder_id = Column(String(120), nullable=True, index=True)
    forwarder_name = Column(String(160), nullable=True)

    allow_stuffing_or_destuffing = Column(
        Boolean,
        nullable=False,
        default=False,
        doc="Forwarder prepayment gate; destuffing may not start while False"
    )
    cargo_release_status = Column(
        String(40),
        nullable=True,
        default=CargoReleaseStatus.NOT_REQUESTED.value,
        doc="Customs cargo release status (raw value from the feed)"
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    hbls = relationship(
        "OrderContainerHbl",
        back_populates="order_container",
        cascade="all, delete-orphan",
        order_by="OrderContainerHbl.hbl_no",
    )

    def __repr__(self) -> str:
        return f"<OrderContainer(id={self.id}, container_no={self.container_no})>"


class OrderContainerHbl(Base):
    __tablename__ = "order_container_hbls"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_container_id = Column(
        UUID(as_uuid=True),
        ForeignKey("order_containers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    hbl_id = Column(String(120), nullable=False)
    hbl_no = Column(String(120), nullable=True)
    packing_list_no = Column(String(120), nullable=True)

    order_container = relationship("OrderContainer", back_populates="hbls")
