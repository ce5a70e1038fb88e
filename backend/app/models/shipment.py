"""
Shipment database model.

A shipment tracks one package through a courier. It is bound to exactly
one order (buyer-bound, carries receiver details) or one sale
(seller-bound, the seller sending the item in).
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, CheckConstraint
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.core.exceptions import ShipmentAssociationError
from backend.app.models.shipment_enums import ShipmentStatus


class Shipment(Base):
    """
    Shipment model.

    ``status`` is read-only on instances. It changes only through
    ``backend.app.domain.shipment.state_machine.apply``, which validates the
    transition first.
    """
    __tablename__ = "shipments"
    __table_args__ = (
        CheckConstraint(
            "(order_id IS NULL) <> (sale_id IS NULL)",
            name="ck_shipments_single_owner",
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - exactly one of these is set (orders and sales live in other services)
    order_id = Column(Integer, nullable=True, unique=True, index=True)
    sale_id = Column(Integer, nullable=True, unique=True, index=True)

    # Receiver (order-bound only)
    receiver_name = Column(String(100), nullable=True)
    receiver_phone = Column(String(30), nullable=True)
    postal_code = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)

    # Courier
    courier = Column(String(100), nullable=True)
    tracking_number = Column(String(100), nullable=True, index=True)

    # Status
    _status = Column("status", Enum(ShipmentStatus), default=ShipmentStatus.PENDING, nullable=False, index=True)
    last_raw_status = Column(String(255), nullable=True)
    last_tracked_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @hybrid_property
    def status(self) -> ShipmentStatus:
        return self._status

    @validates("order_id")
    def _validate_order_id(self, key, value):
        if value is not None and self.sale_id is not None:
            raise ShipmentAssociationError("Shipment is already bound to a sale")
        return value

    @validates("sale_id")
    def _validate_sale_id(self, key, value):
        if value is not None and self.order_id is not None:
            raise ShipmentAssociationError("Shipment is already bound to an order")
        return value

    @classmethod
    def for_order(cls, order_id: int, receiver_name: str = None, receiver_phone: str = None,
                  postal_code: str = None, address: str = None) -> "Shipment":
        """Create a buyer-bound shipment in PENDING."""
        if order_id is None:
            raise ShipmentAssociationError()
        shipment = cls(
            receiver_name=receiver_name,
            receiver_phone=receiver_phone,
            postal_code=postal_code,
            address=address,
            _status=ShipmentStatus.PENDING,
        )
        shipment.order_id = order_id
        return shipment

    @classmethod
    def for_sale(cls, sale_id: int) -> "Shipment":
        """Create a seller-bound shipment in PENDING."""
        if sale_id is None:
            raise ShipmentAssociationError()
        shipment = cls(_status=ShipmentStatus.PENDING)
        shipment.sale_id = sale_id
        return shipment

    @property
    def is_order_bound(self) -> bool:
        return self.order_id is not None

    def __repr__(self):
        status = self._status.value if self._status else None
        return f"<Shipment(id={self.id}, tracking='{self.tracking_number}', status='{status}')>"
