"""
Shipment sync run records.

One row per batch run plus one row per skipped shipment, so operators can
follow up on failed runs and on courier data that did not fit the status
graph.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.shipment_enums import SyncRunStatus, SyncTrigger, SkipKind


class ShipmentSyncRun(Base):
    """
    Shipment sync run table.
    Captures the outcome and counters of each reconciliation run.
    """
    __tablename__ = "shipment_sync_runs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trigger = Column(Enum(SyncTrigger), default=SyncTrigger.SCHEDULED, nullable=False)
    status = Column(Enum(SyncRunStatus), default=SyncRunStatus.RUNNING, nullable=False, index=True)
    failure_reason = Column(Text, nullable=True)

    read_count = Column(Integer, default=0, nullable=False)
    updated_count = Column(Integer, default=0, nullable=False)
    unchanged_count = Column(Integer, default=0, nullable=False)
    delivered_count = Column(Integer, default=0, nullable=False)
    skip_count = Column(Integer, default=0, nullable=False)
    chunk_count = Column(Integer, default=0, nullable=False)

    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    skips = relationship(
        "ShipmentSyncSkip",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="ShipmentSyncSkip.id",
    )

    def __repr__(self):
        return f"<ShipmentSyncRun(id={self.id}, status='{self.status}', skipped={self.skip_count})>"


class ShipmentSyncSkip(Base):
    """A shipment left unmodified by a run, with the reason."""
    __tablename__ = "shipment_sync_skips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    run_id = Column(Integer, ForeignKey("shipment_sync_runs.id", ondelete="CASCADE"), nullable=False, index=True)

    shipment_id = Column(Integer, nullable=False, index=True)
    tracking_number = Column(String(100), nullable=True)
    kind = Column(Enum(SkipKind), nullable=False)
    reason = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    run = relationship("ShipmentSyncRun", back_populates="skips")

    def __repr__(self):
        return f"<ShipmentSyncSkip(run_id={self.run_id}, shipment_id={self.shipment_id}, kind='{self.kind}')>"
