from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grooming.db.base import Base


class SchedulingRecord(Base):
    __tablename__ = "schedulings"
    __table_args__ = (CheckConstraint("start_at < end_at", name="ck_schedulings_interval"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    pet_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    services = relationship(
        "ScheduledServiceRecord",
        back_populates="scheduling",
        cascade="all, delete-orphan",
        order_by="ScheduledServiceRecord.position",
    )
    notifications = relationship("NotificationRecord", back_populates="scheduling")

    __mapper_args__ = {"version_id_col": version_id}


class ScheduledServiceRecord(Base):
    __tablename__ = "scheduled_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    scheduling_id: Mapped[str] = mapped_column(
        ForeignKey("schedulings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)

    scheduling = relationship("SchedulingRecord", back_populates="services")
