from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.csrdash.models import Base


class CSRRequest(Base):
    __tablename__ = "csr_requests"
    __table_args__ = (
        Index("idx_csr_requests_status", "status", "created_at"),
        Index("idx_csr_requests_customer_id", "customer_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "req-004"
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    request_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # pending -> rejected | completed  (approved: legacy rows only)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Rows are inserted oldest-first, so id DESC is newest-first.
    history: Mapped[list["CSRRequestHistory"]] = relationship(
        "CSRRequestHistory",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="CSRRequestHistory.id.desc()",
        lazy="selectin",
    )


class CSRRequestHistory(Base):
    __tablename__ = "csr_request_history"
    __table_args__ = (
        Index("idx_csr_request_history_request_id", "request_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[str] = mapped_column(ForeignKey("csr_requests.id", ondelete="CASCADE"), nullable=False)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(320), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped[CSRRequest] = relationship("CSRRequest", back_populates="history", lazy="selectin")
