"""
Assist Infrastructure Models
============================

SQLAlchemy ORM models for the ticket tables the assist pipeline reads and
appends comments to. Ticket CRUD itself belongs to the helpdesk
application; only the columns used here are mapped.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.assist.domain import Ticket, TicketComment
from src.infrastructure.database import Base, ensure_utc, utcnow


class TicketModel(Base):
    """Database model for a helpdesk ticket."""
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    comments: Mapped[List["TicketCommentModel"]] = relationship(
        back_populates="ticket",
        order_by="TicketCommentModel.created_at",
        cascade="all, delete-orphan",
    )

    def to_domain(self) -> Ticket:
        return Ticket(
            id=str(self.id),
            tenant_id=self.tenant_id,
            title=self.title or "",
            description=self.description or "",
            comments=[c.to_domain() for c in self.comments],
        )


class TicketCommentModel(Base):
    """Database model for a ticket comment."""
    __tablename__ = "ticket_comments"
    __table_args__ = (
        Index("ix_ticket_comments_ticket_created", "ticket_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False
    )
    author_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    ticket: Mapped[TicketModel] = relationship(back_populates="comments")

    def to_domain(self) -> TicketComment:
        return TicketComment(
            id=str(self.id),
            author_id=self.author_id,
            body=self.body,
            created_at=ensure_utc(self.created_at),
        )
