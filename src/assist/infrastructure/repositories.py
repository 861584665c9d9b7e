"""
Assist Infrastructure Repositories
==================================

SQLAlchemy implementation of the ticket store used by the assist service.
"""

from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from src.assist.application.services import ITicketStore
from src.assist.domain import Ticket, TicketComment
from src.assist.infrastructure.models import TicketCommentModel, TicketModel
from src.core import ResourceNotFoundException
from src.infrastructure.database import utcnow


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SQLAlchemyTicketStore(ITicketStore):
    """Ticket reads with comments eagerly loaded; comment appends."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_ticket(self, tenant_id: str, ticket_id: str) -> Optional[Ticket]:
        ticket_uuid = _as_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketModel)
                .options(selectinload(TicketModel.comments))
                .where(TicketModel.id == ticket_uuid, TicketModel.tenant_id == tenant_id)
            )
            model = result.scalar_one_or_none()
            return model.to_domain() if model else None

    async def add_comment(self, tenant_id: str, ticket_id: str, author_id: str, body: str) -> TicketComment:
        ticket_uuid = _as_uuid(ticket_id)
        async with self._session_factory() as session, session.begin():
            ticket = None
            if ticket_uuid is not None:
                ticket = await session.scalar(
                    select(TicketModel.id).where(
                        TicketModel.id == ticket_uuid, TicketModel.tenant_id == tenant_id
                    )
                )
            if ticket is None:
                raise ResourceNotFoundException("Ticket", ticket_id)

            model = TicketCommentModel(
                id=uuid4(),
                tenant_id=tenant_id,
                ticket_id=ticket_uuid,
                author_id=author_id,
                body=body,
                created_at=utcnow(),
            )
            session.add(model)
            await session.flush()
            return model.to_domain()
