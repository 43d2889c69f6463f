from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConnectionNotFoundError
from app.models.connected_account import ConnectedAccount

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_ID = "default"

SOURCE_ENV = "env"
SOURCE_BROKER = "broker"


@dataclass(frozen=True)
class Connection:
    """Where a connection's credentials come from."""

    connection_id: str
    credential_source: str
    broker_account_id: Optional[str] = None
    external_user_id: Optional[str] = None


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError):
        return None


async def find_connected_account(session: AsyncSession, connection_id: str) -> Optional[ConnectedAccount]:
    """Look a connection up by row id (when it is a UUID) or by broker account id."""
    row_id = _as_uuid(connection_id)
    if row_id is not None:
        condition = or_(
            ConnectedAccount.id == row_id,
            ConnectedAccount.pipedream_account_id == connection_id,
        )
    else:
        condition = ConnectedAccount.pipedream_account_id == connection_id

    result = await session.execute(select(ConnectedAccount).where(condition).limit(1))
    return result.scalar_one_or_none()


class CredentialResolver:
    """Maps a connection id to its credential source."""

    def __init__(self, session_factory: Callable) -> None:
        self.session_factory = session_factory

    async def resolve(self, connection_id: str) -> Connection:
        if connection_id == DEFAULT_CONNECTION_ID:
            return Connection(connection_id=connection_id, credential_source=SOURCE_ENV)

        async with self.session_factory() as session:
            account = await find_connected_account(session, connection_id)

        if account is None:
            logger.warning(f"No connection record for {connection_id}")
            raise ConnectionNotFoundError(connection_id)

        return Connection(
            connection_id=connection_id,
            credential_source=SOURCE_BROKER,
            broker_account_id=account.pipedream_account_id,
            external_user_id=account.external_id,
        )
