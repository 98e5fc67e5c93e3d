from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Fixed key for the maintenance leader lock (Postgres advisory locks take a 64-bit key).
LEADER_LOCK_KEY = 84728473


async def try_advisory_lock(session: AsyncSession, key: int = LEADER_LOCK_KEY) -> bool:
    """
    Attempts to acquire a Postgres session-level advisory lock.
    Returns True if acquired (or already held by this session), False otherwise.

    Session-level locks are released automatically when the connection closes.
    Other backends have no advisory locks; a single instance is always leader.
    """
    if session.bind.dialect.name != "postgresql":
        return True

    result = await session.execute(
        text("SELECT pg_try_advisory_lock(:key)"),
        {"key": key}
    )
    return result.scalar() is True
