"""Session registry for the gateway.

A session binds an initialize call to the calls that follow it on the same
connection. The registry owns all open sessions; only ``create`` and
``dispose`` mutate it, both under one asyncio lock.

Lifecycle: CREATED -> ACTIVE (transport bound) -> CLOSED (transport closed,
explicit teardown, or idle expiry). Closed sessions are removed, so their ids
are rejected exactly like unknown ones.
"""

import asyncio
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from shared.errors import INVALID_REQUEST, SESSION_NOT_FOUND, ProtocolError
from shared.logging import get_logger
from shared.models import RequesterIdentity, Session, SessionStatus, utcnow

logger = get_logger(__name__)

INITIALIZE_METHOD = "initialize"


def _is_initialize_message(message: Any) -> bool:
    return isinstance(message, dict) and message.get("method") == INITIALIZE_METHOD


def is_initialize_request(payload: Any) -> bool:
    """True if the payload is, or is a batch containing, an initialize call."""
    if isinstance(payload, list):
        return any(_is_initialize_message(m) for m in payload)
    return _is_initialize_message(payload)


class SessionTransport:
    """
    Transport binding owned by exactly one session.

    Closing it (for example when the client connection goes away) disposes
    the session in the registry.
    """

    def __init__(self, session_id: str, on_close: Callable[[str], Awaitable[bool]]) -> None:
        self.session_id = session_id
        self._on_close = on_close
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._on_close(self.session_id)


class SessionRegistry:
    """
    Keyed registry of open sessions.

    Responsibilities:
    - Create sessions for initialize calls only
    - Resolve session tokens of follow-up calls
    - Dispose sessions idempotently
    - Expire idle sessions
    """

    def __init__(self, ttl_minutes: int = 60) -> None:
        self.ttl = timedelta(minutes=ttl_minutes) if ttl_minutes > 0 else None
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _expired(self, session: Session) -> bool:
        return self.ttl is not None and utcnow() - session.last_seen_at > self.ttl

    async def create(
        self,
        payload: Any,
        token: Optional[str] = None,
        requester: Optional[RequesterIdentity] = None,
    ) -> Session:
        """
        Create a session for an initialize call.

        Args:
            payload: Inbound message or batch
            token: Session token sent with the call, if any
            requester: Identity resolved for the connection

        Returns:
            New active session

        Raises:
            ProtocolError: If a token was supplied or the payload is not an initialize call
        """
        if token:
            raise ProtocolError(
                "Invalid Request: Server already initialized",
                rpc_code=INVALID_REQUEST,
                http_status=400,
            )
        if not is_initialize_request(payload):
            raise ProtocolError(
                "Bad Request: No valid session ID provided",
                rpc_code=INVALID_REQUEST,
                http_status=400,
            )
        if isinstance(payload, list) and len(payload) > 1:
            raise ProtocolError(
                "Invalid Request: Only one initialization request is allowed",
                rpc_code=INVALID_REQUEST,
                http_status=400,
            )

        async with self._lock:
            session_id = str(uuid.uuid4())
            while session_id in self._sessions:
                session_id = str(uuid.uuid4())

            session = Session(id=session_id, requester=requester or RequesterIdentity())
            self._sessions[session_id] = session

            session.binding = SessionTransport(session_id, self.dispose)
            session.status = SessionStatus.ACTIVE

        logger.info(
            "Session created",
            session_id=session_id,
            requester_type=session.requester.requester_type,
            requester_id=session.requester.requester_id
        )
        return session

    async def resolve(self, token: Optional[str]) -> Optional[Session]:
        """
        Find the open session for a token.

        Returns:
            The session if open and not expired, None otherwise
        """
        if not token:
            return None

        session = self._sessions.get(token)
        if session is None or session.status != SessionStatus.ACTIVE:
            return None

        if self._expired(session):
            logger.info("Session expired", session_id=token)
            await self.dispose(token)
            return None

        session.last_seen_at = utcnow()
        return session

    async def require(self, token: Optional[str]) -> Session:
        """
        Resolve a token or reject the call before dispatch.

        Raises:
            ProtocolError: 400 without a token, 404 for unknown or closed sessions
        """
        if not token:
            raise ProtocolError(
                "Bad Request: No valid session ID provided",
                rpc_code=INVALID_REQUEST,
                http_status=400,
            )

        session = await self.resolve(token)
        if session is None:
            raise ProtocolError(
                "Session not found",
                rpc_code=SESSION_NOT_FOUND,
                http_status=404,
            )
        return session

    async def dispose(self, session_id: str) -> bool:
        """
        Close and remove a session. Safe to call repeatedly.

        Returns:
            True if an open session was closed by this call
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)

        if session is None:
            return False

        session.status = SessionStatus.CLOSED
        if session.binding is not None:
            session.binding.closed = True

        logger.info("Session closed", session_id=session_id)
        return True

    async def prune_expired(self) -> int:
        """Dispose all idle sessions. Returns how many were closed."""
        expired = [sid for sid, s in list(self._sessions.items()) if self._expired(s)]
        closed = 0
        for session_id in expired:
            if await self.dispose(session_id):
                closed += 1

        if closed:
            logger.info("Expired sessions pruned", count=closed)
        return closed

    async def close_all(self) -> None:
        """Close every open transport; each close disposes its session."""
        for session in list(self._sessions.values()):
            if session.binding is not None:
                await session.binding.close()
            else:
                await self.dispose(session.id)
