"""Requester identity for the gateway.

Handles:
- Bearer token verification (tokens issued to trusted clients only)
- Header-declared identity when authentication is disabled
- Token issuance for trusted clients and tests
"""

from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from shared.config import AuthSettings
from shared.errors import SERVER_ERROR, ProtocolError
from shared.logging import get_logger
from shared.models import RequesterIdentity

logger = get_logger(__name__)

REQUESTER_TYPE_HEADER = "x-requester-type"
REQUESTER_ID_HEADER = "x-requester-id"


class TokenData(BaseModel):
    """Data extracted from a bearer token."""
    requester_id: str
    requester_type: str
    client_id: Optional[str] = None


def _unauthorized(message: str) -> ProtocolError:
    return ProtocolError(message, rpc_code=SERVER_ERROR, http_status=401)


class RequesterAuthenticator:
    """
    Resolves who is calling.

    With ``require_auth`` the identity comes from a verified bearer token
    (``sub`` = requester id, ``requester_type`` claim). Without it, the
    ``X-Requester-Type`` / ``X-Requester-Id`` headers are trusted as given.
    """

    def __init__(self, config: AuthSettings) -> None:
        self.config = config

    def create_token(self, identity: RequesterIdentity, client_id: str) -> str:
        """
        Create a bearer token for a requester.

        Args:
            identity: Requester identity to embed
            client_id: Client identifier (must be trusted to be accepted)

        Returns:
            JWT token string
        """
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.config.token_expire_minutes)
        payload = {
            "sub": identity.requester_id,
            "requester_type": identity.requester_type,
            "client_id": client_id,
            "exp": expire,
        }
        return jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)

    def verify_token(self, token: str) -> TokenData:
        """
        Verify and decode a bearer token.

        Raises:
            ProtocolError: If token is invalid, expired, or from an untrusted client
        """
        try:
            payload = jwt.decode(token, self.config.secret_key, algorithms=[self.config.algorithm])
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            raise _unauthorized("Invalid authentication token")

        token_data = TokenData(
            requester_id=payload.get("sub") or "",
            requester_type=payload.get("requester_type") or self.config.default_requester_type,
            client_id=payload.get("client_id"),
        )

        if not token_data.requester_id:
            raise _unauthorized("Token has no subject")

        if token_data.client_id not in self.config.trusted_clients:
            logger.warning("Untrusted client attempted access", client_id=token_data.client_id)
            raise ProtocolError("Untrusted client", rpc_code=SERVER_ERROR, http_status=403)

        return token_data

    def resolve(self, headers: Mapping[str, str]) -> RequesterIdentity:
        """Identity for a request, from its (case-insensitive) headers."""
        lowered = {k.lower(): v for k, v in headers.items()}

        if not self.config.require_auth:
            return RequesterIdentity(
                requester_type=lowered.get(REQUESTER_TYPE_HEADER) or self.config.default_requester_type,
                requester_id=lowered.get(REQUESTER_ID_HEADER) or "anonymous",
            )

        scheme, _, credentials = lowered.get("authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not credentials:
            raise _unauthorized("Authentication required")

        token_data = self.verify_token(credentials.strip())
        return RequesterIdentity(
            requester_type=token_data.requester_type,
            requester_id=token_data.requester_id,
        )
