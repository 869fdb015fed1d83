"""Pluggable verification of redemption signatures."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import jwt

from rollcall.utils.errors import InvalidConfig

logger = logging.getLogger(__name__)


class SignatureVerifier(Protocol):
    """Capability deciding whether ``signature`` signs ``challenge`` for a participant."""

    def verify(self, participant_id: str, challenge: str, signature: str) -> bool:
        ...


class HMACJWTVerifier:
    """
    Accepts an HS256 JWT as the signature.

    The token must carry ``sub`` equal to the participant id and
    ``challenge`` equal to the redeemed token string.
    """

    ALGORITHM = 'HS256'

    def __init__(self, secret: str):
        if not secret:
            raise InvalidConfig("A signature secret is required for hmac-jwt verification")
        self._secret = secret

    def sign(self, participant_id: str, challenge: str, expires_in: int = 120) -> str:
        """Create a signature the way a participant device would."""
        now = datetime.now(timezone.utc)
        payload = {
            'sub': participant_id,
            'challenge': challenge,
            'iat': now,
            'exp': now + timedelta(seconds=expires_in)
        }
        return jwt.encode(payload, self._secret, algorithm=self.ALGORITHM)

    def verify(self, participant_id: str, challenge: str, signature: str) -> bool:
        try:
            payload = jwt.decode(signature, self._secret, algorithms=[self.ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.warning("Expired signature from %s", participant_id)
            return False
        except jwt.InvalidTokenError:
            return False
        return payload.get('sub') == participant_id and payload.get('challenge') == challenge


def build_verifier(name: str, secret: str = None) -> Optional[SignatureVerifier]:
    """Build the verifier named by ``SIGNATURE_VERIFIER``; ``none`` checks shape only."""
    if not name or name == 'none':
        return None
    if name == 'hmac-jwt':
        return HMACJWTVerifier(secret)
    raise InvalidConfig(f"Unknown signature verifier: {name}")
