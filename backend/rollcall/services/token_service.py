"""Token window issuance."""
import secrets
from datetime import datetime
from typing import Callable, Container

from rollcall.models import Session, TokenWindow
from rollcall.utils.errors import InvalidConfig

TOKEN_BYTES = 32
MAX_COLLISION_RETRIES = 8


class TokenService:
    """Issues token windows for sessions."""

    def __init__(self, pin_length: int = 4):
        if not 4 <= pin_length <= 6:
            raise InvalidConfig("PIN length must be between 4 and 6 digits")
        self.pin_length = pin_length

    @staticmethod
    def generate_token() -> str:
        """Generate an unpredictable token string (256 bits)."""
        return secrets.token_urlsafe(TOKEN_BYTES)

    def generate_pin(self) -> str:
        """Generate a numeric PIN independent of the token."""
        return str(secrets.randbelow(10 ** self.pin_length)).zfill(self.pin_length)

    def issue_window(
        self,
        session: Session,
        sequence_number: int,
        now_fn: Callable[[], datetime],
        taken: Container[str] = ()
    ) -> TokenWindow:
        """
        Issue the window with ``sequence_number`` for ``session``.

        ``taken`` holds token strings already known to the caller; a fresh
        token is drawn until it does not collide with any of them.
        """
        for _ in range(MAX_COLLISION_RETRIES):
            token = self.generate_token()
            if token not in taken:
                break
        else:
            raise RuntimeError("Could not draw a unique token")

        return TokenWindow(
            session_id=session.session_id,
            token_string=token,
            pin=self.generate_pin(),
            issued_at=now_fn(),
            ttl_seconds=session.rotation_interval_seconds,
            sequence_number=sequence_number
        )
