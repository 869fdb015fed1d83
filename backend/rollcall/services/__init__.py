"""Attendance services and their wiring."""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from rollcall.services.export_service import ExportService
from rollcall.services.feed_service import FeedService
from rollcall.services.moderation_service import ModerationService
from rollcall.services.render_service import QRRenderer
from rollcall.services.session_service import SessionService
from rollcall.services.signature_service import build_verifier
from rollcall.services.token_service import TokenService
from rollcall.services.verification_service import VerificationService
from rollcall.storage.base import LedgerStore
from rollcall.utils.helpers import utcnow


@dataclass
class ServiceRegistry:
    """Every service sharing one ledger store."""
    store: LedgerStore
    tokens: TokenService
    sessions: SessionService
    verification: VerificationService
    moderation: ModerationService
    feed: FeedService
    exporter: ExportService
    renderer: QRRenderer

    def shutdown(self) -> None:
        self.sessions.shutdown()
        self.store.close()


def build_services(
    config: Mapping,
    store: LedgerStore,
    clock: Callable[[], datetime] = utcnow
) -> ServiceRegistry:
    """Wire the services from a Flask config (or any mapping with the same keys)."""
    tokens = TokenService(pin_length=config.get('PIN_LENGTH', 4))
    sessions = SessionService(
        store,
        tokens,
        clock=clock,
        retention=config.get('WINDOW_RETENTION', 4),
        auto_rotate=config.get('AUTO_ROTATE', True),
        max_interval=config.get('MAX_ROTATION_SECONDS', 3600)
    )
    verification = VerificationService(
        sessions,
        store,
        clock=clock,
        grace_seconds=config.get('GRACE_SECONDS', 5),
        grace_policy=config.get('GRACE_POLICY', 'pending'),
        verifier=build_verifier(config.get('SIGNATURE_VERIFIER', 'none'), config.get('SIGNATURE_SECRET')),
        signature_max_length=config.get('SIGNATURE_MAX_LENGTH', 4096)
    )
    exporter = ExportService()
    return ServiceRegistry(
        store=store,
        tokens=tokens,
        sessions=sessions,
        verification=verification,
        moderation=ModerationService(store, exporter=exporter, clock=clock),
        feed=FeedService(store, clock=clock, suppress_seconds=config.get('FEED_SUPPRESS_SECONDS', 1.5)),
        exporter=exporter,
        renderer=QRRenderer()
    )
