"""Database package."""

from veritasor.db.models import Attestation, AttestationStatus, Base
from veritasor.db.session import (
    close_db,
    get_background_session,
    get_db_session,
    init_db,
)

__all__ = [
    "get_db_session",
    "get_background_session",
    "init_db",
    "close_db",
    "Base",
    "Attestation",
    "AttestationStatus",
]
