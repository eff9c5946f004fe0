"""
Human-readable reference numbers: ``REF`` + last six digits of a millisecond
timestamp + three random uppercase alphanumerics (``REF\\d{6}[A-Z0-9]{3}``).

Generation alone can collide, so allocation checks the table first and the
unique constraint on ``workflows.reference_number`` settles races between
concurrent requests.
"""
import re
import secrets
import string
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import ServerError
from ..models.workflow import WorkflowRecord

REFERENCE_PATTERN = re.compile(r"^REF\d{6}[A-Z0-9]{3}$")
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference_number(now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    digits = f"{now_ms:06d}"[-6:]
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(3))
    return f"REF{digits}{suffix}"


def reference_exists(db: Session, reference_number: str) -> bool:
    return db.query(WorkflowRecord.id).filter(
        WorkflowRecord.reference_number == reference_number
    ).first() is not None


def allocate_reference_number(
    db: Session,
    generator: Callable[[], str] = generate_reference_number,
    max_attempts: Optional[int] = None,
) -> str:
    """Return a reference number not yet present in the workflows table."""
    attempts = max_attempts or settings.REFERENCE_MAX_ATTEMPTS
    for _ in range(attempts):
        candidate = generator()
        if not reference_exists(db, candidate):
            return candidate
    raise ServerError("Could not allocate a unique reference number")
