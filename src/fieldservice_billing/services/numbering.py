"""Human-readable numbers for estimates, invoices and payments."""

import time

from fieldservice_billing.config import Settings
from fieldservice_billing.logging_config import get_logger
from fieldservice_billing.repositories.interfaces import SequenceGenerator

logger = get_logger(__name__)


def fallback_number(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


def allocate_number(
    sequence: SequenceGenerator | None, settings: Settings, kind: str
) -> tuple[str, bool]:
    """Return (number, is_provisional).

    The sequence generator is authoritative. When it is missing or fails, a
    timestamp number is issued instead and flagged provisional so it can be
    reconciled later.
    """
    kind = getattr(kind, "value", kind)
    prefix = settings.number_prefix(kind)
    if sequence is not None:
        try:
            return sequence.next_number(kind), False
        except Exception as e:
            logger.warning("document_number_fallback", kind=kind, error=str(e))
    else:
        logger.warning("document_number_fallback", kind=kind, error="no sequence generator")
    return fallback_number(prefix), True
