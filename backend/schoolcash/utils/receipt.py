# schoolcash/utils/receipt.py
# Generates human-readable receipt numbers: REC/2026/1019143207

from datetime import datetime
from typing import Optional

from schoolcash.core.config import settings
from schoolcash.utils.clock import school_now


def generate_receipt_number(now: Optional[datetime] = None) -> str:
    """
    Format: <prefix>/<year>/<MMDDHHMMSS>.
    The backend numbers payments itself; this number only labels the
    printed desk receipt that groups a batch.
    """
    now = now or school_now()
    return f"{settings.RECEIPT_PREFIX}/{now.year}/{now.strftime('%m%d%H%M%S')}"
