# schoolcash/utils/clock.py
# Wall clock of the school, in settings.TIMEZONE.

from datetime import datetime
from zoneinfo import ZoneInfo

from schoolcash.core.config import settings


def school_now() -> datetime:
    """Naive local time: the backend stores dates and due dates without an offset."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)
