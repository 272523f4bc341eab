from datetime import UTC, datetime
from typing import Annotated

from pydantic import PlainSerializer


def _serialize_utc(value: datetime) -> str:
    """Stored timestamps are naive UTC; emit them with an explicit Z."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value.isoformat() + "Z"


UTCDateTime = Annotated[datetime, PlainSerializer(_serialize_utc, return_type=str)]
