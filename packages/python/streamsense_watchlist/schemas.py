from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from streamsense_core.types import MediaType


class WatchStatus(str, Enum):
    WANT_TO_WATCH = "want_to_watch"
    WATCHING = "watching"
    WATCHED = "watched"
    HIDDEN = "hidden"


class WatchlistEntry(BaseModel):
    user_id: str
    media_id: int
    media_type: MediaType = MediaType.MOVIE
    status: WatchStatus = WatchStatus.WANT_TO_WATCH
    updated_at: datetime | None = None
