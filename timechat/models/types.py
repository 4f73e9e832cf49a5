from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from timechat.utils.time_utils import ensure_utc


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    PostgreSQL keeps the offset natively; SQLite hands back naive values, which
    are re-tagged as UTC on the way out so comparisons in Python never mix
    naive and aware datetimes.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)
