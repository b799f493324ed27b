from sqlalchemy import select, delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple, Union
import logging

from connection import IMMEDIATE
from models.tables import Challenges, Hotspots
from models.results import ChallengeSummary
from models.transactions.poc_receipts_v1 import PocReceiptsV1, MalformedChallengeError


logger = logging.getLogger(__name__)

TimeLike = Union[datetime, int, float]
DurationLike = Union[timedelta, int, float]


def to_unix(value: TimeLike) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def to_seconds(value: DurationLike) -> int:
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    return int(value)


def time_key(seconds: int) -> bytes:
    """8 byte big-endian so that byte order is time order"""
    return max(seconds, 0).to_bytes(8, "big")


def key_time(key: bytes) -> int:
    return int.from_bytes(key, "big")


class ChallengeCache:
    def __init__(self, engine: Engine, source=None):
        """
        :param engine: database holding the challenges table
        :param source: anything with fetch_challenges(address, not_before), normally a HeliumClient
        """
        self.session = sessionmaker(engine)
        self.source = source

    @staticmethod
    def _bounds(sess: Session, address: str) -> Tuple[Optional[int], Optional[int]]:
        stmt = select(func.min(Challenges.time_key), func.max(Challenges.time_key)).where(Challenges.address == address)
        k_first, k_last = sess.execute(stmt).one()
        if k_first is None:
            return None, None
        return key_time(k_first), key_time(k_last)

    @staticmethod
    def _put(sess: Session, address: str, seconds: int, record: PocReceiptsV1):
        # same key replaces whatever was stored before
        sess.merge(Challenges(address=address, time_key=time_key(seconds), hash=record.hash, fields=record.model_dump_json()))

    def reconcile(self, address: str, first: TimeLike, last: TimeLike, holddown: DurationLike,
                  now: Optional[TimeLike] = None) -> int:
        """
        Brings the cached window [first, last] up to date, fetching only what is missing.
        :param address: hotspot address
        :param first: oldest time wanted
        :param last: newest time wanted
        :param holddown: slack tolerated at either end of the window
        :param now: wall clock, defaults to the current UTC time
        :return: number of records written
        """
        first_s, last_s = to_unix(first), to_unix(last)
        if first_s > last_s:
            raise ValueError(f"Invalid window: first {first_s} is after last {last_s}")
        hold = to_seconds(holddown)
        now_s = to_unix(now) if now is not None else to_unix(datetime.now(timezone.utc))

        with self.session.begin() as sess:
            # hold the write lock from the bounds read through the last write
            sess.connection(execution_options={IMMEDIATE: True})
            k_first, k_last = self._bounds(sess, address)

            if k_first is None:
                since = first_s - hold
            else:
                fresh = k_last >= now_s - hold
                reaches_back = k_first <= first_s + hold
                if fresh and reaches_back:
                    logger.info("Cache is up to date for %s", address)
                    return 0
                if not reaches_back:
                    since = first_s - hold
                elif k_last < last_s - hold:
                    # conservative: re-read the holddown before the newest cached record
                    since = k_last - hold
                else:
                    logger.info("Cache covers the requested window for %s", address)
                    return 0

            if self.source is None:
                raise RuntimeError("No challenge source configured")
            logger.info("Updating challenges for %s since %s", address, datetime.fromtimestamp(max(since, 0), tz=timezone.utc).isoformat())
            challenges = self.source.fetch_challenges(address, datetime.fromtimestamp(max(since, 0), tz=timezone.utc))

            written = 0
            for challenge in challenges:
                try:
                    seconds = challenge.get_seconds()
                except MalformedChallengeError as e:
                    logger.warning("%s", e)
                    continue
                if k_first is not None and k_first <= seconds <= k_last:
                    continue
                self._put(sess, address, seconds, challenge)
                written += 1

        logger.info("Wrote %d new challenges for %s", written, address)
        return written

    def query(self, address: str, first: TimeLike, last: TimeLike) -> List[PocReceiptsV1]:
        stmt = (select(Challenges.fields)
                .where(Challenges.address == address)
                .where(Challenges.time_key >= time_key(to_unix(first)))
                .where(Challenges.time_key <= time_key(to_unix(last)))
                .order_by(Challenges.time_key.asc()))
        with self.session() as sess:
            return [PocReceiptsV1.model_validate_json(fields) for fields in sess.execute(stmt).scalars()]

    def import_records(self, address: str, records: Iterable[PocReceiptsV1]) -> int:
        written = 0
        with self.session.begin() as sess:
            for record in records:
                try:
                    seconds = record.get_seconds()
                except MalformedChallengeError as e:
                    logger.warning("%s", e)
                    continue
                self._put(sess, address, seconds, record)
                written += 1
        return written

    def delete_range(self, address: str, before: Optional[TimeLike] = None, after: Optional[TimeLike] = None) -> int:
        """
        Deletes records strictly before `before`, or at/after `after`. Exactly one must be given.
        """
        if (before is None) == (after is None):
            raise ValueError("Please specify before or after")
        stmt = delete(Challenges).where(Challenges.address == address)
        if before is not None:
            stmt = stmt.where(Challenges.time_key < time_key(to_unix(before)))
        else:
            stmt = stmt.where(Challenges.time_key >= time_key(to_unix(after)))
        with self.session.begin() as sess:
            deleted = sess.execute(stmt).rowcount
        logger.info("Deleted %d challenges for %s", deleted, address)
        return deleted

    def delete_all(self, address: str) -> int:
        with self.session.begin() as sess:
            deleted = sess.execute(delete(Challenges).where(Challenges.address == address)).rowcount
        logger.info("Deleted %d challenges for %s", deleted, address)
        return deleted

    def summaries(self) -> List[ChallengeSummary]:
        stmt = (select(Challenges.address, Hotspots.name, func.count(), func.min(Challenges.time_key), func.max(Challenges.time_key))
                .outerjoin(Hotspots, Hotspots.address == Challenges.address)
                .group_by(Challenges.address, Hotspots.name)
                .order_by(Challenges.address))
        with self.session() as sess:
            return [ChallengeSummary(address=address, name=name, records=count, first=key_time(k_first), last=key_time(k_last))
                    for address, name, count, k_first, k_last in sess.execute(stmt).all()]
