import pytest
from datetime import datetime
from typing import List, Optional

import connection
from challenge_cache import ChallengeCache
from hotspot_directory import HotspotDirectory
from models.hotspots import Hotspot, HotspotStatus
from models.transactions.poc_receipts_v1 import PocReceiptsV1, PathElement, Witness, Receipt, NANOS_PER_SECOND


def make_witness(gateway: str, seconds: int, signal: int = -100, snr: float = 5.0, is_valid: Optional[bool] = True) -> Witness:
    return Witness(gateway=gateway, timestamp=seconds * NANOS_PER_SECOND, signal=signal, snr=snr, is_valid=is_valid,
                   location="8c2830828a2d9ff", packet_hash="packet")


def make_challenge(seconds: int, challengee: str = "A", witnesses: Optional[List[Witness]] = None,
                   receipt: bool = True, height: Optional[int] = None, type: str = "poc_receipts_v1") -> PocReceiptsV1:
    return PocReceiptsV1(
        type=type,
        hash=f"hash-{challengee}-{seconds}",
        height=height if height is not None else seconds,
        time=seconds,
        path=[PathElement(
            challengee=challengee,
            receipt=Receipt(gateway=challengee, timestamp=seconds * NANOS_PER_SECOND, signal=0) if receipt else None,
            witnesses=witnesses if witnesses is not None else [],
        )],
    )


class FakeSource:
    """remote that holds a fixed set of challenges and serves them newest first"""

    def __init__(self, challenges: List[PocReceiptsV1], error: Optional[Exception] = None):
        self.challenges = sorted(challenges, key=lambda c: c.get_timestamp(), reverse=True)
        self.error = error
        self.calls = []

    def fetch_challenges(self, address: str, not_before: datetime) -> List[PocReceiptsV1]:
        self.calls.append((address, not_before))
        if self.error is not None:
            raise self.error
        return [c for c in self.challenges if c.get_time() >= not_before]


@pytest.fixture
def engine(tmp_path):
    engine = connection.connect(str(tmp_path / "helium.db"))
    yield engine
    engine.dispose()


@pytest.fixture
def cache(engine):
    return ChallengeCache(engine)


@pytest.fixture
def hotspots():
    return [
        Hotspot(address="A", name="angry-purple-tiger", lat=37.7749, lng=-122.4194, block_added=10,
                reward_scale=0.5, status=HotspotStatus(height=100, online="online")),
        Hotspot(address="B", name="brave-green-bear", lat=37.8044, lng=-122.2712, block_added=150,
                reward_scale=1.0, status=HotspotStatus(height=100, online="offline")),
        Hotspot(address="C", name="calm-blue-whale", lat=37.3382, lng=-121.8863, block_added=5),
    ]


@pytest.fixture
def directory(engine, hotspots):
    directory = HotspotDirectory(engine)
    directory.set_all(hotspots, height=1000)
    return directory
