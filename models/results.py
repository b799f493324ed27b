from pydantic import BaseModel, Field
from typing import List, Optional
import enum


class Direction(enum.Enum):
    RX = "RX"
    TX = "TX"


class ChallengeResult(BaseModel):
    timestamp: int
    address: str
    signal: int
    location: Optional[str] = None


class WitnessResult(BaseModel):
    timestamp: int
    # observer under analysis
    address: str
    # peer that sent or heard the beacon
    witness: str
    type: Direction
    signal: int
    snr: float
    valid: bool
    km: float
    mi: float
    valid_threshold: float
    location: Optional[str] = None
    hash: str


class BeaconValidity(BaseModel):
    timestamp: int
    hash: str
    valid: int
    invalid: int


class SignalSeries(BaseModel):
    x: List[float] = []
    y: List[float] = []

    def __len__(self):
        return len(self.x)


class PeerSeries(BaseModel):
    address: str
    witness: str
    km: float
    mi: float
    max_valid_rssi: float
    tx: Optional[SignalSeries] = None
    tx_invalid: Optional[SignalSeries] = None
    tx_sma: Optional[SignalSeries] = None
    rx: Optional[SignalSeries] = None
    rx_invalid: Optional[SignalSeries] = None
    rx_sma: Optional[SignalSeries] = None
    min_valid_rssi: SignalSeries
    snr: SignalSeries
    data_points: int


class PeerReport(BaseModel):
    address: str
    witness: str
    witness_name: Optional[str] = None
    reward_scale: Optional[float] = None
    online: Optional[str] = None
    join_time: Optional[int] = None
    series: PeerSeries
    results: List[WitnessResult]


class ChallengeSummary(BaseModel):
    address: str
    name: Optional[str] = None
    records: int
    first: int
    last: int


class WitnessDistances(BaseModel):
    address: str
    # km to the beacon's sender, x is block time in seconds
    valid: SignalSeries = Field(default_factory=SignalSeries)
    invalid: SignalSeries = Field(default_factory=SignalSeries)

    @property
    def data_points(self) -> int:
        return len(self.valid) + len(self.invalid)
