from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime, timezone


POC_RECEIPTS_V1 = "poc_receipts_v1"
NANOS_PER_SECOND = 1_000_000_000


class MalformedChallengeError(ValueError):
    pass


class Geocode(BaseModel):
    short_street: Optional[str] = None
    short_state: Optional[str] = None
    short_country: Optional[str] = None
    short_city: Optional[str] = None
    long_street: Optional[str] = None
    long_state: Optional[str] = None
    long_country: Optional[str] = None
    long_city: Optional[str] = None


class Witness(BaseModel):
    gateway: str
    # nanoseconds
    timestamp: int
    signal: int
    snr: float
    is_valid: Optional[bool] = None
    location: Optional[str] = None
    packet_hash: Optional[str] = None
    owner: Optional[str] = None


class Receipt(BaseModel):
    gateway: str
    timestamp: int
    signal: int
    origin: Optional[str] = None
    data: Optional[str] = None


class PathElement(BaseModel):
    challengee: str
    witnesses: Optional[List[Witness]] = None
    receipt: Optional[Receipt] = None
    geocode: Optional[Geocode] = None
    challengee_owner: Optional[str] = None
    challengee_lat: Optional[float] = None
    challengee_lon: Optional[float] = None
    challengee_location: Optional[str] = None


class PocReceiptsV1(BaseModel):
    type: str
    hash: str
    height: int
    time: Optional[int] = None
    path: Optional[List[PathElement]] = None
    secret: Optional[str] = None
    onion_key_hash: Optional[str] = None
    fee: Optional[int] = None
    challenger: Optional[str] = None
    challenger_owner: Optional[str] = None
    challenger_lat: Optional[float] = None
    challenger_lon: Optional[float] = None
    challenger_location: Optional[str] = None

    def get_timestamp(self) -> int:
        """
        Event time in nanoseconds, taken from the receipt of the first path element or its first witness.
        :raises MalformedChallengeError: if neither is present
        """
        if not self.path:
            raise MalformedChallengeError(f"No paths: unable to determine timestamp for {self.type}@{self.hash}")
        first = self.path[0]
        if first.receipt is not None:
            return first.receipt.timestamp
        if first.witnesses:
            return first.witnesses[0].timestamp
        raise MalformedChallengeError(f"No data: unable to determine timestamp for {self.type}@{self.hash}")

    def get_seconds(self) -> int:
        return self.get_timestamp() // NANOS_PER_SECOND

    def get_time(self) -> datetime:
        return datetime.fromtimestamp(self.get_timestamp() / NANOS_PER_SECOND, tz=timezone.utc)
