from pydantic import BaseModel
from typing import Optional, Tuple
import h3

from models.transactions.poc_receipts_v1 import Geocode


class HotspotStatus(BaseModel):
    height: Optional[int] = None
    online: Optional[str] = None


class Hotspot(BaseModel):
    address: str
    name: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    # h3 cell the hotspot asserted
    location: Optional[str] = None
    block: Optional[int] = None
    block_added: Optional[int] = None
    reward_scale: Optional[float] = None
    owner: Optional[str] = None
    nonce: Optional[int] = None
    status: Optional[HotspotStatus] = None
    geocode: Optional[Geocode] = None

    def coordinates(self) -> Tuple[float, float]:
        if self.lat is not None and self.lng is not None:
            return self.lat, self.lng
        if self.location:
            return h3.cell_to_latlng(self.location)
        raise ValueError(f"Hotspot {self.address} has no asserted location")

    @property
    def online_status(self) -> str:
        if self.status is None or self.status.online is None:
            return "unknown"
        return self.status.online
