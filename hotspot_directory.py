from cachetools import LRUCache
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from typing import Dict, Iterable, List, Optional
import logging

import config
from models.hotspots import Hotspot
from models.tables import Hotspots, HotspotNames, Metadata


HOTSPOTS_HEIGHT_KEY = "hotspots_height"

logger = logging.getLogger(__name__)


class UnknownHotspotError(LookupError):
    pass


class NameCollisionError(RuntimeError):
    pass


def looks_like_name(identifier: str) -> bool:
    """hotspot names are three hyphenated words, e.g. "fancy-purple-goat" """
    return len(identifier.split("-")) == 3


class HotspotDirectory:
    """
    Hotspot metadata backed by the hotspots tables with an in-memory LRU in front.
    The caches are not synchronized; guard the directory externally if it is shared between threads.
    """

    def __init__(self, engine: Engine, cache_size: int = config.CACHE_SIZE):
        self.session = sessionmaker(engine)
        self._hotspots = LRUCache(maxsize=cache_size)
        self._addresses = LRUCache(maxsize=cache_size)

    def get(self, address: str) -> Hotspot:
        try:
            return self._hotspots[address]
        except KeyError:
            logger.debug("cache miss: %s", address)

        with self.session() as sess:
            row = sess.get(Hotspots, address)
            if row is None:
                raise UnknownHotspotError(f"{address} is not in database")
            hotspot = Hotspot.model_validate_json(row.fields)
        self._hotspots[address] = hotspot
        return hotspot

    def name_of(self, address: str) -> str:
        return self.get(address).name

    def address_of(self, name: str) -> str:
        try:
            return self._addresses[name]
        except KeyError:
            pass

        with self.session() as sess:
            row = sess.get(HotspotNames, name)
            if row is None:
                raise UnknownHotspotError(f"{name} is not in database")
            address = row.address
        self._addresses[name] = address
        return address

    def resolve(self, identifier: str) -> str:
        """
        Accepts a hotspot name or address and returns the address.
        :raises UnknownHotspotError: if neither lookup succeeds
        """
        identifier = identifier.strip()
        if looks_like_name(identifier):
            lookups = (self.address_of, lambda x: self.get(x).address)
        else:
            lookups = (lambda x: self.get(x).address, self.address_of)
        for lookup in lookups:
            try:
                return lookup(identifier)
            except UnknownHotspotError:
                continue
        raise UnknownHotspotError(f"Unable to find hotspot {identifier}")

    def set_all(self, hotspots: Iterable[Hotspot], height: Optional[int] = None) -> int:
        """
        Replaces the stored metadata for every given hotspot in one transaction.
        :raises NameCollisionError: if a name is already bound to a different address
        """
        count = 0
        with self.session.begin() as sess:
            bound: Dict[str, str] = {}
            for hotspot in hotspots:
                existing = bound.get(hotspot.name)
                if existing is None:
                    row = sess.get(HotspotNames, hotspot.name)
                    existing = row.address if row is not None else None
                if existing is not None and existing != hotspot.address:
                    raise NameCollisionError(f"{hotspot.name} is already bound to {existing}, refusing to rebind to {hotspot.address}")
                if existing is None:
                    sess.add(HotspotNames(name=hotspot.name, address=hotspot.address))
                bound[hotspot.name] = hotspot.address
                sess.merge(Hotspots(address=hotspot.address, name=hotspot.name, fields=hotspot.model_dump_json()))
                count += 1
            if height is not None:
                sess.merge(Metadata(key=HOTSPOTS_HEIGHT_KEY, value=str(height)))

        self._hotspots.clear()
        self._addresses.clear()
        logger.info("Stored %d hotspots", count)
        return count

    def all(self) -> List[Hotspot]:
        with self.session() as sess:
            return [Hotspot.model_validate_json(fields) for fields in sess.execute(select(Hotspots.fields).order_by(Hotspots.address)).scalars()]

    def names(self) -> Dict[str, str]:
        with self.session() as sess:
            return {name: address for name, address in sess.execute(select(HotspotNames.name, HotspotNames.address).order_by(HotspotNames.name)).all()}

    def height(self) -> Optional[int]:
        with self.session() as sess:
            row = sess.get(Metadata, HOTSPOTS_HEIGHT_KEY)
            return int(row.value) if row is not None else None

    def needs_refresh(self, current_height: int, max_lag: int = config.HOTSPOT_REFRESH_BLOCKS) -> bool:
        height = self.height()
        if height is None:
            return True
        return current_height - height > max_lag

    def refresh(self, client, force: bool = False, max_lag: int = config.HOTSPOT_REFRESH_BLOCKS) -> bool:
        """
        Reloads every hotspot from the API when the stored copy lags the chain by more than max_lag blocks.
        :return: True if the directory was reloaded
        """
        current_height = client.get_current_height()
        if not force and not self.needs_refresh(current_height, max_lag):
            logger.debug("Hotspot directory is current at height %d", current_height)
            return False
        logger.info("Refreshing hotspot directory at height %d", current_height)
        self.set_all(client.fetch_hotspots(), current_height)
        return True
