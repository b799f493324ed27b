from typing import Iterable, List, Optional, Tuple
import logging
import pandas as pd

from gis_utils import get_distance
from hotspot_directory import HotspotDirectory, UnknownHotspotError
from models.hotspots import Hotspot
from models.results import BeaconValidity, ChallengeResult, Direction, PeerReport, PeerSeries, SignalSeries, WitnessDistances, WitnessResult
from models.transactions.poc_receipts_v1 import PocReceiptsV1, MalformedChallengeError, POC_RECEIPTS_V1
from rssi_validity import has_threshold, max_rssi, min_rssi_per_snr


# samples per moving average window
SMA_PERIOD = 16

logger = logging.getLogger(__name__)


def _receipts(challenges: Iterable[PocReceiptsV1]):
    for challenge in challenges:
        if challenge.type != POC_RECEIPTS_V1:
            logger.warning("unexpected entry type: %s", challenge.type)
            continue
        if not challenge.path:
            continue
        yield challenge


def addresses(challenges: Iterable[PocReceiptsV1]) -> List[str]:
    """unique list of gateways that witnessed the first hop of any challenge"""
    seen = set()
    for challenge in _receipts(challenges):
        for witness in challenge.path[0].witnesses or []:
            seen.add(witness.gateway)
    return sorted(seen)


def tx_results(address: str, challenges: Iterable[PocReceiptsV1]) -> List[ChallengeResult]:
    """witnesses of beacons sent by address"""
    results = []
    for challenge in _receipts(challenges):
        for path in challenge.path:
            if path.challengee != address:
                continue
            for witness in path.witnesses or []:
                results.append(ChallengeResult(timestamp=witness.timestamp, address=witness.gateway, signal=witness.signal, location=witness.location))
    logger.debug("found %d Tx results for %s", len(results), address)
    return results


def rx_results(address: str, challenges: Iterable[PocReceiptsV1]) -> List[ChallengeResult]:
    """witnesses of beacons sent by anyone else"""
    results = []
    for challenge in _receipts(challenges):
        for path in challenge.path:
            if path.challengee == address:
                continue
            for witness in path.witnesses or []:
                results.append(ChallengeResult(timestamp=witness.timestamp, address=witness.gateway, signal=witness.signal, location=witness.location))
    logger.debug("found %d Rx results for %s", len(results), address)
    return results


def signal_series(address: str, results: Iterable[ChallengeResult]) -> Tuple[List[float], List[float]]:
    timestamps, signals = [], []
    for result in results:
        if result.address == address:
            timestamps.append(float(result.timestamp))
            signals.append(float(result.signal))
    return timestamps, signals


def time_for_height(height: int, challenges: Iterable[PocReceiptsV1]) -> Optional[int]:
    """
    Event time (ns) of the lowest challenge above the given block height.
    :return: None if no challenge is above it
    """
    best_height, best_time = None, None
    for challenge in challenges:
        if challenge.height <= height:
            continue
        if best_height is not None and challenge.height > best_height:
            continue
        try:
            best_time = challenge.get_timestamp()
        except MalformedChallengeError:
            continue
        best_height = challenge.height
    return best_time


def witness_frame(results: List[WitnessResult]) -> pd.DataFrame:
    frame = pd.DataFrame([r.model_dump() for r in results])
    if frame.empty:
        return frame
    frame["type"] = frame["type"].map(lambda d: d.value if isinstance(d, Direction) else d)
    return frame.sort_values("timestamp", kind="stable").reset_index(drop=True)


def _series(frame: pd.DataFrame, column: str = "signal") -> SignalSeries:
    return SignalSeries(x=[float(x) for x in frame["timestamp"]], y=[float(y) for y in frame[column]])


def peer_series(results: List[WitnessResult], min_samples: int) -> Optional[PeerSeries]:
    """
    Splits one peer's witness results into TX/RX valid/invalid series plus moving averages and thresholds.
    :param results: output of WitnessAnalytics.witness_results for one pair
    :param min_samples: a direction needs this many valid points to be included
    :return: None if neither direction has enough data
    """
    if not results:
        return None
    frame = witness_frame(results)
    series = {}
    data_points = 0
    for direction, prefix in ((Direction.TX, "tx"), (Direction.RX, "rx")):
        subset = frame[frame["type"] == direction.value]
        valid = subset[subset["valid"]]
        invalid = subset[~subset["valid"]]
        if len(valid) < min_samples:
            continue
        sma = subset["signal"].rolling(SMA_PERIOD, min_periods=1).mean()
        series[prefix] = _series(valid)
        series[f"{prefix}_invalid"] = _series(invalid)
        series[f"{prefix}_sma"] = SignalSeries(x=[float(x) for x in subset["timestamp"]], y=[float(y) for y in sma])
        data_points += len(subset)

    if not series:
        return None

    first = results[0]
    return PeerSeries(address=first.address,
                      witness=first.witness,
                      km=first.km,
                      mi=first.mi,
                      max_valid_rssi=max_rssi(first.km),
                      min_valid_rssi=_series(frame[frame["valid_threshold"].map(has_threshold)], "valid_threshold"),
                      snr=_series(frame, "snr"),
                      data_points=data_points,
                      **series)


class WitnessAnalytics:
    def __init__(self, directory: HotspotDirectory):
        self.directory = directory

    def addresses(self, challenges: Iterable[PocReceiptsV1]) -> List[str]:
        return addresses(challenges)

    def witness_results(self, address: str, peer: str, challenges: Iterable[PocReceiptsV1]) -> List[WitnessResult]:
        """
        Every observation between address and peer. TX when address sent the beacon and peer heard it,
        RX when peer sent the beacon and address heard it.
        """
        try:
            a_host = self.directory.get(address)
            p_host = self.directory.get(peer)
        except UnknownHotspotError as e:
            logger.error("Unable to lookup: %s", e)
            return []
        km, mi = self._distance(a_host, p_host)

        results = []
        for challenge in _receipts(challenges):
            try:
                challenge.get_timestamp()
            except MalformedChallengeError as e:
                logger.debug("%s", e)
                continue

            for path in challenge.path:
                direction = Direction.TX if path.challengee == address else Direction.RX
                for witness in path.witnesses or []:
                    if not self._keep(address, peer, path.challengee, witness.gateway, direction):
                        continue
                    results.append(WitnessResult(timestamp=witness.timestamp,
                                                 address=address,
                                                 witness=peer,
                                                 type=direction,
                                                 signal=witness.signal,
                                                 snr=witness.snr,
                                                 valid=bool(witness.is_valid),
                                                 km=km,
                                                 mi=mi,
                                                 valid_threshold=min_rssi_per_snr(witness.snr),
                                                 location=witness.location,
                                                 hash=challenge.hash))
        logger.debug("found %d witness results for %s<->%s", len(results), address, peer)
        return results

    @staticmethod
    def _keep(address: str, peer: str, challengee: str, gateway: str, direction: Direction) -> bool:
        # ignore our own witness unless the peer sent the beacon
        if gateway == address and challengee != peer:
            return False
        if direction is Direction.TX:
            return gateway == peer
        elif direction is Direction.RX:
            return gateway == address
        raise ValueError(f"Unknown direction {direction}")

    @staticmethod
    def _distance(a: Hotspot, b: Hotspot) -> Tuple[float, float]:
        try:
            return get_distance(a, b)
        except ValueError as e:
            logger.debug("%s", e)
            return 0.0, 0.0

    def beacon_validity_counts(self, address: str, challenges: Iterable[PocReceiptsV1]) -> List[BeaconValidity]:
        """valid/invalid witness counts for each beacon address sent; beacons nobody heard are left out"""
        counts = []
        for challenge in _receipts(challenges):
            path = challenge.path[0]
            if path.challengee != address:
                continue
            try:
                timestamp = challenge.get_timestamp()
            except MalformedChallengeError:
                continue
            valid, invalid = 0, 0
            for witness in path.witnesses or []:
                if witness.gateway == address:
                    continue
                if witness.is_valid:
                    valid += 1
                else:
                    invalid += 1
            if valid == 0 and invalid == 0:
                continue
            counts.append(BeaconValidity(timestamp=timestamp, hash=challenge.hash, valid=valid, invalid=invalid))
        return counts

    def witness_distances(self, address: str, challenges: Iterable[PocReceiptsV1]) -> WitnessDistances:
        """
        Distance to the sender of every beacon address witnessed, split by validity.
        :raises UnknownHotspotError: if address itself is not in the directory
        """
        host = self.directory.get(address)
        points = {True: ([], []), False: ([], [])}
        for challenge in _receipts(challenges):
            path = challenge.path[0]
            if path.challengee == address:
                continue
            witness = next((w for w in path.witnesses or [] if w.gateway == address), None)
            if witness is None:
                continue
            try:
                other = self.directory.get(path.challengee)
            except UnknownHotspotError:
                logger.error("Unable to find %s", path.challengee)
                continue
            km, _ = self._distance(host, other)
            x, y = points[bool(witness.is_valid)]
            x.append(float(challenge.time if challenge.time is not None else challenge.get_seconds()))
            y.append(km)

        return WitnessDistances(address=address,
                                valid=SignalSeries(x=points[True][0], y=points[True][1]),
                                invalid=SignalSeries(x=points[False][0], y=points[False][1]))

    def peer_reports(self, address: str, challenges: List[PocReceiptsV1], min_samples: int) -> List[PeerReport]:
        reports = []
        for peer in self.addresses(challenges):
            if peer == address:
                continue
            results = self.witness_results(address, peer, challenges)
            if not results:
                # lots of noise in the challenge list
                logger.debug("Skipping %s <-> %s", address, peer)
                continue
            series = peer_series(results, min_samples)
            if series is None:
                continue

            try:
                host = self.directory.get(peer)
            except UnknownHotspotError:
                host = None
            join_time = None
            if host is not None and host.block_added is not None:
                join_time = time_for_height(host.block_added, challenges)

            reports.append(PeerReport(address=address,
                                      witness=peer,
                                      witness_name=host.name if host else None,
                                      reward_scale=host.reward_scale if host else None,
                                      online=host.online_status if host else None,
                                      join_time=join_time,
                                      series=series,
                                      results=results))
        logger.info("Generated %d peer reports for %s", len(reports), address)
        return reports
