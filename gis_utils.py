from haversine import haversine, Unit
from typing import Tuple

from models.hotspots import Hotspot


def get_distance(a: Hotspot, b: Hotspot) -> Tuple[float, float]:
    """
    Great-circle distance between two hotspots.
    :param a: first hotspot
    :param b: second hotspot
    :return: (km, mi)
    :raises ValueError: if either hotspot has no asserted location
    """
    coords_a, coords_b = a.coordinates(), b.coordinates()
    km = haversine(coords_a, coords_b, unit=Unit.KILOMETERS)
    mi = haversine(coords_a, coords_b, unit=Unit.MILES)
    return km, mi
