"""https://github.com/Carniverous19/helium_analysis_tools"""

import math
import numpy as np


# returned when an SNR has no entry in the table
NO_THRESHOLD = 1000.0
# returned for hotspots too close to bound the RSSI
UNBOUNDED_RSSI = -1000.0

FREQUENCY_MHZ = 915.0
# 28dBm tx power plus 1.8dBi gain on each side
TX_POWER_DBM = 28.0
ANTENNA_GAIN_DBI = 1.8 * 2
FSPL_CONSTANT = 32.44

# minimum valid RSSI keyed by ceil(SNR)
SNR_TABLE = {
    16: -90,
    15: -90,
    14: -90,
    13: -90,
    12: -90,
    11: -90,
    10: -90,
    9: -95,
    8: -105,
    7: -108,
    6: -113,
    5: -115,
    4: -115,
    3: -115,
    2: -117,
    1: -120,
    0: -125,
    -1: -125,
    -2: -125,
    -3: -125,
    -4: -125,
    -5: -125,
    -6: -124,
    -7: -123,
    -8: -125,
    -9: -125,
    -10: -125,
    -11: -125,
    -12: -125,
    -13: -125,
    -14: -125,
    -15: -124,
    -16: -123,
    -17: -123,
    -18: -123,
    -19: -123,
    -20: -123,
}


def max_rssi(km: float) -> float:
    """free space path loss at 915MHz"""
    if km < 0.001:
        return UNBOUNDED_RSSI
    return float(TX_POWER_DBM + ANTENNA_GAIN_DBI - 20.0 * np.log10(km) - 20.0 * np.log10(FREQUENCY_MHZ) - FSPL_CONSTANT)


def min_rssi_per_snr(snr: float) -> float:
    return float(SNR_TABLE.get(math.ceil(snr), NO_THRESHOLD))


def has_threshold(threshold: float) -> bool:
    return threshold != NO_THRESHOLD
