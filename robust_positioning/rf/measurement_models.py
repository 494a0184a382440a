"""
RF measurement models for indoor positioning.

This module implements the measurement models consumed by the lateration and
radio source estimators:
- Range (TOA-style distance between two points)
- RSS (log-distance path loss, Friis-referenced)
- Power unit conversions (dBm ↔ W)

RSSI model:
    The received power at distance d from a source transmitting Pₜ (dBm) is

        Pᵣ = Pₜ + 10·n·log10(k) − 10·n·log10(d),   k = c / (4π f)

    which is the log-distance model with reference distance d_ref = 1 m and
    reference power p_ref = Pₜ + 10·n·log10(k). For n = 2 it reduces to the
    free-space Friis equation.
"""

from typing import Union

import numpy as np

from robust_positioning.errors import InvalidArgumentError

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

# 2.4 GHz WiFi / BLE carrier
DEFAULT_FREQUENCY = 2.4e9  # Hz

# Free-space propagation
DEFAULT_PATH_LOSS_EXPONENT = 2.0

ArrayLike = Union[float, np.ndarray]


def toa_range(tx_pos: np.ndarray, rx_pos: np.ndarray) -> float:
    """
    Euclidean range between a transmitter and a receiver.

    Args:
        tx_pos: Transmitter position, shape (d,).
        rx_pos: Receiver position, shape (d,).

    Returns:
        Range in meters.

    Example:
        >>> toa_range(np.array([0.0, 0.0]), np.array([3.0, 4.0]))
        5.0
    """
    tx_pos = np.asarray(tx_pos, dtype=float)
    rx_pos = np.asarray(rx_pos, dtype=float)
    if tx_pos.shape != rx_pos.shape:
        raise InvalidArgumentError(
            f"Position shapes differ: {tx_pos.shape} vs {rx_pos.shape}"
        )
    return float(np.linalg.norm(tx_pos - rx_pos))


def dbm_to_power(power_dbm: ArrayLike) -> ArrayLike:
    """Convert power from dBm to watts."""
    return 1e-3 * 10.0 ** (np.asarray(power_dbm, dtype=float) / 10.0)


def power_to_dbm(power_w: ArrayLike) -> ArrayLike:
    """Convert power from watts to dBm."""
    power_w = np.asarray(power_w, dtype=float)
    if np.any(power_w <= 0):
        raise InvalidArgumentError("Power must be positive")
    return 10.0 * np.log10(power_w * 1e3)


def friis_constant(frequency: float = DEFAULT_FREQUENCY) -> float:
    """
    Wavelength factor k = c / (4π f) of the Friis equation.

    Args:
        frequency: Carrier frequency in Hz.

    Returns:
        k in meters.
    """
    if frequency <= 0:
        raise InvalidArgumentError(f"Frequency must be positive, got {frequency}")
    return SPEED_OF_LIGHT / (4.0 * np.pi * frequency)


def reference_rssi(
    tx_power_dbm: ArrayLike,
    path_loss_exp: ArrayLike = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> ArrayLike:
    """RSSI expected at 1 m from the source: p_ref = Pₜ + 10·n·log10(k)."""
    return tx_power_dbm + 10.0 * path_loss_exp * np.log10(friis_constant(frequency))


def rss_pathloss(
    p_ref_dbm: ArrayLike,
    distance: ArrayLike,
    path_loss_exp: ArrayLike = DEFAULT_PATH_LOSS_EXPONENT,
    d_ref: float = 1.0,
) -> ArrayLike:
    """
    RSS from the log-distance path-loss model.

        p_R = p_ref − 10·η·log10(d / d_ref)

    Args:
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        distance: Distance from source to receiver in meters.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0 (free space).
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Received signal strength in dBm.

    Raises:
        InvalidArgumentError: If any distance is not positive.

    Example:
        >>> float(rss_pathloss(p_ref_dbm=-40.0, distance=10.0, path_loss_exp=2.5))
        -65.0
    """
    distance = np.asarray(distance, dtype=float)
    if np.any(distance <= 0):
        raise InvalidArgumentError("Distance must be positive")

    rss_dbm = p_ref_dbm - 10 * path_loss_exp * np.log10(distance / d_ref)
    return rss_dbm if rss_dbm.ndim else float(rss_dbm)


def rss_to_distance(
    rss_dbm: ArrayLike,
    p_ref_dbm: ArrayLike,
    path_loss_exp: ArrayLike = DEFAULT_PATH_LOSS_EXPONENT,
    d_ref: float = 1.0,
) -> ArrayLike:
    """
    Distance from RSS by inverting the log-distance model.

        d = d_ref · 10^((p_ref − p_R) / (10·η))

    Args:
        rss_dbm: Received signal strength in dBm.
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0.
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Estimated distance in meters.
    """
    exponent = (p_ref_dbm - np.asarray(rss_dbm, dtype=float)) / (10 * path_loss_exp)
    distance = d_ref * (10**exponent)
    return distance if distance.ndim else float(distance)


def rssi_from_distance(
    tx_power_dbm: ArrayLike,
    distance: ArrayLike,
    path_loss_exp: ArrayLike = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> ArrayLike:
    """
    Expected RSSI of a source transmitting tx_power_dbm at a given distance.

    Args:
        tx_power_dbm: Transmitted power in dBm.
        distance: Distance in meters (> 0).
        path_loss_exp: Path-loss exponent n.
        frequency: Carrier frequency in Hz.

    Returns:
        Received power in dBm.

    Example:
        >>> # Free space at 2.4 GHz loses ~40 dB in the first meter
        >>> round(float(rssi_from_distance(0.0, 1.0)))
        -40
    """
    p_ref = reference_rssi(tx_power_dbm, path_loss_exp, frequency)
    return rss_pathloss(p_ref, distance, path_loss_exp)


def distance_from_rssi(
    rssi_dbm: ArrayLike,
    tx_power_dbm: ArrayLike,
    path_loss_exp: ArrayLike = DEFAULT_PATH_LOSS_EXPONENT,
    frequency: float = DEFAULT_FREQUENCY,
) -> ArrayLike:
    """
    Distance to a source of known transmitted power from measured RSSI.

    Useful to turn RSSI readings of located sources into ranges that the
    lateration solvers can consume.

    Args:
        rssi_dbm: Measured RSSI in dBm (scalar or array).
        tx_power_dbm: Transmitted power of the source in dBm (scalar or per reading).
        path_loss_exp: Path-loss exponent n.
        frequency: Carrier frequency in Hz.

    Returns:
        Distance(s) in meters.
    """
    p_ref = reference_rssi(tx_power_dbm, path_loss_exp, frequency)
    return rss_to_distance(rssi_dbm, p_ref, path_loss_exp)
