"""Energy and carbon estimation from busy time and a simple power model."""

import logging
from dataclasses import dataclass
from typing import Optional

import psutil

from .config import EnergyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnergyReading:
    """Energy drawn over a measured interval."""
    energy_wh: float
    carbon_g: float
    average_power_watts: float


class EnergyEstimator:
    """
    Estimate energy as power x time and carbon as energy x grid intensity.

    With ``use_cpu_utilization`` the power draw interpolates between idle and
    full device power using the CPU utilization psutil reports over the
    interval; otherwise the device is assumed fully loaded while busy.
    """

    def __init__(self, config: Optional[EnergyConfig] = None):
        self.config = config or EnergyConfig()

    def begin(self) -> None:
        """Start an interval (primes psutil's utilization counter)."""
        if self.config.use_cpu_utilization:
            psutil.cpu_percent(interval=None)

    def power_watts(self, utilization_pct: Optional[float] = None) -> float:
        cfg = self.config
        if utilization_pct is None:
            return cfg.device_power_watts
        utilization = min(max(utilization_pct, 0.0), 100.0) / 100.0
        return cfg.idle_power_watts + (cfg.device_power_watts - cfg.idle_power_watts) * utilization

    def estimate(self, busy_seconds: float) -> EnergyReading:
        """Energy and carbon for ``busy_seconds`` of work since ``begin()``."""
        utilization = None
        if self.config.use_cpu_utilization:
            utilization = psutil.cpu_percent(interval=None)

        power = self.power_watts(utilization)
        energy_wh = power * max(busy_seconds, 0.0) / 3600.0
        carbon_g = energy_wh / 1000.0 * self.config.carbon_intensity_g_kwh

        return EnergyReading(energy_wh=energy_wh, carbon_g=carbon_g, average_power_watts=power)
