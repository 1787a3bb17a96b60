import numpy as np

from sensor_sender.lib.enums import BeltSpeed


# (probability to stop, probability to switch to the other running speed)
STOP_CHANCE   = 0.01
SWITCH_CHANCE = 0.05
# Chance a stopped belt starts again (always at slow speed)
RESTART_CHANCE = 0.25


class ConveyorBeltSim:
    """
    Conveyor belt carrying the sensor. Tracks the belt speed, how many
    packages have left the belt and how long it has been stopped.
    """

    def __init__(self, interval_ms: int = 2000, seed: int | None = None, rng=None) -> None:
        if not isinstance(interval_ms, int) or interval_ms <= 0:
            raise TypeError("interval_ms must be a positive integer")
        self.interval_s = interval_ms / 1000.0
        self._rng = rng if rng is not None else np.random.default_rng(seed)

        self._speed = BeltSpeed.STOPPED
        # fractional packages carry over between ticks
        self._packages_moved = 0.0
        self._belt_stopped_seconds = 0.0

    @property
    def speed(self) -> BeltSpeed:
        return self._speed

    @property
    def package_count(self) -> int:
        return int(self._packages_moved + 1e-9)

    @property
    def belt_stopped_seconds(self) -> float:
        return self._belt_stopped_seconds


    def _next_speed(self) -> BeltSpeed:
        r = float(self._rng.random())
        if self._speed == BeltSpeed.STOPPED:
            return BeltSpeed.SLOW if r < RESTART_CHANCE else BeltSpeed.STOPPED
        if r < STOP_CHANCE:
            return BeltSpeed.STOPPED
        if r > 1.0 - SWITCH_CHANCE:
            return BeltSpeed.FAST if self._speed == BeltSpeed.SLOW else BeltSpeed.SLOW
        return self._speed


    def step(self) -> BeltSpeed:
        """Advance the belt by one interval and return the new speed."""
        self._speed = self._next_speed()
        if self._speed == BeltSpeed.STOPPED:
            self._belt_stopped_seconds += self.interval_s
        else:
            self._belt_stopped_seconds = 0.0
            self._packages_moved += self._speed.to_packages_per_second() * self.interval_s
        return self._speed
