class DeviceBattery:
    """Finite device energy, expressed as a whole percentage."""

    def __init__(self, energy: int = 100, drain: int = 2) -> None:
        if not isinstance(energy, int) or isinstance(energy, bool) or energy <= 0:
            raise TypeError("energy must be a positive integer")
        if not isinstance(drain, int) or isinstance(drain, bool) or drain <= 0:
            raise TypeError("drain must be a positive integer")
        self._energy = energy
        self._drain = drain

    @property
    def energy(self) -> int:
        return self._energy

    @property
    def drain_per_tick(self) -> int:
        return self._drain

    @property
    def exhausted(self) -> bool:
        return self._energy <= 0

    def is_last_tick(self) -> bool:
        # True when the next drain empties the battery
        return self._energy - self._drain <= 0

    def drain(self) -> int:
        self._energy -= self._drain
        return self._energy
