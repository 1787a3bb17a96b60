from dataclasses import dataclass
import numpy as np


DEFAULT_ERROR_RATE = 0.03


@dataclass(frozen=True)
class Reading:
    temperature: float
    humidity: float


@dataclass
class Dht11SimConfig:
    min_humidity: int = 5
    max_humidity: int = 98
    min_temperature: int = 10
    max_temperature: int = 50
    spread: float = 2.0
    error_rate: float = 0.0


def _check_rate(rate: float) -> float:
    if not isinstance(rate, (int, float)) or isinstance(rate, bool):
        raise TypeError("error rate must be a number")
    rate = float(rate)
    if rate < 0.0 or rate > 1.0:
        raise ValueError("error rate must be between 0 and 1")
    return rate


class Dht11Sim:
    """
    Humidity/temperature sensor with a fixed per-instance baseline.

    Baselines are whole numbers drawn once from [min, max); every sample
    then varies uniformly in [baseline, baseline + spread).
    """

    def __init__(self, cfg: Dht11SimConfig, seed: int | None = None) -> None:
        if cfg.min_humidity >= cfg.max_humidity:
            raise ValueError("min_humidity must be lower than max_humidity")
        if cfg.min_temperature >= cfg.max_temperature:
            raise ValueError("min_temperature must be lower than max_temperature")
        if cfg.spread <= 0.0:
            raise ValueError("spread must be > 0")

        self.cfg = cfg
        self._error_rate = _check_rate(cfg.error_rate)
        self._rng = np.random.default_rng(seed)

        self._base_humidity    = float(self._rng.integers(cfg.min_humidity, cfg.max_humidity))
        self._base_temperature = float(self._rng.integers(cfg.min_temperature, cfg.max_temperature))


    @property
    def base_humidity(self) -> float:
        return self._base_humidity

    @property
    def base_temperature(self) -> float:
        return self._base_temperature

    @property
    def error_rate(self) -> float:
        return self._error_rate


    def _uniform(self, base: float) -> float:
        return float(self._rng.uniform(base, base + self.cfg.spread))

    def _failed_read(self, rate: float) -> bool:
        return rate > 0.0 and self._rng.random() < rate


    def sample(self) -> Reading:
        """Return one reading without error injection."""
        return Reading(temperature=self._uniform(self._base_temperature),
                       humidity=self._uniform(self._base_humidity))


    def sample_with_error_rate(self, rate: float) -> Reading:
        """
        Return one reading where each quantity is independently forced to 0
        with probability `rate`, emulating a failed sensor read.
        """
        rate = _check_rate(rate)
        humidity = 0.0 if self._failed_read(rate) else self._uniform(self._base_humidity)
        temperature = 0.0 if self._failed_read(rate) else self._uniform(self._base_temperature)
        return Reading(temperature=temperature, humidity=humidity)


    def read(self) -> Reading:
        return self.sample_with_error_rate(self._error_rate)


    @classmethod
    def from_config(cls,
                    min_humidity: int,
                    max_humidity: int,
                    min_temperature: int,
                    max_temperature: int,
                    spread: float = 2.0,
                    error_rate: float = 0.0,
                    seed: int | None = None) -> "Dht11Sim":
        """Factory method to build a Dht11Sim from configuration parameters."""
        cfg = Dht11SimConfig(
            min_humidity=int(min_humidity),
            max_humidity=int(max_humidity),
            min_temperature=int(min_temperature),
            max_temperature=int(max_temperature),
            spread=float(spread),
            error_rate=float(error_rate),
        )
        return cls(cfg, seed=seed)
