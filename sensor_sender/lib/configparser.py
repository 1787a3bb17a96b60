import os
import configparser

from pathlib import Path
from typing import Optional, Dict


CONNECTION_STRING_ENV = "DEVICE_CONNECTION_STRING"
DEVICE_ID_ENV         = "DEVICE_ID"


class ConfigurationError(ValueError):
    """Device configuration is missing, blank or cannot be parsed."""


class SenderConfigParser:
    def __init__(self, filename: str = "config.ini"):
        self.config = configparser.ConfigParser(inline_comment_prefixes=(";",))
        try:
            self.config.read(Path(filename))
        except configparser.Error as e:
            raise ConfigurationError(f"Cannot parse {filename}: {e}") from e

    def _sec(self, name: str) -> Optional[configparser.SectionProxy]:
        if self.config.has_section(name):
            return self.config[name]
        return None

    #  IoT Hub
    def parse_connection_string(self) -> str:
        env = os.getenv(CONNECTION_STRING_ENV)
        if env:
            return env.strip()
        sec = self._sec("iothub")
        if sec is None:
            return ""
        return sec.get("connection_string", fallback="").strip()

    def parse_transport(self) -> str:
        sec = self._sec("iothub")
        if sec is None:
            return "mqtt"
        return sec.get("transport", fallback="mqtt").strip().lower()

    def parse_send_timeout_s(self) -> float:
        sec = self._sec("iothub")
        if sec is None:
            return 30.0
        return sec.getfloat("send_timeout_s", fallback=30.0)

    #  Device
    def parse_device_id(self) -> str:
        env = os.getenv(DEVICE_ID_ENV)
        if env:
            return env.strip()
        sec = self._sec("device")
        if sec is None:
            return ""
        return sec.get("device_id", fallback="").strip()

    def parse_interval_ms(self) -> int:
        sec = self._sec("device")
        if sec is None:
            return 1000
        return sec.getint("interval_ms", fallback=1000)

    def parse_send_logging_copy(self) -> bool:
        sec = self._sec("device")
        if sec is None:
            return True
        return sec.getboolean("send_logging_copy", fallback=True)

    def parse_conveyor(self) -> bool:
        sec = self._sec("device")
        if sec is None:
            return False
        return sec.getboolean("conveyor", fallback=False)

    def parse_battery(self) -> bool:
        sec = self._sec("device")
        if sec is None:
            return False
        return sec.getboolean("battery", fallback=False)

    def parse_energy(self) -> int:
        sec = self._sec("device")
        if sec is None:
            return 100
        return sec.getint("energy", fallback=100)

    def parse_energy_drain(self) -> int:
        sec = self._sec("device")
        if sec is None:
            return 2
        return sec.getint("energy_drain", fallback=2)

    def parse_seed(self) -> Optional[int]:
        sec = self._sec("device")
        if sec is None:
            return None
        raw = sec.get("seed", fallback="").strip()
        if not raw:
            return None
        return int(raw)

    #  DHT11 sensor
    def get_dht11_cfg(self) -> Dict[str, float]:
        sec = self._sec("dht11")
        if sec is None:
            return {
                "min_humidity": 5, "max_humidity": 98,
                "min_temperature": 10, "max_temperature": 50,
                "spread": 2.0, "error_rate": 0.03,
            }
        return {
            "min_humidity": sec.getint("min_humidity", fallback=5),
            "max_humidity": sec.getint("max_humidity", fallback=98),
            "min_temperature": sec.getint("min_temperature", fallback=10),
            "max_temperature": sec.getint("max_temperature", fallback=50),
            "spread": sec.getfloat("spread", fallback=2.0),
            "error_rate": sec.getfloat("error_rate", fallback=0.03),
        }

    #  Messages
    def parse_validate_schema(self) -> bool:
        sec = self._sec("messages")
        if sec is None:
            return False
        return sec.getboolean("validate_schema", fallback=False)

    def parse_schema_path(self) -> str:
        sec = self._sec("messages")
        if sec is None:
            return "schemas/telemetry_v1.json"
        return sec.get("schema_path", fallback="schemas/telemetry_v1.json")

    def parse_log_messages(self) -> bool:
        sec = self._sec("messages")
        if sec is None:
            return False
        return sec.getboolean("log_messages", fallback=False)

    #  Logging
    def parse_log_level(self) -> str:
        sec = self._sec("logging")
        if sec is None:
            return "INFO"
        return sec.get("level", fallback="INFO").strip().upper()

    #  Required values
    def require_connection_string(self) -> str:
        val = self.parse_connection_string()
        if not val:
            raise ConfigurationError(
                f"Device connection string is not set. Put it in [iothub] connection_string "
                f"or the {CONNECTION_STRING_ENV} environment variable."
            )
        return val

    def require_device_id(self) -> str:
        val = self.parse_device_id()
        if not val:
            raise ConfigurationError(
                f"Device id is not set. Put it in [device] device_id "
                f"or the {DEVICE_ID_ENV} environment variable."
            )
        return val
