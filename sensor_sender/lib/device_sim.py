import json
import logging
import threading

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, List

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError

from sensor_sender.lib.battery import DeviceBattery
from sensor_sender.lib.configparser import SenderConfigParser
from sensor_sender.lib.conveyor_sim import ConveyorBeltSim
from sensor_sender.lib.dht11_sim import Dht11Sim
from sensor_sender.lib.enums import LoopState
from sensor_sender.lib.messages import (MessageContext, TelemetryEnvelope, build_message,
                                        TELEMETRY_SENSOR_ID, LOGGING_SENSOR_ID)

LOG = logging.getLogger("sensor_sender.device")

# reading range accepted by schemas/telemetry_v1.json
HUMIDITY_RANGE  = (0, 100)
MIN_TEMPERATURE = 0


def _check_dht11_range(cfg: Dict[str, float]) -> None:
    # baselines are drawn from [min, max), samples add up to `spread` on top
    highest_humidity = cfg["max_humidity"] - 1 + cfg["spread"]
    if cfg["min_humidity"] < HUMIDITY_RANGE[0] or highest_humidity > HUMIDITY_RANGE[1]:
        raise ValueError(
            f"Humidity range [{cfg['min_humidity']}, {highest_humidity}] must stay within "
            f"{HUMIDITY_RANGE[0]}-{HUMIDITY_RANGE[1]}"
        )
    if cfg["min_temperature"] < MIN_TEMPERATURE:
        raise ValueError(f"min_temperature must be >= {MIN_TEMPERATURE}")


def now_iso() -> str:
    """Return ISO-8601 UTC timestamp with milliseconds and trailing 'Z'."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DeviceSimulator:
    """
    Simulated DHT11 device: owns the sensor, the optional conveyor belt and
    battery models, and turns one tick into one or two envelopes.
    """

    def __init__(self, config_file: str = "config.ini"):
        self.config_file = config_file

        self._device_id: Optional[str] = None
        self._interval_ms: Optional[int] = None
        self._send_logging_copy: bool = True
        self._conveyor_enabled: bool = False
        self._battery_enabled: bool = False
        self._energy: int = 100
        self._energy_drain: int = 2
        self._seed: Optional[int] = None
        self._dht11_cfg: Dict[str, float] = {}

        self._validate_schema: bool = False
        self._schema_path: Optional[str] = None
        self._validator: Optional[Draft7Validator] = None
        self._log_messages: bool = False

        self.sensor: Optional[Dht11Sim] = None
        self.conveyor: Optional[ConveyorBeltSim] = None
        self.battery: Optional[DeviceBattery] = None


    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    @device_id.setter
    def device_id(self, val: str) -> None:
        if not isinstance(val, str):
            raise TypeError("device_id must be a string")
        self._device_id = val

    @property
    def interval_ms(self) -> Optional[int]:
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, val: int) -> None:
        if not isinstance(val, int) or val < 0:
            raise TypeError("interval_ms must be a non-negative integer")
        self._interval_ms = val

    @property
    def send_logging_copy(self) -> bool:
        return self._send_logging_copy

    @send_logging_copy.setter
    def send_logging_copy(self, val: bool) -> None:
        if not isinstance(val, bool):
            raise TypeError("send_logging_copy must be a boolean")
        self._send_logging_copy = val

    @property
    def conveyor_enabled(self) -> bool:
        return self._conveyor_enabled

    @conveyor_enabled.setter
    def conveyor_enabled(self, val: bool) -> None:
        if not isinstance(val, bool):
            raise TypeError("conveyor must be a boolean")
        self._conveyor_enabled = val

    @property
    def battery_enabled(self) -> bool:
        return self._battery_enabled

    @battery_enabled.setter
    def battery_enabled(self, val: bool) -> None:
        if not isinstance(val, bool):
            raise TypeError("battery must be a boolean")
        self._battery_enabled = val

    @property
    def energy(self) -> int:
        return self._energy

    @energy.setter
    def energy(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise TypeError("energy must be a positive integer")
        if val > 100:
            raise ValueError("energy is a percentage and cannot exceed 100")
        self._energy = val

    @property
    def energy_drain(self) -> int:
        return self._energy_drain

    @energy_drain.setter
    def energy_drain(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise TypeError("energy_drain must be a positive integer")
        self._energy_drain = val

    @property
    def validate_schema(self) -> bool:
        return self._validate_schema

    @validate_schema.setter
    def validate_schema(self, val: bool) -> None:
        if not isinstance(val, bool):
            raise TypeError("validate_schema must be a boolean")
        self._validate_schema = val

    @property
    def log_messages(self) -> bool:
        return self._log_messages

    @log_messages.setter
    def log_messages(self, val: bool) -> None:
        if not isinstance(val, bool):
            raise TypeError("log_messages must be a boolean")
        self._log_messages = val

    @property
    def battery_exhausted(self) -> bool:
        return self.battery is not None and self.battery.exhausted


    def read_config(self) -> None:
        parser = SenderConfigParser(self.config_file)

        self.interval_ms = parser.parse_interval_ms()
        self.send_logging_copy = parser.parse_send_logging_copy()
        self.conveyor_enabled = parser.parse_conveyor()
        self.battery_enabled = parser.parse_battery()
        self.energy = parser.parse_energy()
        self.energy_drain = parser.parse_energy_drain()
        self._seed = parser.parse_seed()
        self._dht11_cfg = parser.get_dht11_cfg()
        _check_dht11_range(self._dht11_cfg)

        # device id is only part of the payload when the battery is modelled
        if self.battery_enabled:
            self.device_id = parser.require_device_id()
        else:
            self.device_id = parser.parse_device_id()

        self.validate_schema = parser.parse_validate_schema()
        self._schema_path = parser.parse_schema_path()
        self.log_messages = parser.parse_log_messages()

        LOG.debug(
            "Device config loaded: device_id=%s interval_ms=%s logging_copy=%s conveyor=%s battery=%s",
            self.device_id, self.interval_ms, self.send_logging_copy,
            self.conveyor_enabled, self.battery_enabled,
        )


    def _load_schema(self) -> None:
        schema_file = Path(self._schema_path)
        if not schema_file.is_file():
            candidate = Path(self.config_file).resolve().parent / self._schema_path
            if candidate.is_file():
                schema_file = candidate
            else:
                schema_file = Path(__file__).resolve().parent.parent / self._schema_path

        try:
            with schema_file.open("r", encoding="utf-8") as fh:
                schema = json.load(fh)
        except (OSError, ValueError) as e:
            LOG.error("Failed to open schema file '%s': %s. Disabling schema validation.",
                      self._schema_path, e)
            self.validate_schema = False
            return

        self._validator = Draft7Validator(schema)
        LOG.info("Loaded telemetry schema from %s", schema_file)


    def init_sim(self, seed: Optional[int] = None) -> None:
        """
        Build the sensor, conveyor and battery models. Must call read_config() first.
        A seed given here wins over the one in the config file.
        """
        if self._interval_ms is None:
            raise RuntimeError("Call read_config() before init_sim()")
        if seed is None:
            seed = self._seed

        self.sensor = Dht11Sim.from_config(seed=seed, **self._dht11_cfg)
        LOG.info("Sensor baseline: humidity=%.0f temperature=%.0f",
                 self.sensor.base_humidity, self.sensor.base_temperature)

        self.conveyor = None
        if self.conveyor_enabled:
            # conveyor draws from its own stream so readings do not depend on belt state
            belt_seed = None if seed is None else seed + 1
            self.conveyor = ConveyorBeltSim(max(self.interval_ms, 1), seed=belt_seed)

        self.battery = DeviceBattery(self.energy, self.energy_drain) if self.battery_enabled else None

        if self.validate_schema and self._validator is None:
            self._load_schema()


    def _context(self) -> MessageContext:
        ctx = MessageContext(sensor_id=TELEMETRY_SENSOR_ID)
        if self.conveyor is not None:
            ctx = replace(ctx, package_count=self.conveyor.package_count,
                          belt_stopped_seconds=self.conveyor.belt_stopped_seconds)
        if self.battery is not None:
            ctx = replace(ctx, device_id=self.device_id, energy=self.battery.energy,
                          last_will=self.battery.is_last_tick())
        return ctx


    def build_envelopes(self) -> List[TelemetryEnvelope]:
        """Advance the models by one tick and return the envelopes to send."""
        if self.sensor is None:
            raise RuntimeError("Call init_sim() before build_envelopes()")
        if self.conveyor is not None:
            self.conveyor.step()

        reading = self.sensor.read()
        ctx = self._context()
        envelopes = [build_message(reading, ctx)]
        if self.send_logging_copy:
            envelopes.append(build_message(reading, ctx.with_sensor_id(LOGGING_SENSOR_ID)))
        return envelopes


    def _payload_ok(self, envelope: TelemetryEnvelope) -> bool:
        if not self.validate_schema or self._validator is None:
            return True
        try:
            self._validator.validate(envelope.payload)
        except ValidationError as ve:
            LOG.warning("Outgoing %s payload failed schema validation: %s",
                        envelope.properties.get("sensorID"), ve.message)
            return False
        return True


    def tick(self, transport) -> List[TelemetryEnvelope]:
        """
        Run one publish cycle: build, send each envelope and wait for the
        transport to finish, then drain the battery. Transport errors propagate.
        """
        sent: List[TelemetryEnvelope] = []
        for envelope in self.build_envelopes():
            if not self._payload_ok(envelope):
                continue
            is_log = envelope.properties.get("sensorID") == LOGGING_SENSOR_ID
            LOG.info("%s: %s", "Log data" if is_log else "Telemetry data", envelope.to_json())
            if self.log_messages:
                log_msg = {"properties": envelope.properties, "ts_local": now_iso(),
                           "payload": envelope.payload}
                LOG.info(json.dumps(log_msg, separators=(",", ":"), ensure_ascii=False))

            transport.send(envelope)

            if is_log:
                LOG.info("Log data sent")
            else:
                LOG.info("Telemetry sent %s", now_iso())
            sent.append(envelope)

        if self.battery is not None:
            remaining = self.battery.drain()
            LOG.debug("Battery at %d%%", max(remaining, 0))
        return sent


class PublishLoop(threading.Thread):
    """
    Fixed-interval publish loop for one device. The owner can join() it or
    cancel it with stop(); a battery-powered device stops by itself.
    """

    def __init__(self, device: DeviceSimulator, transport, max_ticks: Optional[int] = None):
        super().__init__(daemon=True, name="publish-loop")
        self.device = device
        self.transport = transport
        self.max_ticks = max_ticks
        self.state = LoopState.RUNNING
        self.ticks = 0
        self.sent = 0
        self.error: Optional[Exception] = None
        self._stop_event = threading.Event()

    def run(self) -> None:
        interval_s = (self.device.interval_ms or 0) / 1000.0
        try:
            while not self._stop_event.is_set():
                self.sent += len(self.device.tick(self.transport))
                self.ticks += 1
                if self.device.battery_exhausted:
                    LOG.info("Battery exhausted after %d ticks; device shutting down", self.ticks)
                    break
                if self.max_ticks is not None and self.ticks >= self.max_ticks:
                    break
                self._stop_event.wait(interval_s)
        except Exception as e:
            # no retry: the owner decides how to surface the fault
            self.error = e
            LOG.error("Publish loop stopped after %d ticks: %s", self.ticks, e)
        finally:
            self.state = LoopState.STOPPED

    def stop(self) -> None:
        self._stop_event.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join()
