import json

from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any

from sensor_sender.lib.dht11_sim import Reading


TELEMETRY_SENSOR_ID = "VSTel"
LOGGING_SENSOR_ID   = "VSLog"

# Belt stopped for longer than this raises beltAlert
BELT_ALERT_SECONDS = 5


@dataclass(frozen=True)
class MessageContext:
    sensor_id: str = TELEMETRY_SENSOR_ID
    package_count: Optional[int] = None
    belt_stopped_seconds: Optional[float] = None
    device_id: Optional[str] = None
    energy: Optional[int] = None
    last_will: Optional[bool] = None

    def with_sensor_id(self, sensor_id: str) -> "MessageContext":
        return replace(self, sensor_id=sensor_id)


@dataclass
class TelemetryEnvelope:
    payload: Dict[str, Any]
    properties: Dict[str, str] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(self.payload, separators=(",", ":"))

    def body(self) -> bytes:
        return self.to_json().encode("utf-8")


def _flag(val: bool) -> str:
    return "true" if val else "false"


def build_message(reading: Reading, context: MessageContext) -> TelemetryEnvelope:
    """
    Assemble one outbound envelope from a reading.

    Temperature is rounded to 2 decimals, humidity is passed through as is.
    Context fields left as None are not added to the payload or properties.
    """
    payload: Dict[str, Any] = {}
    if context.device_id is not None:
        payload["deviceId"] = context.device_id
    if context.package_count is not None:
        payload["packages"] = context.package_count
    payload["temperature"] = round(reading.temperature, 2)
    payload["humidity"] = reading.humidity

    properties = {"sensorID": context.sensor_id}
    if context.belt_stopped_seconds is not None:
        properties["beltAlert"] = _flag(context.belt_stopped_seconds > BELT_ALERT_SECONDS)
    if context.energy is not None:
        properties["energy"] = str(context.energy)
    if context.last_will is not None:
        properties["lastWillMessage"] = _flag(context.last_will)

    return TelemetryEnvelope(payload=payload, properties=properties)
