import base64
import hashlib
import hmac
import logging
import ssl
import threading
import time
import urllib.parse

from typing import Optional, Dict, Callable

import paho.mqtt.client as mqtt

from sensor_sender.lib.enums import TransportType
from sensor_sender.lib.messages import TelemetryEnvelope

LOG = logging.getLogger("sensor_sender.iothub")

API_VERSION = "2021-04-12"  # required in MQTT username for IoT Hub
WEBSOCKET_PATH = "/$iothub/websocket"
SYSTEM_PROPERTIES = {"$.ct": "application/json", "$.ce": "utf-8"}


class TransportError(RuntimeError):
    """Connecting to or publishing on the IoT hub failed."""


def parse_connection_string(conn_str: str) -> Dict[str, str]:
    """
    Split a device connection string
    (HostName=...;DeviceId=...;SharedAccessKey=...) into its fields.
    """
    if not isinstance(conn_str, str) or not conn_str.strip():
        raise ValueError("connection string must be a non-empty string")
    fields: Dict[str, str] = {}
    for part in conn_str.strip().split(";"):
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ValueError(f"malformed connection string segment '{part}'")
        # keys are base64 and may end with '='
        fields[key.strip()] = value.strip()
    missing = [k for k in ("HostName", "DeviceId", "SharedAccessKey") if not fields.get(k)]
    if missing:
        raise ValueError(f"connection string is missing {', '.join(missing)}")
    return fields


def build_sas_token(host: str, device_id: str, key_b64: str,
                    ttl_seconds: int = 3600, expiry: Optional[int] = None) -> str:
    """
    Build a SAS token for device-scoped auth:
      sr = {host}/devices/{deviceId}  (URL-encoded in the token)
      sig = HMAC-SHA256 over "{sr}\\n{expiry}"
      se = unix epoch expiry
    """
    if expiry is None:
        expiry = int(time.time()) + ttl_seconds
    resource_uri = f"{host}/devices/{device_id}"
    encoded_resource = urllib.parse.quote(resource_uri, safe="")
    to_sign = f"{encoded_resource}\n{expiry}".encode("utf-8")

    key = base64.b64decode(key_b64)
    signature = hmac.new(key, to_sign, hashlib.sha256).digest()
    signature_b64 = urllib.parse.quote(base64.b64encode(signature), safe="")

    return f"SharedAccessSignature sr={encoded_resource}&sig={signature_b64}&se={expiry}"


def events_topic(device_id: str, properties: Dict[str, str]) -> str:
    """Device-to-cloud topic with the property bag appended."""
    bag = dict(properties)
    bag.update(SYSTEM_PROPERTIES)
    encoded = "&".join(
        f"{urllib.parse.quote(str(k), safe='$.')}={urllib.parse.quote(str(v), safe='')}"
        for k, v in bag.items()
    )
    return f"devices/{device_id}/messages/events/{encoded}"


class IoTHubMqttClient:
    """
    Device client for Azure IoT Hub on top of paho-mqtt.
    send() blocks until the hub acknowledges the message (QoS 1).
    """

    def __init__(self, host: str, device_id: str, shared_access_key: str,
                 transport: TransportType = TransportType.MQTT,
                 sas_ttl_seconds: int = 3600,
                 send_timeout_s: float = 30.0,
                 client_factory: Optional[Callable[..., mqtt.Client]] = None):
        self.host = host
        self.device_id = device_id
        self.transport = transport
        self.port = transport.to_port()
        self._key = shared_access_key
        self._sas_ttl = sas_ttl_seconds
        self.send_timeout_s = send_timeout_s
        self._client_factory = client_factory or mqtt.Client

        self.client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._connect_rc = None


    @classmethod
    def from_connection_string(cls, conn_str: str,
                               transport: TransportType = TransportType.MQTT,
                               **kwargs) -> "IoTHubMqttClient":
        fields = parse_connection_string(conn_str)
        return cls(fields["HostName"], fields["DeviceId"], fields["SharedAccessKey"],
                   transport=transport, **kwargs)


    @property
    def username(self) -> str:
        return f"{self.host}/{self.device_id}/?api-version={API_VERSION}"

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()


    def _setup_mqtt_client(self) -> None:
        self.client = self._client_factory(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.device_id,
            transport=self.transport.to_paho_transport(),
            protocol=mqtt.MQTTv311,
        )
        sas = build_sas_token(self.host, self.device_id, self._key, ttl_seconds=self._sas_ttl)
        self.client.username_pw_set(username=self.username, password=sas)
        # TLS required by IoT Hub
        self.client.tls_set(tls_version=ssl.PROTOCOL_TLSv1_2)
        if self.transport == TransportType.MQTT_WS:
            self.client.ws_set_options(path=WEBSOCKET_PATH)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect


    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._connect_rc = reason_code
        if reason_code == 0:
            LOG.info("Connected to IoT hub %s:%s as %s", self.host, self.port, self.device_id)
            self._connected.set()
        else:
            LOG.error("IoT hub connect failed with rc=%s", reason_code)


    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._connected.clear()
        LOG.warning("Disconnected from IoT hub (rc=%s)", reason_code)


    def connect(self, timeout: float = 30.0) -> None:
        if self.client is None:
            self._setup_mqtt_client()
        LOG.info("Connecting to IoT hub %s:%d transport=%s", self.host, self.port,
                 self.transport.to_paho_transport())
        try:
            self.client.connect(self.host, self.port, keepalive=60)
        except OSError as e:
            raise TransportError(f"cannot reach {self.host}:{self.port}: {e}") from e
        self.client.loop_start()
        if not self._connected.wait(timeout):
            self.client.loop_stop()
            raise TransportError(
                f"IoT hub did not accept the connection within {timeout}s (rc={self._connect_rc})"
            )


    def send(self, envelope: TelemetryEnvelope, timeout: Optional[float] = None) -> None:
        if timeout is None:
            timeout = self.send_timeout_s
        if self.client is None or not self.is_connected:
            raise TransportError("not connected to the IoT hub")
        topic = events_topic(self.device_id, envelope.properties)
        info = self.client.publish(topic, payload=envelope.body(), qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"publish failed: {mqtt.error_string(info.rc)}")
        try:
            info.wait_for_publish(timeout)
        except (RuntimeError, ValueError) as e:
            raise TransportError(f"publish failed: {e}") from e
        if not info.is_published():
            raise TransportError(f"no acknowledgement from the IoT hub within {timeout}s")
        LOG.debug("Published mid=%s to %s", info.mid, topic)


    def disconnect(self) -> None:
        if self.client is None:
            return
        LOG.info("Disconnecting from IoT hub")
        try:
            self.client.disconnect()
        finally:
            self.client.loop_stop()
            self._connected.clear()
