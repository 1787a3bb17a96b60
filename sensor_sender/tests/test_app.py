import pytest

from sensor_sender import app
from sensor_sender.lib.enums import TransportType
from sensor_sender.lib.iothub_client import TransportError

CONN_STR = "HostName=hub.azure-devices.net;DeviceId=dht11-01;SharedAccessKey=c2VjcmV0"

BASE_CONFIG = f"""
[iothub]
connection_string = {CONN_STR}
transport = mqtt

[device]
device_id = dht11-01
interval_ms = 0
send_logging_copy = true
battery = true
energy = 10
energy_drain = 2
seed = 3

[messages]
validate_schema = true
"""


class RecordingTransport:
    instances = []

    def __init__(self, conn_str, transport=TransportType.MQTT, send_timeout_s=30.0,
                 fail_connect=False, fail_send=False):
        self.conn_str = conn_str
        self.transport = transport
        self.send_timeout_s = send_timeout_s
        self.fail_connect = fail_connect
        self.fail_send = fail_send
        self.connected = False
        self.disconnected = False
        self.sent = []
        RecordingTransport.instances.append(self)

    def connect(self):
        if self.fail_connect:
            raise TransportError("connection refused")
        self.connected = True

    def send(self, envelope):
        if self.fail_send:
            raise TransportError("broken pipe")
        self.sent.append(envelope)

    def disconnect(self):
        self.disconnected = True


def factory(**overrides):
    def _make(conn_str, **kwargs):
        kwargs.update(overrides)
        return RecordingTransport(conn_str, **kwargs)
    return _make


def write_cfg(tmp_path, content: str) -> str:
    p = tmp_path / "app_config.ini"
    p.write_text(content.strip() + "\n", encoding="utf-8")
    return str(p)


@pytest.fixture(autouse=True)
def reset(monkeypatch):
    monkeypatch.delenv("DEVICE_CONNECTION_STRING", raising=False)
    monkeypatch.delenv("DEVICE_ID", raising=False)
    RecordingTransport.instances = []


def test_missing_connection_string_exits_with_status_1(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG.replace(f"connection_string = {CONN_STR}", "connection_string ="))
    assert app.main(cfg, transport_factory=factory()) == 1
    assert RecordingTransport.instances == []


def test_missing_device_id_exits_with_status_1(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG.replace("device_id = dht11-01", "device_id ="))
    assert app.main(cfg, transport_factory=factory()) == 1
    assert RecordingTransport.instances == []


def test_invalid_transport_exits_with_status_1(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG.replace("transport = mqtt", "transport = amqp"))
    assert app.main(cfg, transport_factory=factory()) == 1
    assert RecordingTransport.instances == []


def test_malformed_connection_string_exits_with_status_1(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG.replace(CONN_STR, "HostName=only-a-host"))
    assert app.main(cfg) == 1


def test_battery_run_exits_cleanly(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG)
    assert app.main(cfg, transport_factory=factory()) == 0

    transport = RecordingTransport.instances[0]
    assert transport.conn_str == CONN_STR
    assert transport.transport == TransportType.MQTT
    assert transport.connected and transport.disconnected
    # energy 10, drain 2 -> 5 ticks, telemetry + logging copy each
    assert len(transport.sent) == 10
    assert [e.properties["lastWillMessage"] for e in transport.sent[-2:]] == ["true", "true"]


def test_websocket_transport_selected(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG.replace("transport = mqtt", "transport = mqtt_ws"))
    assert app.main(cfg, transport_factory=factory()) == 0
    assert RecordingTransport.instances[0].transport == TransportType.MQTT_WS


def test_connect_failure_exits_with_status_2(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG)
    assert app.main(cfg, transport_factory=factory(fail_connect=True)) == 2
    assert RecordingTransport.instances[0].sent == []


def test_send_failure_exits_with_status_2(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG)
    assert app.main(cfg, transport_factory=factory(fail_send=True)) == 2
    assert RecordingTransport.instances[0].disconnected


def test_file_without_section_header_exits_with_status_1(tmp_path, caplog):
    cfg = write_cfg(tmp_path, "connection_string = x\n" + BASE_CONFIG)
    with caplog.at_level("ERROR"):
        assert app.main(cfg, transport_factory=factory()) == 1
    assert RecordingTransport.instances == []
    assert "Configuration error" in caplog.text


def test_bad_interpolation_in_connection_string_exits_with_status_1(tmp_path):
    cfg = write_cfg(tmp_path, BASE_CONFIG.replace("SharedAccessKey=c2VjcmV0", "SharedAccessKey=c2%VjcmV0"))
    assert app.main(cfg, transport_factory=factory()) == 1
    assert RecordingTransport.instances == []
