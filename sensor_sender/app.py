import configparser
import logging
import os
import signal
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sensor_sender.lib.configparser import SenderConfigParser, ConfigurationError
from sensor_sender.lib.device_sim import DeviceSimulator, PublishLoop
from sensor_sender.lib.enums import TransportType
from sensor_sender.lib.iothub_client import IoTHubMqttClient, TransportError

LOG = logging.getLogger("sensor_sender.app")

# Device configuration (overridable via SENSOR_SENDER_CONFIG env var)
CONFIG_FILE = Path(
    os.getenv(
        "SENSOR_SENDER_CONFIG",
        Path(__file__).resolve().parent / "config.ini",
    )
)

TRANSPORTS = {"mqtt": TransportType.MQTT, "mqtt_ws": TransportType.MQTT_WS}


def _transport_type(name: str) -> TransportType:
    try:
        return TRANSPORTS[name]
    except KeyError:
        raise ConfigurationError(
            f"Invalid transport '{name}'. Valid values are {sorted(TRANSPORTS)}."
        ) from None


def main(config_file=None, transport_factory=None) -> int:
    """
    Run one simulated device until its battery runs out or a signal arrives.

    Returns the process exit status: 0 on a normal stop, 1 on a configuration
    error (nothing is published), 2 when the transport fails.
    """
    config_file = Path(config_file) if config_file is not None else CONFIG_FILE
    try:
        parser = SenderConfigParser(str(config_file))
        level = parser.parse_log_level()
    except (ConfigurationError, configparser.Error) as e:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
        LOG.error("Configuration error: %s", e)
        return 1
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(message)s")
    LOG.info("Sensor device app (config %s)", config_file)

    if transport_factory is None:
        transport_factory = IoTHubMqttClient.from_connection_string

    try:
        conn_str = parser.require_connection_string()
        transport_kind = _transport_type(parser.parse_transport())
        device = DeviceSimulator(str(config_file))
        device.read_config()
        device.init_sim()
        transport = transport_factory(conn_str, transport=transport_kind,
                                      send_timeout_s=parser.parse_send_timeout_s())
    except (ValueError, TypeError, configparser.Error) as e:
        LOG.error("Configuration error: %s", e)
        return 1

    try:
        transport.connect()
    except TransportError as e:
        LOG.error("Cannot connect: %s", e)
        return 2

    loop = PublishLoop(device, transport)

    def _sig(sig, frame):
        LOG.info("Signal %s received, shutting down", sig)
        loop.stop()

    previous = {s: signal.signal(s, _sig) for s in (signal.SIGINT, signal.SIGTERM)}
    try:
        loop.start()
        while loop.is_alive():
            loop.join(0.5)
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)
        transport.disconnect()

    if loop.error is not None:
        LOG.error("Transport fault, exiting: %s", loop.error)
        return 2
    LOG.info("Device stopped after %d ticks (%d messages sent)", loop.ticks, loop.sent)
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
