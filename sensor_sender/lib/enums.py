from enum import Enum


class BeltSpeed(Enum):
    STOPPED = 1
    SLOW    = 2
    FAST    = 3

    def to_packages_per_second(self) -> int:
        return {1: 0, 2: 1, 3: 2}[self.value]


class TransportType(Enum):
    MQTT    = 1
    MQTT_WS = 2

    def to_port(self) -> int:
        return {1: 8883, 2: 443}[self.value]

    def to_paho_transport(self) -> str:
        return {1: "tcp", 2: "websockets"}[self.value]


class LoopState(Enum):
    RUNNING = 1
    STOPPED = 2
