# plugins/battery/pylontech_lv_plugin.py
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING
if TYPE_CHECKING:
    from core.app_state import AppState

from core.reading_store import ReadingStore

from ..plugin_interface import parse_config_float, parse_config_int, parse_config_str
from ..plugin_utils import hexdump
from .bms_plugin_base import BMSPluginBase
from .pylontech_lv_decoder import compute_derived_readings, decode_response
from .pylontech_lv_exceptions import (
    CycleTimeoutError,
    GatewayConnectionError,
    InvalidBatteryAddressError,
    PylontechError,
)
from .pylontech_lv_plugin_constants import (
    DEFAULT_BATTERY_ADDRESS,
    DEFAULT_BAUD_RATE_PYLON,
    DEFAULT_TCP_PORT_PYLON,
    DEFAULT_TIMEOUT_SECONDS,
    DYNAMIC_COMMANDS,
    KEY_CELL_VOLTAGE_PREFIX,
    KEY_SERIAL_NUMBER,
    MAX_BATTERY_ADDRESS,
    MIN_BATTERY_ADDRESS,
    MIN_READ_TIMEOUT_SECONDS,
    MISSING_READING_AGE_SECONDS,
    READ_TIMEOUT_MARGIN_SECONDS,
    STATIC_COMMANDS,
    STATIC_DATA_MAX_AGE_SECONDS,
    CommandKind,
)
from .pylontech_lv_protocol import battery_address_to_adr, build_request, read_response, validate_response
from .pylontech_lv_transport import ConnectionType, open_byte_stream


class PylontechLowVoltageBMS(BMSPluginBase):
    """
    Plugin for Pylontech low-voltage battery packs (US2000/US3000/US5000 and
    compatibles) behind an RS485 gateway or a local RS485 adapter.

    One cycle sends the static commands (serial number, manufacturer info,
    protocol and software version, system parameters) when the serial number
    is older than a minute, followed by the dynamic commands (alarm info,
    charge management info, analog values). Each exchange is strictly
    request/response; the first failing exchange aborts the cycle and the base
    class commits the error as the instance state.
    """

    expected_cycle_errors = (PylontechError,)
    # a pack that reports fewer cells must not keep the voltages of the old ones
    cycle_reading_prefixes = (KEY_CELL_VOLTAGE_PREFIX,)

    def __init__(self, instance_name: str, plugin_specific_config: Dict[str, Any], main_logger: logging.Logger,
                 app_state: Optional['AppState'] = None, reading_store: Optional[ReadingStore] = None,
                 stream_factory: Optional[Callable[..., Any]] = None):
        """
        Initializes the Pylontech plugin from its `[PLUGIN_<instance>]` section.

        Args:
            See `BMSPluginBase` for the common arguments.
            stream_factory: Callable with the signature of `open_byte_stream`;
                replaced by tests to feed canned responses.
        """
        super().__init__(instance_name, plugin_specific_config, main_logger, app_state, reading_store)
        self._stream_factory = stream_factory or open_byte_stream
        self.stream = None

        connection_type_str = (parse_config_str(self.plugin_config, "pylon_connection_type", "tcp") or "tcp").lower()
        self.tcp_host = parse_config_str(self.plugin_config, "pylon_tcp_host")
        self.serial_port_name = parse_config_str(self.plugin_config, "pylon_serial_port")
        self.tcp_port = self._config_number(parse_config_int, "pylon_tcp_port", DEFAULT_TCP_PORT_PYLON)
        self.baud_rate = self._config_number(parse_config_int, "pylon_baud_rate", DEFAULT_BAUD_RATE_PYLON)
        self.battery_address = self._config_number(parse_config_int, "pylon_battery_address", DEFAULT_BATTERY_ADDRESS)
        self.timeout = self._config_number(parse_config_float, "timeout", DEFAULT_TIMEOUT_SECONDS)
        self.cycle_timeout = self._config_number(parse_config_float, "cycle_timeout", self.timeout)
        self.io_timeout = max(self.timeout - READ_TIMEOUT_MARGIN_SECONDS, MIN_READ_TIMEOUT_SECONDS)

        try:
            self.connection_type: Optional[ConnectionType] = ConnectionType(connection_type_str)
        except ValueError:
            self.connection_type = None
            self.set_config_error(f"invalid 'pylon_connection_type' ('{connection_type_str}'), must be 'tcp' or 'serial'")

        log_conn_params = f"Instance: '{self.instance_name}', Type: {connection_type_str}, Address: {self.battery_address}"
        if self.connection_type == ConnectionType.TCP:
            log_conn_params += f", Host: {self.tcp_host}, Port: {self.tcp_port}"
            if not self.tcp_host:
                self.set_config_error("'pylon_tcp_host' not configured")
        elif self.connection_type == ConnectionType.SERIAL:
            log_conn_params += f", Port: {self.serial_port_name}, Baud: {self.baud_rate}"
            if not self.serial_port_name:
                self.set_config_error("'pylon_serial_port' not configured")

        try:
            battery_address_to_adr(self.battery_address)
        except InvalidBatteryAddressError as e:
            self.set_config_error(str(e))

        if self.timeout <= 0 or self.cycle_timeout <= 0:
            self.set_config_error(f"timeouts must be positive (timeout={self.timeout}, cycle_timeout={self.cycle_timeout})")

        log_conn_params += f", Timeout: {self.timeout}s, CycleTimeout: {self.cycle_timeout}s, Interval: {self.poll_interval}s"
        self.logger.info(f"PylontechLV Plugin Initialized: {log_conn_params}")

    def _config_number(self, parser: Callable[[Dict[str, Any], str, Any], Any], key: str, default: Any) -> Any:
        try:
            return parser(self.plugin_config, key, default)
        except ValueError:
            self.set_config_error(f"invalid '{key}' ('{self.plugin_config.get(key)}')")
            return default

    @property
    def name(self) -> str:
        """Returns the technical name of the plugin."""
        return "pylontech_lv"

    @property
    def pretty_name(self) -> str:
        if self.config_error or self.connection_type is None:
            return "Pylontech LV BMS (Config Error)"
        return f"Pylontech LV BMS ({self.connection_type.value.capitalize()})"

    @staticmethod
    def get_configurable_params() -> List[Dict[str, Any]]:
        return [
            {"name": "pylon_connection_type", "type": str, "default": "tcp", "description": "Connection type: 'tcp' (RS485 gateway) or 'serial' (local RS485 adapter).", "options": ["tcp", "serial"]},
            {"name": "pylon_tcp_host", "type": str, "default": None, "description": "IP address or hostname of the RS485 gateway (if type is 'tcp')."},
            {"name": "pylon_tcp_port", "type": int, "default": DEFAULT_TCP_PORT_PYLON, "description": "TCP port of the RS485 gateway."},
            {"name": "pylon_serial_port", "type": str, "default": None, "description": "Serial port (if type is 'serial'). E.g., /dev/ttyUSB0 or COM3."},
            {"name": "pylon_baud_rate", "type": int, "default": DEFAULT_BAUD_RATE_PYLON, "description": "Baud rate for serial connection."},
            {"name": "pylon_battery_address", "type": int, "default": DEFAULT_BATTERY_ADDRESS, "description": f"Position of the pack in the daisy-chain ({MIN_BATTERY_ADDRESS}-{MAX_BATTERY_ADDRESS})."},
            {"name": "disable", "type": bool, "default": False, "description": "Switch the instance off without removing it."},
            {"name": "interval", "type": float, "default": None, "description": "Seconds between poll cycles; 0 polls only on request. Defaults to [GENERAL] POLL_INTERVAL."},
            {"name": "timeout", "type": float, "default": DEFAULT_TIMEOUT_SECONDS, "description": "Connect timeout; reads use this minus 50 ms."},
            {"name": "cycle_timeout", "type": float, "default": None, "description": "Wall-clock budget of a whole poll cycle. Defaults to 'timeout'."},
        ]

    def connect(self) -> bool:
        """
        Opens the byte stream to the gateway or serial adapter.

        An open stream is reused as long as it is still alive.

        Returns:
            bool: True on success, False otherwise (see `last_error_message`).
        """
        if self.config_error:
            return False
        if self.stream is not None and self.stream.is_alive():
            return True
        if self.stream is not None:
            self.logger.info(f"PylontechLV '{self.instance_name}': stream {self.stream} is no longer alive, reconnecting.")
            self.disconnect()

        target = f"{self.tcp_host}:{self.tcp_port}" if self.connection_type == ConnectionType.TCP else self.serial_port_name
        self.logger.info(f"PylontechLV '{self.instance_name}': Connecting to {target}...")
        try:
            self.stream = self._stream_factory(
                self.connection_type, timeout=self.timeout, io_timeout=self.io_timeout,
                host=self.tcp_host, port=self.tcp_port,
                serial_port=self.serial_port_name, baud_rate=self.baud_rate,
                logger=self.logger)
        except GatewayConnectionError as e:
            self.last_error_message = str(e)
            self.logger.error(f"PylontechLV '{self.instance_name}': {e} ({e.reason})")
            self.stream = None
            self._is_connected_flag = False
            return False

        self._is_connected_flag = True
        self.logger.info(f"PylontechLV '{self.instance_name}': Successfully connected to {target}.")
        return True

    def disconnect(self) -> None:
        """Closes the stream. Safe to call when nothing is open."""
        if self.stream is not None:
            self.logger.info(f"PylontechLV '{self.instance_name}': Disconnecting from {self.stream}...")
            try:
                self.stream.close()
            except OSError as e:
                self.logger.error(f"PylontechLV '{self.instance_name}': Error during disconnect: {e}")
        self.stream = None
        self._is_connected_flag = False

    def static_data_is_stale(self) -> bool:
        return self.readings.age(KEY_SERIAL_NUMBER, MISSING_READING_AGE_SECONDS) >= STATIC_DATA_MAX_AGE_SECONDS

    def poll_device(self, reading_set: Dict[str, Any]) -> None:
        deadline = time.monotonic() + self.cycle_timeout
        if not self.connect():
            raise GatewayConnectionError(self.last_error_message)

        commands = (STATIC_COMMANDS if self.static_data_is_stale() else ()) + DYNAMIC_COMMANDS
        self.logger.info(f"PylontechLV '{self.instance_name}': starting cycle with {len(commands)} commands.")
        for kind in commands:
            reading_set.update(self._query(kind, deadline))

        reading_set.update(compute_derived_readings(reading_set))
        self.logger.info(f"PylontechLV '{self.instance_name}': cycle complete, {len(reading_set)} readings.")

    def _query(self, kind: CommandKind, deadline: float) -> Dict[str, Any]:
        """Sends one command, waits for its response and decodes it."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CycleTimeoutError()

        self.stream.flush_input()
        self.stream.set_timeout(min(self.io_timeout, remaining))
        request = build_request(kind, self.battery_address)
        self.logger.debug(f"PylontechLV '{self.instance_name}': -> {kind.label} {request!r} ({request.hex()})")
        self.stream.write(request)

        raw = read_response(self.stream, deadline)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"PylontechLV '{self.instance_name}': <- {kind.label} {raw!r}\n{hexdump(raw)}")

        frame = validate_response(raw, kind.min_response_length)
        return decode_response(kind, frame)
