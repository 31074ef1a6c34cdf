# plugins/battery/pylontech_lv_exceptions.py
"""
Exceptions raised by the Pylontech low-voltage protocol engine.

Every exception's ``str()`` is the human-readable status text that ends up in
the ``state`` reading when it aborts a poll cycle.
"""

from typing import Optional

from .pylontech_lv_plugin_constants import (
    MSG_CYCLE_TIMEOUT,
    MSG_NO_CONNECTION,
    MSG_READ_TIMEOUT,
    MSG_UNSUPPORTED_VARIANT,
    RETURN_CODE_INVALID,
    RETURN_CODE_TOO_SHORT,
    RETURN_CODES,
)


class PylontechError(Exception):
    """Base class for all protocol and transport errors."""


class PylontechResponseError(PylontechError):
    """A response frame was received but cannot be used."""


class MalformedResponseError(PylontechResponseError):
    """The response does not have the shape ``~[~A-Z0-9]*<CR>``."""

    def __init__(self, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(RETURN_CODES[RETURN_CODE_INVALID])


class ResponseTooShortError(PylontechResponseError):
    """The response is shorter than the command requires."""

    def __init__(self, observed_length: int, min_length: int):
        self.observed_length = observed_length
        self.min_length = min_length
        message = (RETURN_CODES[RETURN_CODE_TOO_SHORT]
                   .replace("<LEN>", str(observed_length))
                   .replace("<MLEN>", str(min_length)))
        super().__init__(message)


class DeviceReportedError(PylontechResponseError):
    """The BMS answered with a known, non-normal return code."""

    def __init__(self, return_code: str, description: str):
        self.return_code = return_code
        self.description = description
        super().__init__(description)


class UnknownResponseDataError(PylontechResponseError):
    """The return code position holds something the BMS never sends."""

    def __init__(self, return_code: Optional[str]):
        self.return_code = return_code
        super().__init__(RETURN_CODES[RETURN_CODE_INVALID])


class UnsupportedVariantError(PylontechResponseError):
    """The analog value 'user defined item' selects no known capacity layout."""

    def __init__(self, value: int):
        self.value = value
        super().__init__(MSG_UNSUPPORTED_VARIANT.format(value=value))


class PylontechTransportError(PylontechError):
    """Errors of the byte stream to the RS485 gateway."""


class GatewayConnectionError(PylontechTransportError):
    """The connection to the gateway could not be opened or was lost."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(MSG_NO_CONNECTION)


class ReadTimeoutError(PylontechTransportError):
    """A single read returned nothing within the stream timeout."""

    def __init__(self):
        super().__init__(MSG_READ_TIMEOUT)


class CycleTimeoutError(PylontechTransportError):
    """The poll cycle ran past its wall-clock deadline."""

    def __init__(self):
        super().__init__(MSG_CYCLE_TIMEOUT)


class InvalidBatteryAddressError(PylontechError, ValueError):
    """The battery address cannot be encoded into the ADR byte."""

    def __init__(self, address, min_address: int, max_address: int):
        self.address = address
        super().__init__(f"invalid battery address '{address}', must be in range {min_address}..{max_address}")
