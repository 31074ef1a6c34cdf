# plugins/battery/pylontech_lv_protocol.py
"""
Frame encoding, response validation and response reading for the Pylontech
low-voltage RS485 protocol.

Everything in here is free of plugin state: requests are built from a command
kind and a battery address, responses are validated against the minimum length
of the command that was sent, and the reader only needs an object with a
``read(size)`` method that returns ``b""`` when its timeout expires.
"""

import re
import time
from typing import Optional, Union

from .pylontech_lv_plugin_constants import (
    ALLOWED_RESPONSE_CHARS,
    EOI,
    FIRST_PACK_ADR,
    LOCAL_RETURN_CODES,
    MAX_BATTERY_ADDRESS,
    MAX_RESPONSE_LENGTH,
    MIN_BATTERY_ADDRESS,
    RESPONSE_SHAPE_PATTERN,
    RETURN_CODE_MIN_FRAME_LENGTH,
    RETURN_CODE_NORMAL,
    RETURN_CODE_OFFSET,
    RETURN_CODES,
    SOI,
    CommandKind,
)
from .pylontech_lv_exceptions import (
    CycleTimeoutError,
    DeviceReportedError,
    InvalidBatteryAddressError,
    MalformedResponseError,
    ReadTimeoutError,
    ResponseTooShortError,
    UnknownResponseDataError,
)

_RESPONSE_SHAPE = re.compile(RESPONSE_SHAPE_PATTERN)
_MAX_LENID = 0xFFF


def calculate_checksum(data: Union[str, bytes]) -> str:
    """
    Calculates the CHKSUM field of a frame.

    The checksum is the two's complement of the 16-bit sum of all ASCII
    characters from VER up to the end of INFO.

    Args:
        data: The frame characters to be checksummed (without SOI, CHKSUM and EOI).

    Returns:
        The checksum as four uppercase hex digits, e.g. ``"FD2D"``.
    """
    if isinstance(data, str):
        data = data.encode("ascii")
    total = sum(data) & 0xFFFF
    return f"{((total ^ 0xFFFF) + 1) & 0xFFFF:04X}"


def encode_length_field(info: Union[str, bytes]) -> str:
    """
    Calculates the LENGTH field (LCHKSUM nibble + 12-bit LENID) for an INFO payload.

    LENID is the number of ASCII characters in INFO. LCHKSUM is the two's
    complement, modulo 16, of the sum of the three LENID nibbles.

    Returns:
        The LENGTH field as four uppercase hex digits, e.g. ``"E002"`` for a
        two character INFO.
    """
    lenid = len(info)
    if lenid > _MAX_LENID:
        raise ValueError(f"INFO payload of {lenid} characters does not fit into LENID")
    lchksum = sum((lenid >> (i * 4)) & 0xF for i in range(3)) % 16
    lchksum = ((lchksum ^ 0xF) + 1) % 16
    return f"{(lchksum << 12) | lenid:04X}"


def battery_address_to_adr(address: int) -> int:
    """Maps a daisy-chain position (1 = first pack) to the wire ADR byte."""
    if isinstance(address, bool) or not isinstance(address, int) \
            or not MIN_BATTERY_ADDRESS <= address <= MAX_BATTERY_ADDRESS:
        raise InvalidBatteryAddressError(address, MIN_BATTERY_ADDRESS, MAX_BATTERY_ADDRESS)
    return FIRST_PACK_ADR + address - 1


def build_request(kind: CommandKind, address: int) -> bytes:
    """
    Builds the complete request frame for a read command.

    The INFO payload of every read command is the ADR byte itself.

    Args:
        kind: The command to encode.
        address: Position of the pack in the daisy-chain, starting at 1.

    Returns:
        The ASCII frame including SOI and the terminating CR, e.g.
        ``b"~20024693E00202FD2D\\r"`` for the serial number of pack 1.

    Raises:
        InvalidBatteryAddressError: If the address cannot be encoded.
    """
    spec = kind.value
    adr = battery_address_to_adr(address)
    info = f"{adr:02X}"
    body = f"{spec.ver}{adr:02X}{spec.cid1:02X}{spec.cid2:02X}{encode_length_field(info)}{info}"
    return f"{SOI}{body}{calculate_checksum(body)}{EOI}".encode("ascii")


def validate_response(raw: Union[str, bytes, None], min_length: int) -> str:
    """
    Validates a raw response frame and returns it for decoding.

    The checks run strictly in this order: frame shape, minimum length,
    return code. A frame with the wrong shape is never indexed for its
    return code.

    Args:
        raw: The response as read from the stream, including the trailing CR.
        min_length: Minimum length of a usable response for the command sent.

    Returns:
        The validated frame as a string.

    Raises:
        MalformedResponseError: Empty, not ``~``-prefixed, not CR-terminated,
            or containing characters outside ``~``, ``A-Z``, ``0-9``.
        ResponseTooShortError: Shorter than ``min_length``.
        DeviceReportedError: The BMS reported a known error return code.
        UnknownResponseDataError: The return code is not one the BMS sends.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("ascii")
        except UnicodeDecodeError:
            raise MalformedResponseError(None) from None

    if not raw or not _RESPONSE_SHAPE.fullmatch(raw):
        raise MalformedResponseError(raw)

    length = len(raw)
    if length < min_length:
        raise ResponseTooShortError(length, min_length)

    if length < RETURN_CODE_MIN_FRAME_LENGTH:
        raise UnknownResponseDataError(None)

    return_code = raw[RETURN_CODE_OFFSET:RETURN_CODE_OFFSET + 2]
    description = RETURN_CODES.get(return_code)
    if description is None or return_code in LOCAL_RETURN_CODES:
        raise UnknownResponseDataError(return_code)
    if return_code != RETURN_CODE_NORMAL:
        raise DeviceReportedError(return_code, description)
    return raw


def read_response(stream, deadline: Optional[float] = None) -> str:
    """
    Reads one response frame from the stream, byte by byte.

    Bytes outside the protocol alphabet are dropped, which filters the noise
    some RS485 bridges inject. Reading stops once a CR has been accumulated.

    Args:
        stream: Object with ``read(size) -> bytes``; an empty result means the
            stream timeout expired.
        deadline: Optional ``time.monotonic()`` value bounding the whole cycle.

    Returns:
        The accumulated frame, ending with CR.

    Raises:
        ReadTimeoutError: A read returned no data.
        CycleTimeoutError: The deadline passed while waiting for data.
        MalformedResponseError: No CR within ``MAX_RESPONSE_LENGTH`` characters.
    """
    accumulated = []
    while True:
        if deadline is not None and time.monotonic() >= deadline:
            raise CycleTimeoutError()

        chunk = stream.read(1)
        if not chunk:
            if deadline is not None and time.monotonic() >= deadline:
                raise CycleTimeoutError()
            raise ReadTimeoutError()

        char = chr(chunk[0])
        if char not in ALLOWED_RESPONSE_CHARS:
            continue

        accumulated.append(char)
        if char == EOI:
            return "".join(accumulated)
        if len(accumulated) >= MAX_RESPONSE_LENGTH:
            raise MalformedResponseError("".join(accumulated))
