# plugins/plugin_utils.py
from typing import Union

HEXDUMP_BYTES_PER_LINE = 16
HEXDUMP_GROUP_BYTES = 4

def hexdump(data: Union[bytes, str]) -> str:
    """
    Formats raw bytes as a classic hexdump for debug logging.

    Each line shows the offset (hex and decimal), the bytes as hex in groups
    of four and a printable ASCII column where non-printable bytes appear as '.'.

    Args:
        data (Union[bytes, str]): The bytes to dump; strings are encoded as latin-1.

    Returns:
        str: The multi-line dump, or an empty string for empty input.
    """
    if isinstance(data, str):
        data = data.encode("latin-1", errors="replace")
    lines = []
    for offset in range(0, len(data), HEXDUMP_BYTES_PER_LINE):
        chunk = data[offset:offset + HEXDUMP_BYTES_PER_LINE]
        groups = [chunk[i:i + HEXDUMP_GROUP_BYTES].hex() for i in range(0, len(chunk), HEXDUMP_GROUP_BYTES)]
        hex_column = " ".join(groups)
        printable = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        lines.append(f"0x{offset:08x} ({offset:05d})  {hex_column:<35}  {printable}")
    return "\n".join(lines)
