# crc8.py
#
# CRC-8 with polynomial 0x31, table-driven. The table is built once at import.

POLYNOMIAL = 0x31


def _build_table(polynomial):
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ polynomial) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
        table.append(crc)
    return tuple(table)


CRC8_TABLE = _build_table(POLYNOMIAL)


def crc8(data):
    """Computes the CRC-8 of a bytes-like object."""
    crc = 0x00
    for byte in data:
        crc = CRC8_TABLE[(crc ^ byte) & 0xFF]
    return crc
