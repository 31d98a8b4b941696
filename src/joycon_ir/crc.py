"""CRC-8 used by the Joy-Con MCU (polynomial 0x07, seed 0x00)."""


def _build_table(poly=0x07):
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = ((crc << 1) ^ poly) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
        table.append(crc)
    return bytes(table)


MCU_CRC8_TABLE = _build_table()


def crc8(buf, length: int, start: int) -> int:
    """Checksum *length* bytes of *buf* beginning at 1-based offset *start*."""
    crc = 0
    for byte in buf[start - 1:start - 1 + length]:
        crc = MCU_CRC8_TABLE[crc ^ byte]
    return crc
