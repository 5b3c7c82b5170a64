"""
Minimal Borsh Reader / Writer
=============================
Little-endian primitives used by the on-chain account layouts.

Anchor programs store accounts as an 8-byte discriminator followed by
Borsh-encoded fields. Only the primitives our layouts need are here.
"""

import struct
from typing import Callable, List, Optional, TypeVar

from solders.pubkey import Pubkey

T = TypeVar("T")


class LayoutError(ValueError):
    """Raised when account data is shorter than its layout requires."""


class BorshReader:
    """Sequential reader over raw account bytes."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = bytes(data)
        self.offset = offset

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise LayoutError(
                f"Need {size} bytes at offset {self.offset}, have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self._take(8))[0]

    def i64(self) -> int:
        return struct.unpack("<q", self._take(8))[0]

    def bool(self) -> bool:
        return self.u8() != 0

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self._take(32))

    def raw(self, size: int) -> bytes:
        return self._take(size)

    def bytes_vec(self) -> bytes:
        return self._take(self.u32())

    def vec(self, read_item: Callable[[], T]) -> List[T]:
        return [read_item() for _ in range(self.u32())]

    def option(self, read_item: Callable[[], T]) -> Optional[T]:
        return read_item() if self.bool() else None

    def string(self) -> str:
        return self.bytes_vec().decode("utf-8")


class BorshWriter:
    """Append-only writer producing instruction data."""

    def __init__(self, prefix: bytes = b""):
        self._buf = bytearray(prefix)

    def u8(self, value: int) -> "BorshWriter":
        self._buf.append(value & 0xFF)
        return self

    def u16(self, value: int) -> "BorshWriter":
        self._buf.extend(struct.pack("<H", value))
        return self

    def u32(self, value: int) -> "BorshWriter":
        self._buf.extend(struct.pack("<I", value))
        return self

    def u64(self, value: int) -> "BorshWriter":
        self._buf.extend(struct.pack("<Q", value))
        return self

    def i64(self, value: int) -> "BorshWriter":
        self._buf.extend(struct.pack("<q", value))
        return self

    def bool(self, value: bool) -> "BorshWriter":
        return self.u8(1 if value else 0)

    def pubkey(self, value: Pubkey) -> "BorshWriter":
        self._buf.extend(bytes(value))
        return self

    def raw(self, value: bytes) -> "BorshWriter":
        self._buf.extend(value)
        return self

    def bytes_vec(self, value: bytes) -> "BorshWriter":
        self.u32(len(value))
        self._buf.extend(value)
        return self

    def option_string(self, value: Optional[str]) -> "BorshWriter":
        if value is None:
            return self.u8(0)
        encoded = value.encode("utf-8")
        self.u8(1)
        return self.bytes_vec(encoded)

    def to_bytes(self) -> bytes:
        return bytes(self._buf)
