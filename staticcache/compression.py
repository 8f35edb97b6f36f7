"""
Page body compression.

Bodies kept in Redis are packed with LZ4, or ZSTD once a page is large
enough for the better ratio to matter. A packed body starts with a one-byte
codec tag so records stay readable if the thresholds change. Filesystem
copies use gzip instead: the web server hands the .gz file straight to the
browser.
"""

import gzip
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

try:
    import lz4.frame
    LZ4_AVAILABLE = True
except ImportError:
    LZ4_AVAILABLE = False

try:
    import zstandard
    ZSTD_AVAILABLE = True
except ImportError:
    ZSTD_AVAILABLE = False


logger = logging.getLogger(__name__)

ZSTD_MIN_SIZE = 100 * 1024


class Codec(Enum):
    """Tag byte written in front of a packed body."""
    LZ4 = b"\x01"
    ZSTD = b"\x02"


@dataclass
class PackedBody:
    """A body as it goes into a CacheRecord."""
    data: bytes
    codec: Optional[Codec] = None
    original_size: int = 0

    @property
    def compressed(self) -> bool:
        return self.codec is not None

    @property
    def savings_percent(self) -> float:
        if not self.compressed or self.original_size == 0:
            return 0.0
        return (1 - len(self.data) / self.original_size) * 100


class BodyCompressor:
    """
    Packs page bodies for the indexed store.

    Without LZ4 installed packing is turned off with a warning and bodies are
    stored as rendered.
    """

    def __init__(
        self,
        enabled: bool = True,
        threshold: int = 1024,
        zstd_level: int = 3,
    ):
        if enabled and not LZ4_AVAILABLE:
            logger.warning("LZ4 not available, storing page bodies uncompressed (pip install lz4)")

        self.enabled = enabled and LZ4_AVAILABLE
        self.threshold = threshold
        self._zstd = zstandard.ZstdCompressor(level=zstd_level) if ZSTD_AVAILABLE else None

    def pack(self, body: bytes) -> PackedBody:
        """Compress a body when it is big enough and actually shrinks."""
        if not self.enabled or len(body) < self.threshold:
            return PackedBody(body, original_size=len(body))

        if self._zstd is not None and len(body) >= ZSTD_MIN_SIZE:
            codec, payload = Codec.ZSTD, self._zstd.compress(body)
        else:
            codec, payload = Codec.LZ4, lz4.frame.compress(body)

        if len(payload) + 1 >= len(body):
            return PackedBody(body, original_size=len(body))

        return PackedBody(codec.value + payload, codec, len(body))

    def unpack(self, data: bytes) -> bytes:
        """
        Restore a body produced by pack().

        Raises:
            ValueError: on an unknown codec tag
            RuntimeError: when the codec's library is not installed
        """
        codec = Codec(data[0:1])
        payload = data[1:]

        if codec is Codec.LZ4:
            if not LZ4_AVAILABLE:
                raise RuntimeError("LZ4 not available for decompression")
            return lz4.frame.decompress(payload)

        if not ZSTD_AVAILABLE:
            raise RuntimeError("ZSTD not available for decompression")
        return zstandard.ZstdDecompressor().decompress(payload)


def gzip_encode(data: bytes, level: int = 4) -> bytes:
    """Gzip-encode a page for the filesystem store's .gz sibling."""
    return gzip.compress(data, compresslevel=level)

