"""Stored representation of file payloads inside the working copy.

A file is stored either verbatim (``RAW``) or as a single zstd frame
(``ZSTD``) whose name carries the :data:`ZSTD_SUFFIX`.  Decoding looks at
the name only, so a repository may freely mix both representations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import zstandard

from .exceptions import CodecError

ZSTD_SUFFIX = "-zstd"


class StorageKind(str, Enum):
    """How a file's bytes are stored: ``RAW`` or ``ZSTD``."""
    RAW = "raw"
    ZSTD = "zstd"

    def __str__(self) -> str:          # noqa: D105
        return self.value


class CompressionLevel(str, Enum):
    """User-facing compression level: ``FAST``, ``DEFAULT``, or ``MAX``."""
    FAST = "fast"
    DEFAULT = "default"
    MAX = "max"

    def __str__(self) -> str:          # noqa: D105
        return self.value

    @property
    def zstd_level(self) -> int:
        """Return the zstd compression level for this setting."""
        return _ZSTD_LEVELS[self]


_ZSTD_LEVELS = {
    CompressionLevel.FAST: 1,
    CompressionLevel.DEFAULT: 3,
    CompressionLevel.MAX: 19,
}


@dataclass(frozen=True)
class CompressionPolicy:
    """Whether new files are written compressed, and how hard.

    Only the write path depends on the policy; decoding and fingerprints
    never do.
    """
    enabled: bool = False
    level: CompressionLevel = CompressionLevel.DEFAULT

    @classmethod
    def disabled(cls) -> CompressionPolicy:
        return cls(enabled=False)

    @classmethod
    def zstd(cls, level: CompressionLevel | str = CompressionLevel.DEFAULT) -> CompressionPolicy:
        return cls(enabled=True, level=CompressionLevel(level))

    @classmethod
    def parse(cls, enabled: bool, level: str | None = None) -> CompressionPolicy:
        """Build a policy from CLI-style values (``level`` may be ``None``)."""
        if not enabled:
            return cls.disabled()
        return cls.zstd(level or CompressionLevel.DEFAULT)

    @property
    def storage(self) -> StorageKind:
        """The representation newly written files get."""
        return StorageKind.ZSTD if self.enabled else StorageKind.RAW

    def __str__(self) -> str:
        return f"zstd({self.level})" if self.enabled else "disabled"


def storage_of(stored_path: str) -> StorageKind:
    """Return the representation implied by a stored file name."""
    if stored_path.endswith(ZSTD_SUFFIX) and len(stored_path.rsplit("/", 1)[-1]) > len(ZSTD_SUFFIX):
        return StorageKind.ZSTD
    return StorageKind.RAW


def stored_path_for(path: str, storage: StorageKind) -> str:
    """Return the stored path of logical *path* under *storage*."""
    if storage == StorageKind.ZSTD:
        return path + ZSTD_SUFFIX
    return path


def logical_path_for(stored_path: str) -> str:
    """Strip exactly one :data:`ZSTD_SUFFIX` from a compressed stored path."""
    if storage_of(stored_path) == StorageKind.ZSTD:
        return stored_path[:-len(ZSTD_SUFFIX)]
    return stored_path


class Codec:
    """Encodes logical content for storage and decodes it back.

    Examples:
        >>> codec = Codec(CompressionPolicy.zstd("fast"))
        >>> data, name = codec.encode(b"hi", "notes/a.txt")
        >>> name
        'notes/a.txt-zstd'
        >>> codec.decode(data, name)
        (b'hi', 'notes/a.txt')
    """

    def __init__(self, policy: CompressionPolicy | None = None):
        self.policy = policy or CompressionPolicy.disabled()
        self._compressor: zstandard.ZstdCompressor | None = None

    def __repr__(self) -> str:
        return f"Codec({self.policy})"

    @property
    def storage(self) -> StorageKind:
        return self.policy.storage

    def stored_path(self, path: str) -> str:
        """Return where logical *path* is written under the current policy."""
        return stored_path_for(path, self.policy.storage)

    def encode(self, content: bytes, path: str) -> tuple[bytes, str]:
        """Return ``(stored_bytes, stored_path)`` for logical *content*."""
        storage = self.policy.storage
        if storage == StorageKind.RAW:
            return content, path
        elif storage == StorageKind.ZSTD:
            return self._zstd_compressor().compress(content), stored_path_for(path, storage)
        raise ValueError(f"Unknown storage kind: {storage!r}")

    def decode(self, stored: bytes, stored_path: str) -> tuple[bytes, str]:
        """Return ``(content, logical_path)`` for a stored file.

        Raises:
            CodecError: *stored* carries the zstd suffix but is not a
                valid zstd frame.
        """
        storage = storage_of(stored_path)
        if storage == StorageKind.RAW:
            return stored, stored_path
        elif storage == StorageKind.ZSTD:
            return _zstd_decompress(stored, stored_path), logical_path_for(stored_path)
        raise ValueError(f"Unknown storage kind: {storage!r}")

    def _zstd_compressor(self) -> zstandard.ZstdCompressor:
        # Compressor objects are not thread-safe; encode runs on one thread.
        if self._compressor is None:
            self._compressor = zstandard.ZstdCompressor(
                level=self.policy.level.zstd_level, write_content_size=True,
            )
        return self._compressor


def _zstd_decompress(stored: bytes, stored_path: str) -> bytes:
    dctx = zstandard.ZstdDecompressor()
    try:
        params = zstandard.get_frame_parameters(stored)
        if params.content_size != zstandard.CONTENTSIZE_UNKNOWN:
            return dctx.decompress(stored)
        # Frames written by streaming tools lack a content size; stream those.
        with dctx.stream_reader(stored, read_across_frames=True) as reader:
            return reader.read()
    except zstandard.ZstdError as exc:
        raise CodecError(stored_path, f"corrupt zstd data: {exc}") from exc


def encode(content: bytes, path: str, policy: CompressionPolicy | None = None) -> tuple[bytes, str]:
    """Module-level shortcut for :meth:`Codec.encode`."""
    return Codec(policy).encode(content, path)


def decode(stored: bytes, stored_path: str) -> tuple[bytes, str]:
    """Module-level shortcut for :meth:`Codec.decode`."""
    return Codec().decode(stored, stored_path)
