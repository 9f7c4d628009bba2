"""
Serialization and compression for archive payloads.

Formats and compression algorithms are looked up in small function tables at
call time, so an unsupported value only fails the archive being built.
"""

import bz2
import gzip
import hashlib
import json
import lzma
import zlib
from typing import Any, Callable, Dict, List

from .archive_models import Archive


class ArchivalError(Exception):
    """Base class for archival errors."""
    pass


class ConfigurationError(ArchivalError, ValueError):
    """Raised when an archive configuration value cannot be used."""
    pass


class UnsupportedFormatError(ConfigurationError):
    """Raised for an unknown serialization format."""

    def __init__(self, format_name: str):
        super().__init__(f"Unsupported archive format: {format_name}")
        self.format_name = format_name


class UnsupportedCompressionError(ConfigurationError):
    """Raised for an unknown compression algorithm."""

    def __init__(self, algorithm: str):
        super().__init__(f"Unsupported compression algorithm: {algorithm}")
        self.algorithm = algorithm


def _dump(record: Any) -> str:
    return json.dumps(record, default=str, separators=(',', ':'))


def _serialize_json(records: List[Dict[str, Any]]) -> bytes:
    return _dump(records).encode('utf-8')


def _serialize_jsonl(records: List[Dict[str, Any]]) -> bytes:
    return '\n'.join(_dump(record) for record in records).encode('utf-8')


def _deserialize_json(payload: bytes) -> List[Dict[str, Any]]:
    records = json.loads(payload.decode('utf-8'))
    if not isinstance(records, list):
        raise ValueError("JSON archive payload is not an array")
    return records


def _deserialize_jsonl(payload: bytes) -> List[Dict[str, Any]]:
    return [
        json.loads(line)
        for line in payload.decode('utf-8').split('\n')
        if line.strip()
    ]


SERIALIZERS: Dict[str, Callable[[List[Dict[str, Any]]], bytes]] = {
    'json': _serialize_json,
    'jsonl': _serialize_jsonl,
}

DESERIALIZERS: Dict[str, Callable[[bytes], List[Dict[str, Any]]]] = {
    'json': _deserialize_json,
    'jsonl': _deserialize_jsonl,
}

# mtime=0 keeps gzip output deterministic for identical payloads
COMPRESSORS: Dict[str, Callable[[bytes, int], bytes]] = {
    'none': lambda data, level: bytes(data),
    'gzip': lambda data, level: gzip.compress(data, compresslevel=level, mtime=0),
    'deflate': lambda data, level: zlib.compress(data, level),
    'bz2': lambda data, level: bz2.compress(data, compresslevel=max(level, 1)),
    'lzma': lambda data, level: lzma.compress(data, preset=level),
}

DECOMPRESSORS: Dict[str, Callable[[bytes], bytes]] = {
    'none': lambda data: bytes(data),
    'gzip': gzip.decompress,
    'deflate': zlib.decompress,
    'bz2': bz2.decompress,
    'lzma': lzma.decompress,
}


def supported_formats() -> List[str]:
    return sorted(SERIALIZERS)


def supported_algorithms() -> List[str]:
    return sorted(COMPRESSORS)


def serialize_records(records: List[Dict[str, Any]], format_name: str) -> bytes:
    """Serialize records; json gives one array, jsonl one object per line."""
    serializer = SERIALIZERS.get(format_name)
    if serializer is None:
        raise UnsupportedFormatError(format_name)
    return serializer(records)


def deserialize_records(payload: bytes, format_name: str) -> List[Dict[str, Any]]:
    deserializer = DESERIALIZERS.get(format_name)
    if deserializer is None:
        raise UnsupportedFormatError(format_name)
    return deserializer(payload)


def compress(payload: bytes, algorithm: str, level: int = 6) -> bytes:
    compressor = COMPRESSORS.get(algorithm)
    if compressor is None:
        raise UnsupportedCompressionError(algorithm)
    if not isinstance(level, int) or not 0 <= level <= 9:
        raise ConfigurationError(f"Invalid compression level: {level} (expected 0-9)")
    return compressor(payload, level)


def decompress(payload: bytes, algorithm: str) -> bytes:
    decompressor = DECOMPRESSORS.get(algorithm)
    if decompressor is None:
        raise UnsupportedCompressionError(algorithm)
    return decompressor(payload)


def compute_checksum(payload: bytes) -> str:
    """SHA-256 hex digest of the given bytes."""
    return hashlib.sha256(payload).hexdigest()


def decompress_archive_data(archive: Archive) -> bytes:
    """Recover the serialized payload using the algorithm recorded at creation."""
    algorithm = archive.metadata.compression_algorithm or 'none'
    return decompress(archive.data, algorithm)


def decode_archive(archive: Archive) -> List[Dict[str, Any]]:
    """Decompress and deserialize an archive's records."""
    format_name = archive.metadata.format or 'json'
    return deserialize_records(decompress_archive_data(archive), format_name)
