# extengine/archive/crx.py
from __future__ import annotations

import base64
import logging
import struct
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

from extengine.core.errors import ArchiveError, ErrorCode

logger = logging.getLogger(__name__)

__all__ = [
    "CRX_MAGIC",
    "CrxArchive",
    "isCrxFile",
    "isCrxBuffer",
    "parseCrxBuffer",
    "derToBase64",
    "crxToZip",
]

CRX_MAGIC = b"Cr24"

# CrxFileHeader field numbers
_FIELD_SHA256_WITH_RSA = 2
_FIELD_PUBLIC_KEY = 1



@dataclass(slots=True, frozen=True)
class CrxArchive:
    version: int
    zipBuffer: bytes
    publicKeyDer: bytes | None = None

    @property
    def publicKeyBase64(self) -> str | None:
        return derToBase64(self.publicKeyDer) if self.publicKeyDer else None



def isCrxBuffer(buf: bytes) -> bool:
    return len(buf) >= 4 and buf[:4] == CRX_MAGIC



def isCrxFile(path: str | PathLike[str]) -> bool:
    """Checks the magic bytes of a file. Unreadable files are not CRX."""
    try:
        with open(path, "rb") as fh:
            return fh.read(4) == CRX_MAGIC
    except OSError:
        return False



def parseCrxBuffer(buf: bytes) -> CrxArchive:
    """
    Splits a CRX container into its embedded ZIP payload and header metadata.

    v2: magic(4) version(4) keyLen(4) sigLen(4) key sig zip
    v3: magic(4) version(4) headerLen(4) header(protobuf) zip

    Raises ArchiveError for anything that is not a well-formed v2/v3 container.
    """
    if len(buf) < 16:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, "Invalid CRX file: too small")
    if buf[:4] != CRX_MAGIC:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, "Invalid CRX file: bad magic")

    version = struct.unpack_from("<I", buf, 4)[0]

    if version == 2:
        keyLen, sigLen = struct.unpack_from("<II", buf, 8)
        zipOffset = 16 + keyLen + sigLen
        if zipOffset >= len(buf):
            raise ArchiveError(ErrorCode.INSTALL_FAILED, "Invalid CRX2: header length exceeds file size")
        publicKey = bytes(buf[16:16 + keyLen]) or None
        return CrxArchive(version=2, zipBuffer=bytes(buf[zipOffset:]), publicKeyDer=publicKey)

    if version == 3:
        headerLen = struct.unpack_from("<I", buf, 8)[0]
        zipOffset = 12 + headerLen
        if zipOffset >= len(buf):
            raise ArchiveError(ErrorCode.INSTALL_FAILED, "Invalid CRX3: header size exceeds file size")
        publicKey = _firstRsaPublicKey(bytes(buf[12:zipOffset]))
        return CrxArchive(version=3, zipBuffer=bytes(buf[zipOffset:]), publicKeyDer=publicKey)

    raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Unsupported CRX version: {version}")



def derToBase64(der: bytes) -> str:
    """DER public key as base64, the form used by manifest `key`."""
    return base64.b64encode(der).decode("ascii")



def crxToZip(path: str | PathLike[str]) -> bytes:
    """Reads a CRX file and returns its embedded ZIP bytes."""
    try:
        data = Path(path).read_bytes()
    except OSError as err:
        raise ArchiveError(ErrorCode.INSTALL_FAILED, f"Cannot read CRX file: {err.strerror or err}") from err
    return parseCrxBuffer(data).zipBuffer



# ------------------------------------------------
#        Minimal protobuf reader (metadata only)
# ------------------------------------------------

def _readVarint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data) or shift > 63:
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7



def _iterFields(data: bytes):
    """Yields (fieldNumber, wireType, value) where value is bytes for length-delimited fields."""
    pos = 0
    while pos < len(data):
        key, pos = _readVarint(data, pos)
        fieldNumber, wireType = key >> 3, key & 0x07
        if wireType == 0:
            value, pos = _readVarint(data, pos)
            yield fieldNumber, wireType, value
        elif wireType == 1:
            pos += 8
        elif wireType == 2:
            length, pos = _readVarint(data, pos)
            if pos + length > len(data):
                raise ValueError("truncated field")
            yield fieldNumber, wireType, data[pos:pos + length]
            pos += length
        elif wireType == 5:
            pos += 4
        else:
            raise ValueError(f"unsupported wire type {wireType}")



def _firstRsaPublicKey(header: bytes) -> bytes | None:
    """
    Returns `sha256_with_rsa[0].public_key` from a CrxFileHeader, or None.
    Malformed headers are tolerated; the key is metadata only.
    """
    try:
        for fieldNumber, wireType, value in _iterFields(header):
            if fieldNumber != _FIELD_SHA256_WITH_RSA or wireType != 2:
                continue
            for innerNumber, innerType, innerValue in _iterFields(value):
                if innerNumber == _FIELD_PUBLIC_KEY and innerType == 2 and innerValue:
                    return bytes(innerValue)
    except ValueError as err:
        logger.debug("Could not decode CRX3 header: %s", err)
    return None
