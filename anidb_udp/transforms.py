"""
Payload Transforms

Compression and encryption applied to datagrams once a session negotiates
them. Encryption is a pluggable strategy: the engine only ever calls
:meth:`PayloadTransform.encrypt` and :meth:`PayloadTransform.decrypt`, and
builds the strategy through ``EngineConfig.transform_factory``.
"""

from __future__ import annotations

import hashlib
import zlib
from abc import ABC, abstractmethod

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .constants import COMPRESSION_MARKER
from .errors import TransformFailed

AES_BLOCK_SIZE = 16  # bytes
AES_KEY_SIZE = 16  # AES-128


# =============================================================================
# Compression
# =============================================================================


def is_compressed(data: bytes) -> bool:
    """Check for the two-byte compression marker."""
    return data[: len(COMPRESSION_MARKER)] == COMPRESSION_MARKER


def inflate(data: bytes) -> bytes:
    """Strip the compression marker and inflate the zlib stream behind it.

    Args:
        data: Datagram starting with the compression marker

    Returns:
        Inflated payload

    Raises:
        TransformFailed: If the stream is corrupt or incomplete
    """
    decompressor = zlib.decompressobj()
    try:
        inflated = decompressor.decompress(data[len(COMPRESSION_MARKER) :])
        inflated += decompressor.flush()
    except zlib.error as exc:
        raise TransformFailed(f"inflate failed: {exc}") from exc

    if not decompressor.eof:
        raise TransformFailed("inflate failed: truncated zlib stream")

    return inflated


def deflate(data: bytes) -> bytes:
    """Compress a payload and prepend the compression marker.

    The server side of the wire format; the engine itself never compresses
    outbound traffic.
    """
    return COMPRESSION_MARKER + zlib.compress(data)


# =============================================================================
# Encryption
# =============================================================================


class PayloadTransform(ABC):
    """Symmetric transform applied to whole datagrams."""

    @abstractmethod
    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt an outbound datagram."""

    @abstractmethod
    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt an inbound datagram.

        Raises:
            TransformFailed: If the ciphertext cannot be decrypted
        """


def derive_key(api_key: str, salt: str) -> bytes:
    """Derive the AES-128 key from the client API key and the server salt.

    Key = MD5(api_key || salt), per the ENCRYPT command documentation.
    """
    return hashlib.md5((api_key + salt).encode("utf-8")).digest()


class AesEcbTransform(PayloadTransform):
    """AES-128-ECB with PKCS#7 padding (ENCRYPT type=1)."""

    def __init__(self, key: bytes) -> None:
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"AES key must be {AES_KEY_SIZE} bytes, got {len(key)}")
        self._cipher = Cipher(algorithms.AES(key), modes.ECB())

    @classmethod
    def from_secret(cls, api_key: str, salt: str) -> AesEcbTransform:
        """Build the transform from the API key and ENCRYPT reply salt."""
        return cls(derive_key(api_key, salt))

    def encrypt(self, plaintext: bytes) -> bytes:
        padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = self._cipher.encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, ciphertext: bytes) -> bytes:
        if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
            raise TransformFailed(
                f"ciphertext length {len(ciphertext)} is not a multiple of {AES_BLOCK_SIZE}"
            )

        decryptor = self._cipher.decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise TransformFailed("decrypt failed: bad padding") from exc
