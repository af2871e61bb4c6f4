"""
Encryption envelope for the license verification endpoint.

Wire format is the OpenSSL "enc" / CryptoJS passphrase format, so clients
that embed the same secret can talk to the server with stock libraries:

    base64( b"Salted__" || salt[8] || AES-256-CBC(PKCS#7(json)) )

Key and IV come from EVP_BytesToKey(MD5, 1 iteration) over the passphrase
and the random salt, so sealing the same payload twice never produces the
same ciphertext.
"""
import base64
import binascii
import hashlib
import json
import os
from typing import Any, Tuple, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import ConfigurationError, DecryptionError

MAGIC = b"Salted__"
SALT_SIZE = 8
KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE = 16


def derive_key_iv(passphrase: bytes, salt: bytes) -> Tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < KEY_SIZE + IV_SIZE:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:KEY_SIZE], derived[KEY_SIZE:KEY_SIZE + IV_SIZE]


def encode_payload(data: Any) -> bytes:
    return json.dumps(data, separators=(",", ":"), sort_keys=True, ensure_ascii=False, allow_nan=False).encode("utf-8")


class Envelope:
    def __init__(self, secret: str):
        if not secret:
            raise ConfigurationError("AES_SECRET_KEY is not defined")
        self._passphrase = secret.encode("utf-8")

    def seal(self, data: Any) -> str:
        plaintext = encode_payload(data)
        salt = os.urandom(SALT_SIZE)
        key, iv = derive_key_iv(self._passphrase, salt)

        padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.b64encode(MAGIC + salt + ciphertext).decode("ascii")

    def open(self, token: Union[str, bytes]) -> Any:
        try:
            if isinstance(token, bytes):
                token = token.decode("ascii")
            raw = base64.b64decode(token.strip(), validate=True)
        except (UnicodeDecodeError, binascii.Error, ValueError, AttributeError):
            raise DecryptionError("Invalid encrypted data") from None

        header = len(MAGIC) + SALT_SIZE
        body = raw[header:]
        if not raw.startswith(MAGIC) or not body or len(body) % BLOCK_SIZE:
            raise DecryptionError("Invalid encrypted data")

        key, iv = derive_key_iv(self._passphrase, raw[len(MAGIC):header])
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return json.loads(plaintext.decode("utf-8"))
        except ValueError:
            # bad padding, non-UTF-8 bytes, or not JSON: all mean wrong key or tampering
            raise DecryptionError("Invalid encrypted data") from None
