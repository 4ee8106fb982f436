"""
AES-256 helpers for secrets stored at rest (endpoint API keys and bearer tokens).
"""
import os
import base64
import logging
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import padding
from django.conf import settings

logger = logging.getLogger(__name__)

IV_LENGTH = 16  # bytes, AES block size


class AES256Encryption:
    """
    AES-256-CBC with PKCS7 padding.

    Ciphertexts are stored as one base64 string holding the IV followed by
    the encrypted bytes.
    """

    @staticmethod
    def _key(key=None):
        key = key or settings.ENCRYPTION_KEY
        if len(key) != 32:
            raise ValueError("ENCRYPTION_KEY must be 32 bytes for AES-256")
        return key

    @classmethod
    def encrypt(cls, plaintext, key=None):
        """
        Encrypt ``plaintext`` and return the base64 token.

        Args:
            plaintext (str or bytes): Data to encrypt
            key (bytes, optional): 32-byte key, defaults to settings.ENCRYPTION_KEY

        Returns:
            str: base64(iv + ciphertext)
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(cls._key(key)), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(iv + ciphertext).decode('ascii')

    @classmethod
    def decrypt(cls, token, key=None):
        """
        Decrypt a token produced by :meth:`encrypt`.

        Raises:
            ValueError: if the token is not valid base64 or fails to unpad
        """
        combined = base64.b64decode(token, validate=True)
        if len(combined) <= IV_LENGTH:
            raise ValueError("Encrypted token is too short")
        iv, ciphertext = combined[:IV_LENGTH], combined[IV_LENGTH:]

        decryptor = Cipher(algorithms.AES(cls._key(key)), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode('utf-8')
