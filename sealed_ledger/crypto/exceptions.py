"""Crypto exceptions."""


class CryptoError(Exception):
    """Base exception for key derivation, encryption and decryption failures."""
    pass


class DecryptionError(CryptoError):
    """Ciphertext could not be authenticated or decrypted with the given key."""
    pass


class EncryptionUnavailableError(CryptoError):
    """
    Encryption could not be performed and plaintext fallback is not allowed.

    Raised in strict mode (e.g. during migration) or when the plaintext
    fallback is disabled in settings.
    """
    pass
