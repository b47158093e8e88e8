"""Exceptions raised by the cryptographic primitives."""


class CryptoError(Exception):
    """Base exception for primitive operations"""
    pass


class FieldRangeError(CryptoError, ValueError):
    """Value is not a residue of the scalar field"""
    pass


class InvalidPublicKeyError(CryptoError, ValueError):
    """Point is off the curve or is the identity"""
    pass


class MalformedCiphertextError(CryptoError):
    """Ciphertext has the wrong shape or decrypts to non-zero padding"""
    pass


class AuthenticationError(CryptoError):
    """Ciphertext authentication tag does not match"""
    pass


class SignatureError(CryptoError):
    """EdDSA signature is malformed or does not verify"""
    pass


class CommandPackingError(CryptoError, ValueError):
    """Command sub-field does not fit its packed slot"""
    pass
