"""
Key handling module for aclgate.

Ed25519 helpers used to check owner-signed ACL mutations, plus the
key generation and signing used by the operator tools.
"""

from typing import Tuple

from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import BadSignatureError, CryptoError

from .util import b64url_encode, decode_key_material


def generate_keypair() -> Tuple[str, str]:
    """
    Generate an Ed25519 key pair.

    Returns:
        Tuple of (private_seed_b64url, public_key_b64url)
    """
    sk = SigningKey.generate()
    return b64url_encode(bytes(sk)), b64url_encode(bytes(sk.verify_key))


def sign_message(message: str, private_key_b64: str) -> str:
    """Detached Ed25519 signature over a UTF-8 message, base64url encoded."""
    sk = SigningKey(decode_key_material(private_key_b64))
    return b64url_encode(sk.sign(message.encode('utf-8')).signature)


def verify_ed25519(signature_b64: str, message: bytes, public_key_b64: str) -> bool:
    """
    Verify a detached Ed25519 signature.

    Args:
        signature_b64: Base64-encoded signature (URL-safe or standard)
        message: The signed data
        public_key_b64: Base64-encoded public key (URL-safe or standard)

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(decode_key_material(public_key_b64))
        vk.verify(message, decode_key_material(signature_b64))
        return True
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        return False
