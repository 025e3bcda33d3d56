"""ACID signing: RSA-2048 PSS over SHA-256."""
from __future__ import annotations

from math import lcm
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils

from npdm_core.codec import sha256
from npdm_core.errors import KeyLoadError, LayoutInvariantError
from npdm_core.protocol import RSA_KEY_BITS, SIGNATURE_LEN

PSS_PADDING = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


def rebuild_private_key(n: int, e: int, d: int, p: int, q: int) -> rsa.RSAPrivateKey:
    """Reconstruct a key from its components after checking them algebraically.

    The CRT parameters are always recomputed from d, p and q.
    """
    if p * q != n:
        raise KeyLoadError("modulus is not the product of its primes")
    if (e * d) % lcm(p - 1, q - 1) != 1:
        raise KeyLoadError("private exponent does not invert the public exponent")
    if n.bit_length() != RSA_KEY_BITS:
        raise KeyLoadError(f"expected a {RSA_KEY_BITS}-bit modulus, got {n.bit_length()} bits")

    numbers = rsa.RSAPrivateNumbers(
        p=p,
        q=q,
        d=d,
        dmp1=rsa.rsa_crt_dmp1(d, p),
        dmq1=rsa.rsa_crt_dmq1(d, q),
        iqmp=rsa.rsa_crt_iqmp(p, q),
        public_numbers=rsa.RSAPublicNumbers(e, n),
    )
    try:
        return numbers.private_key()
    except ValueError as e:
        raise KeyLoadError(str(e)) from e


def load_private_key(pem_path: Path) -> rsa.RSAPrivateKey:
    """Parse a PEM-wrapped PKCS#1 or PKCS#8 RSA private key.

    OSError from reading the file propagates unchanged.
    """
    data = Path(pem_path).read_bytes()
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"{pem_path}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(f"{pem_path}: not an RSA private key")

    priv = key.private_numbers()
    pub = priv.public_numbers
    return rebuild_private_key(pub.n, pub.e, priv.d, priv.p, priv.q)


def sign_acid(key: rsa.RSAPrivateKey, unsigned_acid: bytes) -> bytes:
    """Sign the SHA-256 digest of the ACID bytes that follow the signature block."""
    digest = sha256(unsigned_acid)
    sig = key.sign(digest, PSS_PADDING, utils.Prehashed(hashes.SHA256()))
    if len(sig) != SIGNATURE_LEN:
        raise LayoutInvariantError(f"FATAL: signature of wrong length generated ({len(sig)} bytes)")
    return sig


def placeholder_signature() -> bytes:
    return b"\x00" * SIGNATURE_LEN
