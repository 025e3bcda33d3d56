"""Generate a development RSA-2048 key for signing the ACID.

The descriptor's developer_key is a different key (the one the ACID
vouches for when NCA headers are checked) and is not derived from this one.
"""
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def generate_key(out_dir: str) -> Path:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    # PKCS#1 "RSA PRIVATE KEY" block
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    (out / "acid_key.pem").write_bytes(pem)

    print(f"GENERATED: {out / 'acid_key.pem'}")
    return out


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a]
    generate_key(args[0] if args else "keys")
