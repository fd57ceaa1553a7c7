from __future__ import annotations

from asn1crypto import keys
from pkcs11 import Attribute

from .session import CryptokiSession
from .status import Result, ReturnValue
from .templates import build_query


def rsa_public_key_info(modulus: bytes, public_exponent: bytes) -> keys.PublicKeyInfo:
    """Wrap raw big-endian RSA attribute values as a SubjectPublicKeyInfo."""
    return keys.PublicKeyInfo(
        {
            "algorithm": {"algorithm": "rsa"},
            "public_key": keys.RSAPublicKey(
                {
                    "modulus": int.from_bytes(modulus, byteorder="big"),
                    "public_exponent": int.from_bytes(public_exponent, byteorder="big"),
                }
            ),
        }
    )


def read_rsa_public_key_info(
    session: CryptokiSession, handle: int
) -> Result[keys.PublicKeyInfo]:
    result = session.get_attribute_value(
        handle, build_query([Attribute.MODULUS, Attribute.PUBLIC_EXPONENT])
    )
    if not result.ok or result.value is None:
        return Result(result.status)
    modulus, exponent = (item.value for item in result.value)
    info = rsa_public_key_info(modulus, exponent)
    # Round-trip through DER so callers see the parsed form.
    return Result(ReturnValue.OK, keys.PublicKeyInfo.load(info.dump()))


def public_exponent_of(info: keys.PublicKeyInfo) -> int:
    return info["public_key"].parsed["public_exponent"].native
