from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pkcs11 import KeyType, Mechanism, MGF


@dataclass(frozen=True)
class MechanismSpec:
    """PKCS#11 mechanism plus its parameter, fixed for one operation."""

    mechanism: Mechanism
    parameter: Any = None
    key_type: KeyType = KeyType.RSA
    padding_overhead: int = 0


MECHANISM_SPECS: dict[str, MechanismSpec] = {
    "rsa_pkcs_key_pair_gen": MechanismSpec(
        mechanism=Mechanism.RSA_PKCS_KEY_PAIR_GEN,
    ),
    "rsa_pkcs1v15": MechanismSpec(
        mechanism=Mechanism.RSA_PKCS,
        padding_overhead=11,
    ),
    "rsa_oaep_sha1": MechanismSpec(
        mechanism=Mechanism.RSA_PKCS_OAEP,
        parameter=(Mechanism.SHA_1, MGF.SHA1, None),
        padding_overhead=42,
    ),
}


def _normalize_mechanism_name(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def list_mechanisms() -> tuple[str, ...]:
    return tuple(sorted(MECHANISM_SPECS.keys()))


def get_mechanism(name: str) -> MechanismSpec:
    normalized = _normalize_mechanism_name(name)
    spec = MECHANISM_SPECS.get(normalized)
    if spec is None:
        available = ", ".join(list_mechanisms())
        raise ValueError(f"Unknown mechanism '{name}'. Available: {available}")
    return spec


def max_plaintext_length(spec: MechanismSpec, modulus_bits: int) -> int:
    """Largest input the padding scheme accepts for a modulus of this size."""
    return (modulus_bits + 7) // 8 - spec.padding_overhead


DEFAULT_KEY_PAIR_MECHANISM = MECHANISM_SPECS["rsa_pkcs_key_pair_gen"]
RSA_PKCS = MECHANISM_SPECS["rsa_pkcs1v15"]
