from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from pkcs11 import Attribute

from .assertions import (
    Expectations,
    assert_bytes_equal,
    assert_equal,
    assert_length,
    assert_ok,
    assert_status,
)
from .buffers import OutputBuffer
from .driver import DEFAULT_OUTPUT_CAPACITY, CryptoOperationDriver
from .exceptions import ConformanceError, KeyPairGenerationError
from .keypair import KeyPair
from .mechanisms import DEFAULT_KEY_PAIR_MECHANISM, RSA_PKCS
from .public_keys import public_exponent_of, read_rsa_public_key_info
from .session import CryptokiSession
from .status import ReturnValue, describe_status
from .templates import DEFAULT_MODULUS_BITS, build_query, build_template

PLAINTEXT = b"0123456789"
MODULUS_BYTES = DEFAULT_MODULUS_BITS // 8
PUBLIC_EXPONENT_65537 = 65537

SENSITIVE_PRIVATE_KINDS = (
    Attribute.PRIME_1,
    Attribute.PRIME_2,
    Attribute.PRIVATE_EXPONENT,
)

ADAPTER_EMULATED = "adapter-emulated: operation state was tracked by the binding, not the module"

_logger = logging.getLogger("hsm_conformance.checks")


@dataclass(frozen=True)
class ConformanceCheck:
    name: str
    description: str
    run: Callable[[CryptokiSession], None]
    # Verdict depends on init/one-shot state the binding may track itself.
    operation_state: bool = False


@dataclass(frozen=True)
class CheckOutcome:
    name: str
    passed: bool
    detail: str = ""


def check_encrypt_decrypt(session: CryptokiSession) -> None:
    driver = CryptoOperationDriver(session)
    with KeyPair(
        session,
        [Attribute.ENCRYPT, Attribute.TOKEN],
        [Attribute.DECRYPT, Attribute.TOKEN],
    ) as keypair:
        assert_ok(driver.encrypt_init(RSA_PKCS, keypair.public_handle), "C_EncryptInit")
        ciphertext = OutputBuffer(DEFAULT_OUTPUT_CAPACITY)
        assert_ok(driver.encrypt(PLAINTEXT, ciphertext), "C_Encrypt")

        with Expectations() as expect:
            expect.length(MODULUS_BYTES, ciphertext.length, "ciphertext length")

            assert_ok(driver.decrypt_init(RSA_PKCS, keypair.private_handle), "C_DecryptInit")
            recovered = OutputBuffer(DEFAULT_OUTPUT_CAPACITY, length=len(PLAINTEXT))
            expect.ok(driver.decrypt(ciphertext.value, recovered), "C_Decrypt")
            expect.length(len(PLAINTEXT), recovered.length, "recovered plaintext length")
            expect.bytes_equal(PLAINTEXT, recovered.value, "recovered plaintext")


def _check_public_exponent(session: CryptokiSession, exponent: bytes) -> None:
    public_attributes = [
        Attribute.ENCRYPT,
        (Attribute.MODULUS_BITS, DEFAULT_MODULUS_BITS),
        (Attribute.PUBLIC_EXPONENT, exponent),
    ]
    try:
        keypair = KeyPair(session, public_attributes, [Attribute.DECRYPT])
    except KeyPairGenerationError as exc:
        raise ConformanceError(
            f"C_GenerateKeyPair with a {len(exponent)}-byte public exponent returned "
            f"{describe_status(exc.status)}, expected OK"
        ) from exc

    with keypair:
        info = read_rsa_public_key_info(session, keypair.public_handle)
        assert_ok(info.status, "C_GetAttributeValue(MODULUS, PUBLIC_EXPONENT)")

        driver = CryptoOperationDriver(session)
        with Expectations() as expect:
            expect.equal(DEFAULT_MODULUS_BITS, info.value.bit_size, "modulus bit size")
            expect.equal(
                PUBLIC_EXPONENT_65537, public_exponent_of(info.value), "public exponent"
            )
            round_trip = driver.round_trip(
                keypair.public_handle, keypair.private_handle, PLAINTEXT
            )
            if expect.ok(round_trip.status, "encrypt/decrypt round trip"):
                expect.bytes_equal(PLAINTEXT, round_trip.value.recovered, "recovered plaintext")


def check_public_exponent_3_bytes(session: CryptokiSession) -> None:
    _check_public_exponent(session, b"\x01\x00\x01")


def check_public_exponent_4_bytes(session: CryptokiSession) -> None:
    _check_public_exponent(session, b"\x00\x01\x00\x01")


def check_extract_keys(session: CryptokiSession) -> None:
    with KeyPair(
        session,
        [Attribute.ENCRYPT],
        [Attribute.DECRYPT, Attribute.SENSITIVE],
    ) as keypair:
        with Expectations() as expect:
            public = session.get_attribute_value(
                keypair.public_handle,
                build_query([Attribute.MODULUS, Attribute.PUBLIC_EXPONENT]),
            )
            expect.ok(public.status, "C_GetAttributeValue(public MODULUS, PUBLIC_EXPONENT)")

            for kind in SENSITIVE_PRIVATE_KINDS:
                result = session.get_attribute_value(keypair.private_handle, build_query([kind]))
                expect.status(
                    ReturnValue.ATTRIBUTE_SENSITIVE,
                    result.status,
                    f"C_GetAttributeValue(private {kind.name})",
                )
                expect.true(
                    not any(item.available for item in result.value or ()),
                    f"C_GetAttributeValue(private {kind.name}) returned the sensitive value",
                )


def check_asymmetric_token_key_pair(session: CryptokiSession) -> None:
    # Private key on the token, public key not.
    public_template = build_template(
        [
            (Attribute.ENCRYPT, True),
            (Attribute.TOKEN, False),
            Attribute.LABEL,
            Attribute.MODULUS_BITS,
            Attribute.PUBLIC_EXPONENT,
        ]
    )
    private_template = build_template(
        [
            (Attribute.DECRYPT, True),
            (Attribute.TOKEN, True),
            Attribute.LABEL,
        ]
    )
    result = session.generate_key_pair(
        DEFAULT_KEY_PAIR_MECHANISM, public_template, private_template
    )
    if result.ok and result.value is not None:
        public_handle, private_handle = result.value
        with Expectations() as expect:
            expect.ok(session.destroy_object(public_handle), "C_DestroyObject(public)")
            expect.ok(session.destroy_object(private_handle), "C_DestroyObject(private)")
    else:
        assert_status(ReturnValue.TEMPLATE_INCONSISTENT, result.status, "C_GenerateKeyPair")


def check_destroy_then_use(session: CryptokiSession) -> None:
    with KeyPair(session, [Attribute.ENCRYPT], [Attribute.DECRYPT]) as keypair:
        assert_ok(keypair.destroy_public(), "C_DestroyObject(public)")
        assert_ok(keypair.destroy_private(), "C_DestroyObject(private)")

        driver = CryptoOperationDriver(session)
        with Expectations() as expect:
            expect.not_ok(
                driver.encrypt_init(RSA_PKCS, keypair.public_handle),
                "C_EncryptInit with a destroyed public key",
            )
            expect.not_ok(
                driver.decrypt_init(RSA_PKCS, keypair.private_handle),
                "C_DecryptInit with a destroyed private key",
            )
            expect.not_ok(
                session.get_attribute_value(
                    keypair.public_handle, build_query([Attribute.MODULUS])
                ).status,
                "C_GetAttributeValue on a destroyed public key",
            )
            expect.not_ok(
                session.destroy_object(keypair.private_handle),
                "second C_DestroyObject(private)",
            )


def check_encrypt_buffer_too_small(session: CryptokiSession) -> None:
    with KeyPair(session, [Attribute.ENCRYPT], [Attribute.DECRYPT]) as keypair:
        driver = CryptoOperationDriver(session)
        assert_ok(driver.encrypt_init(RSA_PKCS, keypair.public_handle), "C_EncryptInit")

        small = OutputBuffer(16)
        assert_status(
            ReturnValue.BUFFER_TOO_SMALL,
            driver.encrypt(PLAINTEXT, small),
            "C_Encrypt into a 16-byte buffer",
        )
        assert_equal(MODULUS_BYTES, small.length, "reported ciphertext length")

        retry = small.resized()
        assert_ok(driver.encrypt(PLAINTEXT, retry), "C_Encrypt retry")
        assert_length(MODULUS_BYTES, retry.length, "ciphertext length")

        recovered = driver.decrypt_once(RSA_PKCS, keypair.private_handle, retry.value)
        assert_ok(recovered.status, "C_DecryptInit/C_Decrypt")
        assert_bytes_equal(PLAINTEXT, recovered.value, "recovered plaintext")


def check_operation_not_initialized(session: CryptokiSession) -> None:
    with KeyPair(session, [Attribute.ENCRYPT], [Attribute.DECRYPT]) as keypair:
        driver = CryptoOperationDriver(session)
        assert_status(
            ReturnValue.OPERATION_NOT_INITIALIZED,
            driver.encrypt(PLAINTEXT, OutputBuffer(DEFAULT_OUTPUT_CAPACITY)),
            "C_Encrypt without C_EncryptInit",
        )
        assert_status(
            ReturnValue.OPERATION_NOT_INITIALIZED,
            driver.decrypt(bytes(MODULUS_BYTES), OutputBuffer(DEFAULT_OUTPUT_CAPACITY)),
            "C_Decrypt without C_DecryptInit",
        )

        round_trip = driver.round_trip(keypair.public_handle, keypair.private_handle, PLAINTEXT)
        assert_ok(round_trip.status, "encrypt/decrypt after a usage error")
        assert_bytes_equal(PLAINTEXT, round_trip.value.recovered, "recovered plaintext")


CONFORMANCE_CHECKS: dict[str, ConformanceCheck] = {
    check.name: check
    for check in (
        ConformanceCheck(
            "encrypt_decrypt",
            "CKM_RSA_PKCS round trip on a token key pair yields 128-byte ciphertext "
            "and the original plaintext.",
            check_encrypt_decrypt,
        ),
        ConformanceCheck(
            "public_exponent_3_bytes",
            "Key-pair generation accepts 65537 encoded as 01 00 01.",
            check_public_exponent_3_bytes,
        ),
        ConformanceCheck(
            "public_exponent_4_bytes",
            "Key-pair generation accepts 65537 encoded as 00 01 00 01.",
            check_public_exponent_4_bytes,
        ),
        ConformanceCheck(
            "extract_keys",
            "Modulus and public exponent are readable; private primes and exponent "
            "of a sensitive key report CKR_ATTRIBUTE_SENSITIVE.",
            check_extract_keys,
        ),
        ConformanceCheck(
            "asymmetric_token_key_pair",
            "A session public key paired with a token private key is either created "
            "or rejected with CKR_TEMPLATE_INCONSISTENT.",
            check_asymmetric_token_key_pair,
        ),
        ConformanceCheck(
            "destroy_then_use",
            "Destroying both key objects succeeds and their handles stop working.",
            check_destroy_then_use,
        ),
        ConformanceCheck(
            "encrypt_buffer_too_small",
            "An undersized output buffer reports CKR_BUFFER_TOO_SMALL with the "
            "required length and keeps the operation for a retry.",
            check_encrypt_buffer_too_small,
            operation_state=True,
        ),
        ConformanceCheck(
            "operation_not_initialized",
            "A one-shot call without init reports CKR_OPERATION_NOT_INITIALIZED and "
            "leaves the session usable.",
            check_operation_not_initialized,
            operation_state=True,
        ),
    )
}


def list_checks() -> tuple[str, ...]:
    return tuple(CONFORMANCE_CHECKS.keys())


def get_check(name: str) -> ConformanceCheck:
    try:
        return CONFORMANCE_CHECKS[name]
    except KeyError as exc:
        available = ", ".join(list_checks())
        raise ValueError(f"Unknown check '{name}'. Available checks: {available}") from exc


def run_checks(
    session: CryptokiSession, names: Iterable[str] | None = None
) -> list[CheckOutcome]:
    """
    Run checks in order against one session and report each verdict.

    Verdict failures are recorded as failed outcomes; anything else (a broken
    binding, a harness bug) propagates.

    A passing check whose verdict rests on operation state the binding
    emulates carries ADAPTER_EMULATED as its detail.
    """
    selected = [get_check(name) for name in (names if names is not None else list_checks())]
    emulated = getattr(session, "emulates_operation_state", False)
    outcomes: list[CheckOutcome] = []
    for check in selected:
        _logger.info("Running check %s", check.name)
        try:
            check.run(session)
        except (ConformanceError, KeyPairGenerationError) as exc:
            _logger.warning("Check %s failed: %s", check.name, exc)
            outcomes.append(CheckOutcome(check.name, False, str(exc)))
            continue
        detail = ""
        if check.operation_state and emulated:
            detail = ADAPTER_EMULATED
        _logger.info("Check %s passed%s", check.name, f" ({detail})" if detail else "")
        outcomes.append(CheckOutcome(check.name, True, detail))
    return outcomes
