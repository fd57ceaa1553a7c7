from __future__ import annotations

import pytest
from pkcs11 import Attribute

from hsm_conformance import (
    ConformanceError,
    KeyPair,
    KeyPairError,
    KeyPairGenerationError,
    ReturnValue,
)
from hsm_conformance.templates import find_entry

from conftest import SoftRsaSession


def test_generation_adds_modulus_and_exponent_defaults(soft_session: SoftRsaSession) -> None:
    keypair = KeyPair(soft_session, [Attribute.ENCRYPT], [Attribute.DECRYPT])

    assert find_entry(keypair.public_template, Attribute.MODULUS_BITS).value == 1024
    assert find_entry(keypair.public_template, Attribute.PUBLIC_EXPONENT).value == b"\x01\x00\x01"
    assert find_entry(keypair.private_template, Attribute.MODULUS_BITS) is None
    assert keypair.public_handle != keypair.private_handle
    assert set(soft_session.objects) == {keypair.public_handle, keypair.private_handle}

    keypair.destroy()
    assert soft_session.objects == {}
    assert keypair.torn_down


def test_caller_generation_values_win(soft_session: SoftRsaSession) -> None:
    with KeyPair(
        soft_session,
        [Attribute.ENCRYPT, (Attribute.PUBLIC_EXPONENT, b"\x00\x01\x00\x01")],
        [Attribute.DECRYPT],
    ) as keypair:
        exponents = [
            entry
            for entry in keypair.public_template
            if entry.kind == Attribute.PUBLIC_EXPONENT
        ]
        assert [entry.value for entry in exponents] == [b"\x00\x01\x00\x01"]


def test_generation_failure_raises_with_status() -> None:
    session = SoftRsaSession(generate_status=ReturnValue.TEMPLATE_INCONSISTENT)

    with pytest.raises(KeyPairGenerationError) as excinfo:
        KeyPair(session, [Attribute.ENCRYPT], [Attribute.DECRYPT])

    assert excinfo.value.status is ReturnValue.TEMPLATE_INCONSISTENT
    assert "TEMPLATE_INCONSISTENT" in str(excinfo.value)
    assert "destroy_object" not in session.calls


def test_context_manager_destroys_both_objects(soft_session: SoftRsaSession) -> None:
    with KeyPair(soft_session, [Attribute.ENCRYPT], [Attribute.DECRYPT]) as keypair:
        assert len(soft_session.objects) == 2

    assert soft_session.objects == {}
    assert soft_session.calls.count("destroy_object") == 2
    with pytest.raises(KeyPairError):
        keypair.public_handle


def test_explicitly_destroyed_handles_are_skipped_at_teardown(
    soft_session: SoftRsaSession,
) -> None:
    with KeyPair(soft_session, [Attribute.ENCRYPT], [Attribute.DECRYPT]) as keypair:
        assert keypair.destroy_public() is ReturnValue.OK
        assert keypair.destroy_public() is ReturnValue.OBJECT_HANDLE_INVALID

    assert soft_session.objects == {}
    assert soft_session.calls.count("destroy_object") == 3


def test_teardown_failure_is_reported_once() -> None:
    session = SoftRsaSession()
    keypair = KeyPair(session, [Attribute.ENCRYPT], [Attribute.DECRYPT])
    session.destroy_status = ReturnValue.DEVICE_ERROR

    with pytest.raises(ConformanceError, match="DEVICE_ERROR"):
        keypair.destroy()

    assert keypair.torn_down
    assert session.calls.count("destroy_object") == 2
    with pytest.raises(KeyPairError):
        keypair.destroy()
