from __future__ import annotations

import functools
import itertools
from dataclasses import dataclass
from typing import Any, Sequence

import pytest
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pkcs11 import Attribute, Mechanism

from hsm_conformance import OutputBuffer, Result, ReturnValue
from hsm_conformance.mechanisms import MechanismSpec
from hsm_conformance.session import UNAVAILABLE_INFORMATION, AttributeValue
from hsm_conformance.templates import (
    QueryEntry,
    TemplateEntry,
    encoded_length,
    template_as_mapping,
)

_SENSITIVE_KINDS = frozenset(
    {
        Attribute.PRIVATE_EXPONENT,
        Attribute.PRIME_1,
        Attribute.PRIME_2,
        Attribute.EXPONENT_1,
        Attribute.EXPONENT_2,
        Attribute.COEFFICIENT,
    }
)


def _int_bytes(value: int) -> bytes:
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), byteorder="big")


@functools.lru_cache(maxsize=None)
def _rsa_key(public_exponent: int, bits: int) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=public_exponent, key_size=bits)


@dataclass
class SoftObject:
    private: bool
    attributes: dict[Attribute, Any]
    key: Any


@dataclass
class _Active:
    function: str
    obj: SoftObject
    data: bytes | None = None
    output: bytes | None = None


class SoftRsaSession:
    """
    In-memory RSA module speaking the harness's status-code protocol.

    The switches make it misbehave in the ways the checks are meant to catch.
    """

    def __init__(
        self,
        *,
        leak_sensitive: bool = False,
        mixed_token_status: ReturnValue | None = None,
        accept_uninitialized: bool = False,
        generate_status: ReturnValue = ReturnValue.OK,
        destroy_status: ReturnValue | None = None,
        keep_destroyed: bool = False,
        ignore_output_capacity: bool = False,
    ) -> None:
        self.leak_sensitive = leak_sensitive
        self.mixed_token_status = mixed_token_status
        self.accept_uninitialized = accept_uninitialized
        self.generate_status = generate_status
        self.destroy_status = destroy_status
        self.keep_destroyed = keep_destroyed
        self.ignore_output_capacity = ignore_output_capacity
        self.objects: dict[int, SoftObject] = {}
        self.calls: list[str] = []
        self._handles = itertools.count(1)
        self._active: _Active | None = None

    def generate_key_pair(
        self,
        mechanism: MechanismSpec,
        public_template: Sequence[TemplateEntry],
        private_template: Sequence[TemplateEntry],
    ) -> Result[tuple[int, int]]:
        self.calls.append("generate_key_pair")
        if self.generate_status != ReturnValue.OK:
            return Result(self.generate_status)
        if mechanism.mechanism != Mechanism.RSA_PKCS_KEY_PAIR_GEN:
            return Result(ReturnValue.MECHANISM_INVALID)

        public = template_as_mapping(public_template)
        private = template_as_mapping(private_template)
        if self.mixed_token_status is not None and public.get(
            Attribute.TOKEN, False
        ) != private.get(Attribute.TOKEN, False):
            return Result(self.mixed_token_status)

        bits = public.get(Attribute.MODULUS_BITS)
        if bits is None:
            return Result(ReturnValue.TEMPLATE_INCOMPLETE)
        exponent = int.from_bytes(
            public.get(Attribute.PUBLIC_EXPONENT, b"\x01\x00\x01"), byteorder="big"
        )
        key = _rsa_key(exponent, bits)
        public_numbers = key.public_key().public_numbers()
        private_numbers = key.private_numbers()

        shared = {
            Attribute.MODULUS: _int_bytes(public_numbers.n),
            Attribute.PUBLIC_EXPONENT: _int_bytes(public_numbers.e),
        }
        public_object = SoftObject(
            private=False,
            attributes={
                **shared,
                Attribute.MODULUS_BITS: bits,
                Attribute.ENCRYPT: public.get(Attribute.ENCRYPT, False),
                Attribute.TOKEN: public.get(Attribute.TOKEN, False),
            },
            key=key.public_key(),
        )
        private_object = SoftObject(
            private=True,
            attributes={
                **shared,
                Attribute.DECRYPT: private.get(Attribute.DECRYPT, False),
                Attribute.TOKEN: private.get(Attribute.TOKEN, False),
                Attribute.SENSITIVE: private.get(Attribute.SENSITIVE, False),
                Attribute.PRIVATE_EXPONENT: _int_bytes(private_numbers.d),
                Attribute.PRIME_1: _int_bytes(private_numbers.p),
                Attribute.PRIME_2: _int_bytes(private_numbers.q),
                Attribute.EXPONENT_1: _int_bytes(private_numbers.dmp1),
                Attribute.EXPONENT_2: _int_bytes(private_numbers.dmq1),
                Attribute.COEFFICIENT: _int_bytes(private_numbers.iqmp),
            },
            key=key,
        )
        for label_kind, template in ((public_object, public), (private_object, private)):
            if Attribute.LABEL in template:
                label_kind.attributes[Attribute.LABEL] = template[Attribute.LABEL]

        public_handle = next(self._handles)
        private_handle = next(self._handles)
        self.objects[public_handle] = public_object
        self.objects[private_handle] = private_object
        return Result(ReturnValue.OK, (public_handle, private_handle))

    def destroy_object(self, handle: int) -> ReturnValue:
        self.calls.append("destroy_object")
        if self.destroy_status is not None:
            return self.destroy_status
        if handle not in self.objects:
            return ReturnValue.OBJECT_HANDLE_INVALID
        if not self.keep_destroyed:
            del self.objects[handle]
        return ReturnValue.OK

    def get_attribute_value(
        self, handle: int, query: Sequence[QueryEntry]
    ) -> Result[tuple[AttributeValue, ...]]:
        self.calls.append("get_attribute_value")
        obj = self.objects.get(handle)
        if obj is None:
            return Result(ReturnValue.OBJECT_HANDLE_INVALID)

        status = ReturnValue.OK
        values = []
        for entry in query:
            failure = None
            if entry.kind not in obj.attributes:
                failure = ReturnValue.ATTRIBUTE_TYPE_INVALID
            elif (
                obj.private
                and entry.kind in _SENSITIVE_KINDS
                and obj.attributes[Attribute.SENSITIVE]
                and not self.leak_sensitive
            ):
                failure = ReturnValue.ATTRIBUTE_SENSITIVE
            if failure is not None:
                values.append(AttributeValue(entry.kind, None, UNAVAILABLE_INFORMATION))
                if status == ReturnValue.OK:
                    status = failure
                continue

            value = obj.attributes[entry.kind]
            length = encoded_length(entry.kind, value)
            if length > entry.capacity:
                values.append(AttributeValue(entry.kind, None, length))
                if status == ReturnValue.OK:
                    status = ReturnValue.BUFFER_TOO_SMALL
                continue
            values.append(AttributeValue(entry.kind, value, length))
        return Result(status, tuple(values))

    def _init(self, function: str, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        self.calls.append(f"{function}_init")
        if self._active is not None:
            return ReturnValue.OPERATION_ACTIVE
        obj = self.objects.get(handle)
        if obj is None:
            return ReturnValue.KEY_HANDLE_INVALID
        if mechanism.mechanism != Mechanism.RSA_PKCS:
            return ReturnValue.MECHANISM_INVALID
        flag = Attribute.ENCRYPT if function == "encrypt" else Attribute.DECRYPT
        if not obj.attributes.get(flag, False):
            return ReturnValue.KEY_FUNCTION_NOT_PERMITTED
        self._active = _Active(function, obj)
        return ReturnValue.OK

    def _run(self, function: str, data: bytes, output: OutputBuffer) -> ReturnValue:
        self.calls.append(function)
        active = self._active
        if active is None or active.function != function:
            if self.accept_uninitialized:
                return output.fill(b"\x00" * min(output.length, 128))
            return ReturnValue.OPERATION_NOT_INITIALIZED

        if active.output is None or active.data != data:
            try:
                if function == "encrypt":
                    active.output = active.obj.key.encrypt(data, padding.PKCS1v15())
                else:
                    active.output = active.obj.key.decrypt(data, padding.PKCS1v15())
            except ValueError:
                self._active = None
                if function == "encrypt":
                    return ReturnValue.DATA_LEN_RANGE
                return ReturnValue.ENCRYPTED_DATA_INVALID
            active.data = data

        if self.ignore_output_capacity:
            # Truncates into whatever space was offered and claims success.
            self._active = None
            return output.fill(active.output[: output.length])

        status = output.fill(active.output)
        if status != ReturnValue.BUFFER_TOO_SMALL:
            self._active = None
        return status

    def encrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        return self._init("encrypt", mechanism, handle)

    def encrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue:
        return self._run("encrypt", data, output)

    def decrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        return self._init("decrypt", mechanism, handle)

    def decrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue:
        return self._run("decrypt", data, output)


@pytest.fixture
def soft_session() -> SoftRsaSession:
    return SoftRsaSession()
