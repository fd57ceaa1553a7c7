from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .buffers import OutputBuffer
from .mechanisms import RSA_PKCS, MechanismSpec
from .session import CryptokiSession
from .status import Result, ReturnValue, describe_status

DEFAULT_OUTPUT_CAPACITY = 1024

_logger = logging.getLogger("hsm_conformance.driver")


class OperationState(Enum):
    IDLE = "idle"
    INITIALIZED = "initialized"


@dataclass(frozen=True)
class RoundTrip:
    ciphertext: bytes
    recovered: bytes


class CryptoOperationDriver:
    """
    Drives the init/one-shot encrypt and decrypt protocol on one session.

    The driver mirrors the module's operation state: a successful init moves
    it to INITIALIZED, a one-shot call returns it to IDLE unless the module
    asked for a bigger buffer. One-shot calls are forwarded even while IDLE so
    the module's own usage-error status can be checked. Not thread-safe; one
    driver per session.
    """

    def __init__(self, session: CryptokiSession) -> None:
        self._session = session
        self.state = OperationState.IDLE
        self.function: str | None = None

    def _init(self, function: str, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        if function == "encrypt":
            status = self._session.encrypt_init(mechanism, handle)
        else:
            status = self._session.decrypt_init(mechanism, handle)
        if status == ReturnValue.OK:
            self.state = OperationState.INITIALIZED
            self.function = function
        _logger.debug(
            "%s_init handle=%d mechanism=%s status=%s state=%s",
            function,
            handle,
            mechanism.mechanism.name,
            describe_status(status),
            self.state.value,
        )
        return status

    def _one_shot(self, function: str, data: bytes, output: OutputBuffer) -> ReturnValue:
        if function == "encrypt":
            status = self._session.encrypt(data, output)
        else:
            status = self._session.decrypt(data, output)
        if status != ReturnValue.BUFFER_TOO_SMALL and self.function == function:
            self.state = OperationState.IDLE
            self.function = None
        _logger.debug(
            "%s input_len=%d output_len=%d status=%s state=%s",
            function,
            len(data),
            output.length,
            describe_status(status),
            self.state.value,
        )
        return status

    def encrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        return self._init("encrypt", mechanism, handle)

    def encrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue:
        return self._one_shot("encrypt", data, output)

    def decrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        return self._init("decrypt", mechanism, handle)

    def decrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue:
        return self._one_shot("decrypt", data, output)

    def _once(
        self,
        function: str,
        mechanism: MechanismSpec,
        handle: int,
        data: bytes,
        capacity: int,
    ) -> Result[bytes]:
        status = self._init(function, mechanism, handle)
        if status != ReturnValue.OK:
            return Result(status)
        output = OutputBuffer(capacity)
        status = self._one_shot(function, data, output)
        if status != ReturnValue.OK:
            return Result(status)
        return Result(status, output.value)

    def encrypt_once(
        self,
        mechanism: MechanismSpec,
        handle: int,
        plaintext: bytes,
        capacity: int = DEFAULT_OUTPUT_CAPACITY,
    ) -> Result[bytes]:
        return self._once("encrypt", mechanism, handle, plaintext, capacity)

    def decrypt_once(
        self,
        mechanism: MechanismSpec,
        handle: int,
        ciphertext: bytes,
        capacity: int = DEFAULT_OUTPUT_CAPACITY,
    ) -> Result[bytes]:
        return self._once("decrypt", mechanism, handle, ciphertext, capacity)

    def round_trip(
        self,
        public_handle: int,
        private_handle: int,
        plaintext: bytes,
        mechanism: MechanismSpec = RSA_PKCS,
    ) -> Result[RoundTrip]:
        encrypted = self.encrypt_once(mechanism, public_handle, plaintext)
        if not encrypted.ok or encrypted.value is None:
            return Result(encrypted.status)
        decrypted = self.decrypt_once(mechanism, private_handle, encrypted.value)
        if not decrypted.ok or decrypted.value is None:
            return Result(decrypted.status)
        return Result(ReturnValue.OK, RoundTrip(encrypted.value, decrypted.value))
