from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import pkcs11
from pkcs11 import Attribute

from .buffers import OutputBuffer
from .config import HsmConfig
from .exceptions import HsmOperationError
from .mechanisms import MechanismSpec
from .status import Result, ReturnValue, describe_status, status_from_exception
from .templates import (
    QueryEntry,
    TemplateEntry,
    encoded_length,
    find_entry,
    template_as_mapping,
)

UNAVAILABLE_INFORMATION = -1

_logger = logging.getLogger("hsm_conformance.session")


def _format_exception(exc: Exception) -> str:
    details = str(exc).strip()
    if not details and getattr(exc, "args", None):
        details = ", ".join(str(a) for a in exc.args if a)
    if details:
        return f"{type(exc).__name__}: {details}"
    return type(exc).__name__


@dataclass(frozen=True)
class AttributeValue:
    """An attribute read back from an object, or why it could not be."""

    kind: Attribute
    value: Any
    length: int

    @property
    def available(self) -> bool:
        return self.length != UNAVAILABLE_INFORMATION and self.value is not None


class CryptokiSession(Protocol):
    """The status-code-returning calls the harness makes against one session."""

    def generate_key_pair(
        self,
        mechanism: MechanismSpec,
        public_template: Sequence[TemplateEntry],
        private_template: Sequence[TemplateEntry],
    ) -> Result[tuple[int, int]]: ...

    def destroy_object(self, handle: int) -> ReturnValue: ...

    def get_attribute_value(
        self, handle: int, query: Sequence[QueryEntry]
    ) -> Result[tuple[AttributeValue, ...]]: ...

    def encrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue: ...

    def encrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue: ...

    def decrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue: ...

    def decrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue: ...


@dataclass
class _ActiveOperation:
    function: str
    key: Any
    mechanism: MechanismSpec
    data: bytes | None = None
    output: bytes | None = None


_CAPABILITY_FLAGS = {
    "encrypt": Attribute.ENCRYPT,
    "decrypt": Attribute.DECRYPT,
}


class Pkcs11Session:
    """
    Status-code view of a python-pkcs11 read/write session.

    python-pkcs11 raises instead of returning CK_RV and runs C_EncryptInit and
    C_Encrypt as one call, so this adapter records the operation at init time
    and performs it on the one-shot call. Objects it generated stay addressable
    by handle after destruction so later calls reach the module.

    Because of that, OPERATION_ACTIVE, OPERATION_NOT_INITIALIZED and the
    BUFFER_TOO_SMALL retry state come from the adapter, not the module.
    """

    emulates_operation_state = True

    def __init__(self, session: pkcs11.Session) -> None:
        self._session = session
        self._objects: dict[int, Any] = {}
        self._active: _ActiveOperation | None = None
        self._lock = threading.RLock()

    @property
    def raw(self) -> pkcs11.Session:
        return self._session

    def generate_key_pair(
        self,
        mechanism: MechanismSpec,
        public_template: Sequence[TemplateEntry],
        private_template: Sequence[TemplateEntry],
    ) -> Result[tuple[int, int]]:
        bits_entry = find_entry(public_template, Attribute.MODULUS_BITS)
        with self._lock:
            try:
                public_key, private_key = self._session.generate_keypair(
                    mechanism.key_type,
                    bits_entry.value if bits_entry is not None else None,
                    store=False,
                    mechanism=mechanism.mechanism,
                    mechanism_param=mechanism.parameter,
                    public_template=template_as_mapping(public_template),
                    private_template=template_as_mapping(private_template),
                )
            except pkcs11.exceptions.PKCS11Error as exc:
                status = status_from_exception(exc)
                _logger.info(
                    "C_GenerateKeyPair returned %s (%s)",
                    describe_status(status),
                    _format_exception(exc),
                )
                return Result(status)

            self._objects[public_key.handle] = public_key
            self._objects[private_key.handle] = private_key
        _logger.info(
            "Generated key pair mechanism=%s public_handle=%d private_handle=%d",
            mechanism.mechanism.name,
            public_key.handle,
            private_key.handle,
        )
        return Result(ReturnValue.OK, (public_key.handle, private_key.handle))

    def destroy_object(self, handle: int) -> ReturnValue:
        with self._lock:
            obj = self._objects.get(handle)
            if obj is None:
                return ReturnValue.OBJECT_HANDLE_INVALID
            try:
                obj.destroy()
            except pkcs11.exceptions.PKCS11Error as exc:
                status = status_from_exception(exc)
                _logger.info(
                    "C_DestroyObject handle=%d returned %s", handle, describe_status(status)
                )
                return status
        _logger.debug("Destroyed object handle=%d", handle)
        return ReturnValue.OK

    def get_attribute_value(
        self, handle: int, query: Sequence[QueryEntry]
    ) -> Result[tuple[AttributeValue, ...]]:
        with self._lock:
            obj = self._objects.get(handle)
            if obj is None:
                return Result(ReturnValue.OBJECT_HANDLE_INVALID)

            status = ReturnValue.OK
            values: list[AttributeValue] = []
            for entry in query:
                try:
                    value = obj[entry.kind]
                except pkcs11.exceptions.PKCS11Error as exc:
                    failure = status_from_exception(exc)
                    values.append(AttributeValue(entry.kind, None, UNAVAILABLE_INFORMATION))
                    if status == ReturnValue.OK:
                        status = failure
                    continue
                length = encoded_length(entry.kind, value)
                if length > entry.capacity:
                    values.append(AttributeValue(entry.kind, None, length))
                    if status == ReturnValue.OK:
                        status = ReturnValue.BUFFER_TOO_SMALL
                    continue
                values.append(AttributeValue(entry.kind, value, length))

        if status != ReturnValue.OK:
            _logger.debug(
                "C_GetAttributeValue handle=%d returned %s", handle, describe_status(status)
            )
        return Result(status, tuple(values))

    def _operation_init(self, function: str, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        with self._lock:
            if self._active is not None:
                return ReturnValue.OPERATION_ACTIVE
            key = self._objects.get(handle)
            if key is None:
                return ReturnValue.KEY_HANDLE_INVALID
            if not hasattr(key, function):
                return ReturnValue.KEY_FUNCTION_NOT_PERMITTED
            try:
                permitted = key[_CAPABILITY_FLAGS[function]]
            except pkcs11.exceptions.PKCS11Error as exc:
                status = status_from_exception(exc)
                if status == ReturnValue.OBJECT_HANDLE_INVALID:
                    return ReturnValue.KEY_HANDLE_INVALID
                return status
            if not permitted:
                return ReturnValue.KEY_FUNCTION_NOT_PERMITTED
            self._active = _ActiveOperation(function, key, mechanism)
        _logger.debug(
            "C_%sInit handle=%d mechanism=%s",
            function.capitalize(),
            handle,
            mechanism.mechanism.name,
        )
        return ReturnValue.OK

    def _operation_run(self, function: str, data: bytes, output: OutputBuffer) -> ReturnValue:
        with self._lock:
            active = self._active
            if active is None or active.function != function:
                return ReturnValue.OPERATION_NOT_INITIALIZED

            status: ReturnValue | None = None
            try:
                if active.output is None or active.data != data:
                    try:
                        active.output = getattr(active.key, function)(
                            data,
                            mechanism=active.mechanism.mechanism,
                            mechanism_param=active.mechanism.parameter,
                        )
                    except pkcs11.exceptions.PKCS11Error as exc:
                        status = status_from_exception(exc)
                        _logger.info(
                            "C_%s returned %s", function.capitalize(), describe_status(status)
                        )
                        return status
                    active.data = data

                status = output.fill(active.output)
            finally:
                # Only a BUFFER_TOO_SMALL outcome keeps the operation for a retry.
                if status != ReturnValue.BUFFER_TOO_SMALL:
                    self._active = None
        return status

    def encrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        return self._operation_init("encrypt", mechanism, handle)

    def encrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue:
        return self._operation_run("encrypt", data, output)

    def decrypt_init(self, mechanism: MechanismSpec, handle: int) -> ReturnValue:
        return self._operation_init("decrypt", mechanism, handle)

    def decrypt(self, data: bytes, output: OutputBuffer) -> ReturnValue:
        return self._operation_run("decrypt", data, output)


class TokenConnection:
    """Opens the read/write user session the checks run in."""

    def __init__(self, config: HsmConfig) -> None:
        self._config = config
        self._lib = pkcs11.lib(config.module_path)
        self._raw_session: pkcs11.Session | None = None
        self._session: Pkcs11Session | None = None

    def __enter__(self) -> Pkcs11Session:
        self.open()
        return self.session

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def config(self) -> HsmConfig:
        return self._config

    @property
    def session(self) -> Pkcs11Session:
        if self._session is None:
            raise HsmOperationError("Session is not open.")
        return self._session

    def open(self) -> None:
        if self._session is not None:
            _logger.debug("Session under test already open.")
            return
        try:
            if self._config.slot_no is not None:
                _logger.info("Opening session under test on slot=%s", self._config.slot_no)
                token = self._lib.get_token(slot=self._config.slot_no)
            else:
                _logger.info(
                    "Opening session under test on token_label=%s", self._config.token_label
                )
                token = self._lib.get_token(token_label=self._config.token_label)

            self._raw_session = token.open(user_pin=self._config.user_pin(), rw=True)
            self._session = Pkcs11Session(self._raw_session)
            _logger.info("Session under test opened.")
        except Exception as exc:
            _logger.exception("Failed to open session under test.")
            raise HsmOperationError(
                f"Failed to open session under test: {_format_exception(exc)}"
            ) from exc

    def close(self) -> None:
        if self._raw_session is None:
            _logger.debug("Session under test already closed.")
            return
        self._raw_session.close()
        self._raw_session = None
        self._session = None
        _logger.info("Session under test closed.")
