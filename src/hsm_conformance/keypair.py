from __future__ import annotations

import logging
from typing import Any, Iterable

from pkcs11 import Attribute

from .exceptions import ConformanceError, KeyPairError, KeyPairGenerationError
from .mechanisms import DEFAULT_KEY_PAIR_MECHANISM, MechanismSpec
from .session import CryptokiSession
from .status import ReturnValue, describe_status
from .templates import (
    TemplateEntry,
    TemplateItem,
    build_template,
    find_entry,
    template_entry,
)

_logger = logging.getLogger("hsm_conformance.keypair")


def _with_generation_defaults(
    entries: tuple[TemplateEntry, ...],
) -> tuple[TemplateEntry, ...]:
    extra = [
        template_entry(kind)
        for kind in (Attribute.MODULUS_BITS, Attribute.PUBLIC_EXPONENT)
        if find_entry(entries, kind) is None
    ]
    return entries + tuple(extra)


class KeyPair:
    """
    RSA key pair generated on construction and destroyed on teardown.

    The public template gets a 1024-bit modulus and exponent 65537 unless the
    caller supplies them. A test may destroy either object itself through
    destroy_public()/destroy_private(); teardown then leaves that handle alone.
    """

    def __init__(
        self,
        session: CryptokiSession,
        public_attributes: Iterable[TemplateItem],
        private_attributes: Iterable[TemplateItem],
        *,
        mechanism: MechanismSpec | None = None,
    ) -> None:
        self._session = session
        self._mechanism = mechanism or DEFAULT_KEY_PAIR_MECHANISM
        self.public_template = _with_generation_defaults(build_template(public_attributes))
        self.private_template = build_template(private_attributes)

        result = session.generate_key_pair(
            self._mechanism, self.public_template, self.private_template
        )
        if not result.ok or result.value is None:
            _logger.error(
                "Key-pair generation failed mechanism=%s status=%s",
                self._mechanism.mechanism.name,
                describe_status(result.status),
            )
            raise KeyPairGenerationError(result.status)

        self._public_handle, self._private_handle = result.value
        self._explicitly_destroyed: set[int] = set()
        self._torn_down = False
        _logger.debug(
            "Key pair ready public_handle=%d private_handle=%d",
            self._public_handle,
            self._private_handle,
        )

    def __enter__(self) -> "KeyPair":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.destroy()

    def _require_alive(self) -> None:
        if self._torn_down:
            raise KeyPairError("Key pair has already been torn down.")

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def public_handle(self) -> int:
        self._require_alive()
        return self._public_handle

    @property
    def private_handle(self) -> int:
        self._require_alive()
        return self._private_handle

    def _destroy_explicitly(self, handle: int) -> ReturnValue:
        self._require_alive()
        status = self._session.destroy_object(handle)
        if status == ReturnValue.OK:
            self._explicitly_destroyed.add(handle)
        _logger.debug("Explicit destroy handle=%d status=%s", handle, describe_status(status))
        return status

    def destroy_public(self) -> ReturnValue:
        return self._destroy_explicitly(self._public_handle)

    def destroy_private(self) -> ReturnValue:
        return self._destroy_explicitly(self._private_handle)

    def destroy(self) -> None:
        self._require_alive()
        failures: list[str] = []
        for role, handle in (
            ("public", self._public_handle),
            ("private", self._private_handle),
        ):
            if handle in self._explicitly_destroyed:
                continue
            status = self._session.destroy_object(handle)
            if status != ReturnValue.OK:
                failures.append(f"{role} key handle={handle}: {describe_status(status)}")
        self._torn_down = True

        if failures:
            message = "C_DestroyObject failed during key-pair teardown: " + "; ".join(failures)
            _logger.error(message)
            raise ConformanceError(message)
        _logger.debug("Key pair torn down.")
