from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .exceptions import HsmConfigurationError

# CK_TOKEN_INFO.label is a fixed 32-byte, blank-padded field.
TOKEN_LABEL_MAX_BYTES = 32


def _module_under_test(raw: str | None) -> str:
    if not raw:
        raise HsmConfigurationError("HSM_PKCS11_MODULE is required.")
    path = Path(raw)
    if not path.is_file():
        raise HsmConfigurationError(f"PKCS#11 module under test does not exist: {raw}")
    return str(path)


def _token_label(raw: str | None) -> str | None:
    if raw is None:
        return None
    label = raw.rstrip(" ")
    if not label:
        return None
    if len(label.encode("utf-8")) > TOKEN_LABEL_MAX_BYTES:
        raise HsmConfigurationError(
            f"HSM_TOKEN_LABEL must fit in {TOKEN_LABEL_MAX_BYTES} bytes, got: {raw}"
        )
    return label


def _slot(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        slot_no = int(raw)
    except ValueError as exc:
        raise HsmConfigurationError(f"HSM_SLOT must be an integer, got: {raw}") from exc
    if slot_no < 0:
        raise HsmConfigurationError(f"HSM_SLOT must be >= 0, got: {raw}")
    return slot_no


def _check_names(raw: str | None) -> tuple[str, ...] | None:
    if not raw:
        return None
    names = tuple(name.strip() for name in raw.split(",") if name.strip())
    return names or None


@dataclass(frozen=True)
class HsmConfig:
    """
    The module under test, the token to open on it and which checks to run.

    ``checks`` of None means every registered check. Names are resolved by the
    check registry when the run starts.
    """

    module_path: str
    token_label: str | None = None
    slot_no: int | None = None
    user_pin_env: str = "HSM_USER_PIN"
    checks: tuple[str, ...] | None = None

    @classmethod
    def from_env(cls) -> "HsmConfig":
        module_path = _module_under_test(os.environ.get("HSM_PKCS11_MODULE"))
        token_label = _token_label(os.environ.get("HSM_TOKEN_LABEL"))
        slot_no = _slot(os.environ.get("HSM_SLOT"))

        # A slot pins the token exactly; the label is then only informational.
        if token_label is None and slot_no is None:
            raise HsmConfigurationError(
                "Set either HSM_TOKEN_LABEL or HSM_SLOT to pick the token under test."
            )

        return cls(
            module_path=module_path,
            token_label=token_label,
            slot_no=slot_no,
            user_pin_env=os.environ.get("HSM_USER_PIN_ENV") or "HSM_USER_PIN",
            checks=_check_names(os.environ.get("HSM_CONFORMANCE_CHECKS")),
        )

    def user_pin(self) -> str:
        pin = os.environ.get(self.user_pin_env)
        if not pin:
            raise HsmConfigurationError(
                f"{self.user_pin_env} is required to log in to the token under test."
            )
        return pin
