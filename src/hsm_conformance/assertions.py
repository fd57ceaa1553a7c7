from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from .exceptions import ConformanceError
from .status import ReturnValue, describe_status

_logger = logging.getLogger("hsm_conformance.assertions")


def _fail(message: str) -> None:
    _logger.error("Conformance failure: %s", message)
    raise ConformanceError(message)


def assert_ok(status: ReturnValue, operation: str = "call") -> None:
    if status != ReturnValue.OK:
        _fail(f"{operation} returned {describe_status(status)}, expected OK")


def assert_status(expected: ReturnValue, status: ReturnValue, operation: str = "call") -> None:
    if status != expected:
        _fail(
            f"{operation} returned {describe_status(status)}, "
            f"expected {describe_status(expected)}"
        )


def assert_status_in(
    allowed: Iterable[ReturnValue], status: ReturnValue, operation: str = "call"
) -> None:
    allowed = tuple(allowed)
    if status not in allowed:
        expected = ", ".join(describe_status(s) for s in allowed)
        _fail(f"{operation} returned {describe_status(status)}, expected one of: {expected}")


def assert_not_ok(status: ReturnValue, operation: str = "call") -> None:
    if status == ReturnValue.OK:
        _fail(f"{operation} succeeded but was expected to fail")


def assert_bytes_equal(expected: bytes, actual: bytes | None, what: str = "data") -> None:
    if actual is None or bytes(actual) != bytes(expected):
        _fail(f"{what} mismatch: expected {bytes(expected)!r}, got {actual!r}")


def assert_equal(expected: Any, actual: Any, what: str = "value") -> None:
    if actual != expected:
        _fail(f"{what} is {actual!r}, expected {expected!r}")


def assert_length(expected: int, actual: int, what: str = "length") -> None:
    if actual != expected:
        _fail(f"{what} is {actual}, expected {expected}")


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        _fail(message)


class Expectations:
    """
    Non-fatal checks: failures are collected and raised together.

    Use as a context manager, or call verify() once all checks are made.
    """

    def __init__(self) -> None:
        self.failures: list[str] = []

    def __enter__(self) -> "Expectations":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self.verify()
        elif self.failures and issubclass(exc_type, ConformanceError):
            # Fatal failure last, after the ones already collected.
            self.failures.append(str(exc_val))
            raise self._combined() from exc_val

    def _check(self, assertion: Callable[..., None], *args: Any) -> bool:
        try:
            assertion(*args)
        except ConformanceError as exc:
            self.failures.append(str(exc))
            return False
        return True

    def ok(self, status: ReturnValue, operation: str = "call") -> bool:
        return self._check(assert_ok, status, operation)

    def status(self, expected: ReturnValue, status: ReturnValue, operation: str = "call") -> bool:
        return self._check(assert_status, expected, status, operation)

    def status_in(
        self, allowed: Iterable[ReturnValue], status: ReturnValue, operation: str = "call"
    ) -> bool:
        return self._check(assert_status_in, allowed, status, operation)

    def not_ok(self, status: ReturnValue, operation: str = "call") -> bool:
        return self._check(assert_not_ok, status, operation)

    def bytes_equal(self, expected: bytes, actual: bytes | None, what: str = "data") -> bool:
        return self._check(assert_bytes_equal, expected, actual, what)

    def equal(self, expected: Any, actual: Any, what: str = "value") -> bool:
        return self._check(assert_equal, expected, actual, what)

    def length(self, expected: int, actual: int, what: str = "length") -> bool:
        return self._check(assert_length, expected, actual, what)

    def true(self, condition: bool, message: str) -> bool:
        return self._check(assert_true, condition, message)

    def _combined(self) -> ConformanceError:
        count = len(self.failures)
        return ConformanceError(
            f"{count} expectation(s) failed:\n" + "\n".join(f"- {f}" for f in self.failures)
        )

    def verify(self) -> None:
        if self.failures:
            raise self._combined()
