"""PKCS#11 asymmetric-key conformance harness."""

from .assertions import (
    Expectations,
    assert_bytes_equal,
    assert_equal,
    assert_length,
    assert_not_ok,
    assert_ok,
    assert_status,
    assert_status_in,
    assert_true,
)
from .buffers import OutputBuffer
from .checks import (
    CONFORMANCE_CHECKS,
    CheckOutcome,
    ConformanceCheck,
    get_check,
    list_checks,
    run_checks,
)
from .config import HsmConfig
from .driver import CryptoOperationDriver, OperationState, RoundTrip
from .exceptions import (
    ConformanceError,
    HsmConfigurationError,
    HsmConformanceError,
    HsmOperationError,
    KeyPairError,
    KeyPairGenerationError,
    TemplateError,
)
from .keypair import KeyPair
from .logging_utils import configure_logging
from .mechanisms import MECHANISM_SPECS, MechanismSpec, get_mechanism, list_mechanisms
from .public_keys import read_rsa_public_key_info, rsa_public_key_info
from .session import (
    AttributeValue,
    CryptokiSession,
    Pkcs11Session,
    TokenConnection,
)
from .status import Result, ReturnValue, describe_status, status_from_exception
from .templates import (
    QueryEntry,
    TemplateEntry,
    build_query,
    build_template,
    template_entry,
)

__all__ = [
    "CONFORMANCE_CHECKS",
    "MECHANISM_SPECS",
    "AttributeValue",
    "CheckOutcome",
    "ConformanceCheck",
    "ConformanceError",
    "CryptoOperationDriver",
    "CryptokiSession",
    "Expectations",
    "HsmConfig",
    "HsmConfigurationError",
    "HsmConformanceError",
    "HsmOperationError",
    "KeyPair",
    "KeyPairError",
    "KeyPairGenerationError",
    "MechanismSpec",
    "OperationState",
    "OutputBuffer",
    "Pkcs11Session",
    "QueryEntry",
    "Result",
    "ReturnValue",
    "RoundTrip",
    "TemplateEntry",
    "TemplateError",
    "TokenConnection",
    "assert_bytes_equal",
    "assert_equal",
    "assert_length",
    "assert_not_ok",
    "assert_ok",
    "assert_status",
    "assert_status_in",
    "assert_true",
    "build_query",
    "build_template",
    "configure_logging",
    "describe_status",
    "get_check",
    "get_mechanism",
    "list_checks",
    "list_mechanisms",
    "read_rsa_public_key_info",
    "rsa_public_key_info",
    "run_checks",
    "status_from_exception",
    "template_entry",
]
