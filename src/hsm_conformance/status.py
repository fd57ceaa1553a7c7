from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Generic, TypeVar

import pkcs11

T = TypeVar("T")


class ReturnValue(IntEnum):
    """CK_RV status codes a module can report to the harness."""

    OK = 0x000
    CANCEL = 0x001
    HOST_MEMORY = 0x002
    SLOT_ID_INVALID = 0x003
    GENERAL_ERROR = 0x005
    FUNCTION_FAILED = 0x006
    ARGUMENTS_BAD = 0x007
    ATTRIBUTE_READ_ONLY = 0x010
    ATTRIBUTE_SENSITIVE = 0x011
    ATTRIBUTE_TYPE_INVALID = 0x012
    ATTRIBUTE_VALUE_INVALID = 0x013
    DATA_INVALID = 0x020
    DATA_LEN_RANGE = 0x021
    DEVICE_ERROR = 0x030
    DEVICE_MEMORY = 0x031
    DEVICE_REMOVED = 0x032
    ENCRYPTED_DATA_INVALID = 0x040
    ENCRYPTED_DATA_LEN_RANGE = 0x041
    FUNCTION_NOT_SUPPORTED = 0x054
    KEY_HANDLE_INVALID = 0x060
    KEY_SIZE_RANGE = 0x062
    KEY_TYPE_INCONSISTENT = 0x063
    KEY_FUNCTION_NOT_PERMITTED = 0x068
    MECHANISM_INVALID = 0x070
    MECHANISM_PARAM_INVALID = 0x071
    OBJECT_HANDLE_INVALID = 0x082
    OPERATION_ACTIVE = 0x090
    OPERATION_NOT_INITIALIZED = 0x091
    SESSION_CLOSED = 0x0B0
    SESSION_HANDLE_INVALID = 0x0B3
    SESSION_READ_ONLY = 0x0B5
    TEMPLATE_INCOMPLETE = 0x0D0
    TEMPLATE_INCONSISTENT = 0x0D1
    TOKEN_WRITE_PROTECTED = 0x0E2
    USER_NOT_LOGGED_IN = 0x101
    BUFFER_TOO_SMALL = 0x150
    FUNCTION_REJECTED = 0x200


@dataclass(frozen=True)
class Result(Generic[T]):
    """Status of a module call plus whatever it produced."""

    status: ReturnValue
    value: T | None = None

    @property
    def ok(self) -> bool:
        return self.status == ReturnValue.OK


# python-pkcs11 raises one exception class per CK_RV; keyed by class name so
# classes missing from an installed release are simply never matched.
_EXCEPTION_STATUS: dict[str, ReturnValue] = {
    "ArgumentsBad": ReturnValue.ARGUMENTS_BAD,
    "AttributeReadOnly": ReturnValue.ATTRIBUTE_READ_ONLY,
    "AttributeSensitive": ReturnValue.ATTRIBUTE_SENSITIVE,
    "AttributeTypeInvalid": ReturnValue.ATTRIBUTE_TYPE_INVALID,
    "AttributeValueInvalid": ReturnValue.ATTRIBUTE_VALUE_INVALID,
    "DataInvalid": ReturnValue.DATA_INVALID,
    "DataLenRange": ReturnValue.DATA_LEN_RANGE,
    "DeviceError": ReturnValue.DEVICE_ERROR,
    "DeviceMemory": ReturnValue.DEVICE_MEMORY,
    "DeviceRemoved": ReturnValue.DEVICE_REMOVED,
    "EncryptedDataInvalid": ReturnValue.ENCRYPTED_DATA_INVALID,
    "EncryptedDataLenRange": ReturnValue.ENCRYPTED_DATA_LEN_RANGE,
    "FunctionCancelled": ReturnValue.CANCEL,
    "FunctionFailed": ReturnValue.FUNCTION_FAILED,
    "FunctionNotSupported": ReturnValue.FUNCTION_NOT_SUPPORTED,
    "FunctionRejected": ReturnValue.FUNCTION_REJECTED,
    "GeneralError": ReturnValue.GENERAL_ERROR,
    "HostMemory": ReturnValue.HOST_MEMORY,
    "KeyFunctionNotPermitted": ReturnValue.KEY_FUNCTION_NOT_PERMITTED,
    "KeyHandleInvalid": ReturnValue.KEY_HANDLE_INVALID,
    "KeySizeRange": ReturnValue.KEY_SIZE_RANGE,
    "KeyTypeInconsistent": ReturnValue.KEY_TYPE_INCONSISTENT,
    "MechanismInvalid": ReturnValue.MECHANISM_INVALID,
    "MechanismParamInvalid": ReturnValue.MECHANISM_PARAM_INVALID,
    "ObjectHandleInvalid": ReturnValue.OBJECT_HANDLE_INVALID,
    "OperationActive": ReturnValue.OPERATION_ACTIVE,
    "OperationNotInitialized": ReturnValue.OPERATION_NOT_INITIALIZED,
    "SessionClosed": ReturnValue.SESSION_CLOSED,
    "SessionHandleInvalid": ReturnValue.SESSION_HANDLE_INVALID,
    "SessionReadOnly": ReturnValue.SESSION_READ_ONLY,
    "SlotIDInvalid": ReturnValue.SLOT_ID_INVALID,
    "TemplateIncomplete": ReturnValue.TEMPLATE_INCOMPLETE,
    "TemplateInconsistent": ReturnValue.TEMPLATE_INCONSISTENT,
    "TokenWriteProtected": ReturnValue.TOKEN_WRITE_PROTECTED,
    "UserNotLoggedIn": ReturnValue.USER_NOT_LOGGED_IN,
}


def status_from_exception(exc: pkcs11.exceptions.PKCS11Error) -> ReturnValue:
    """Recover the CK_RV a python-pkcs11 exception was raised for."""
    for klass in type(exc).__mro__:
        status = _EXCEPTION_STATUS.get(klass.__name__)
        if status is not None:
            return status
    return ReturnValue.GENERAL_ERROR


def describe_status(status: int) -> str:
    try:
        known = ReturnValue(status)
    except ValueError:
        return f"UNKNOWN (0x{status:x})"
    return f"{known.name} (0x{known.value:x})"
