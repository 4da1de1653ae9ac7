"""
S7 error handling and exception classes.

Maps S7 return and error codes to Python exceptions with meaningful messages.
"""

from typing import Optional


class S7Error(Exception):
    """Base exception for all S7 errors."""

    def __init__(self, message: str, error_code: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code


class S7AddressError(S7Error):
    """Raised when an item address can't be used."""

    def __init__(self, message: str, address: str, column: Optional[int] = None):
        super().__init__(message)
        self.address = address
        self.column = column


class S7BadAddressError(S7AddressError):
    """Raised when an item address is malformed."""

    pass


class S7UnknownTypeError(S7AddressError):
    """Raised when an item address names an unknown type."""

    pass


class S7BitTypeMismatchError(S7AddressError):
    """Raised when a bit offset is given for a non-bit type."""

    pass


class S7ValueError(S7Error):
    """Raised when a write value doesn't fit the item address."""

    def __init__(self, message: str, address: str):
        super().__init__(message)
        self.address = address


class S7ArrayValueRequiredError(S7ValueError):
    """Raised when a scalar value is written to an array address."""

    pass


class S7ConnectionError(S7Error):
    """Raised when the connection to the S7 device fails."""

    pass


class S7TimeoutError(S7ConnectionError):
    """Raised when an S7 operation times out."""

    pass


class S7ProtocolError(S7Error):
    """Raised when S7 protocol communication fails."""

    pass


class S7HandshakeError(S7ProtocolError):
    """Raised when the COTP connect or PDU negotiation gets an unexpected answer."""

    pass


class S7ServerError(S7ProtocolError):
    """Raised when the response header carries a non-zero error code."""

    def __init__(self, error_code: int):
        super().__init__(f"server returns error {error_code:#06x}: {header_error_text(error_code)}", error_code)


class S7ItemCountMismatchError(S7ProtocolError):
    """Raised when the response holds a different number of items than requested."""

    def __init__(self, expected: int, received: int):
        super().__init__(f"bad server item count: {received} (expected {expected})")
        self.expected = expected
        self.received = received


class S7ItemStatusError(S7ProtocolError):
    """Raised when a response item carries a status other than success."""

    def __init__(self, operation: str, index: int, address: str, error_code: int):
        super().__init__(
            f"fail to {operation} `{address}` (item {index}): return code={error_code:#04x} ({item_status_text(error_code)})",
            error_code,
        )
        self.index = index
        self.address = address


# Per-item return codes of read/write responses
item_status_codes = {
    0x00: "Reserved",
    0x01: "Hardware fault",
    0x03: "Accessing the object not allowed",
    0x05: "Address out of range",
    0x06: "Data type not supported",
    0x07: "Data type inconsistent",
    0x0A: "Object does not exist",
    0xFF: "Success",
}

# Error classes of the S7 response header (high byte of the error code)
header_error_classes = {
    0x00: "No error",
    0x81: "Application relationship error",
    0x82: "Object definition error",
    0x83: "No resources available",
    0x84: "Error on service processing",
    0x85: "Error on supplies",
    0x87: "Access error",
}


def item_status_text(code: int) -> str:
    """Get human-readable text for a per-item return code."""
    return item_status_codes.get(code, f"Unknown return code: {code:#04x}")


def header_error_text(code: int) -> str:
    """Get human-readable text for an S7 header error code."""
    return header_error_classes.get((code >> 8) & 0xFF, f"Unknown error class: {code:#06x}")
