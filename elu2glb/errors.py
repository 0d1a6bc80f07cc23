"""
Conversion error taxonomy

Every failure raised by the decoders and the scene builder derives from
ConversionError so callers can catch a whole target's failure in one place.
"""


class ConversionError(Exception):
    """Base class for all conversion failures"""


class FormatMismatch(ConversionError):
    """File signature does not match the expected exporter magic"""

    def __init__(self, kind: str, signature: int, expected: int):
        self.kind = kind
        self.signature = signature
        self.expected = expected
        super().__init__(
            f"{kind} signature mismatch: got 0x{signature:08x}, expected 0x{expected:08x}"
        )


class EndOfData(ConversionError):
    """A read would run past the end of the buffer"""

    def __init__(self, offset: int, size: int, available: int = 0):
        self.offset = offset
        self.size = size
        self.available = available
        super().__init__(
            f"Unexpected end of data at offset {offset}: need {size} bytes, "
            f"{available} available"
        )


class UnsupportedSchema(ConversionError):
    """The decoder met a record shape it has no branch for"""


class DegenerateTransform(ConversionError):
    """A transform matrix cannot be inverted"""

    def __init__(self, determinant: float):
        self.determinant = determinant
        super().__init__(f"Matrix is not invertible (det={determinant:g})")
