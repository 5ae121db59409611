from typing import Dict, List, Optional


class ZatcaError(Exception):
    """Base error for the signing engine. `context` carries extra details."""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message)
        self.context = context or {}

    def with_context(self, **context) -> "ZatcaError":
        self.context.update(context)
        return self


class ParseError(ZatcaError):
    pass


class TlvDecodeError(ParseError):
    pass


class LoadError(ZatcaError):
    pass


class UnsupportedKeyError(ZatcaError):
    pass


class MissingInputError(ZatcaError):
    def __init__(self, field: str):
        super().__init__(f"Missing required input: {field}", {"field": field})
        self.field = field


class MissingFieldError(ZatcaError):
    def __init__(self, fields: List[str]):
        super().__init__(f"Missing required parameters: {', '.join(fields)}", {"fields": fields})
        self.fields = fields


class FieldFormatError(ZatcaError):
    def __init__(self, field: str, message: str):
        super().__init__(message, {"field": field})
        self.field = field


class EncodingOverflowError(ZatcaError):
    def __init__(self, tag: int, length: int):
        super().__init__(f"Value for tag {tag} exceeds 255 bytes (got {length})", {"tag": tag, "length": length})
        self.tag = tag
        self.length = length


class ZatcaApiError(ZatcaError):
    def __init__(self, message: str, status_code: Optional[int] = None, response: str = "",
                 context: Optional[Dict] = None):
        super().__init__(message, context)
        self.status_code = status_code
        self.response = response
