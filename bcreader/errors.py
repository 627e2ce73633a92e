"""
Bitcode Reader Errors

Every failure the reader reports is a BitcodeError carrying an ErrorKind.
The kind's value is the message text; subclasses group kinds by category:

  SignatureError             - missing signature or bad wrapper header
  StructuralError            - malformed blocks, invalid records or ids
  ForwardReferenceError      - bad or unresolved references
    UnresolvedForwardReference
    TypeMismatch
  DuplicateDefinitionError   - an entry or block defined twice
  UnresolvedWorklistError    - initializers left pending at module end
  FunctionBodyError          - failures local to one function body
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    INVALID_BITCODE_SIGNATURE = "Invalid bitcode signature"
    INVALID_BITCODE_WRAPPER_HEADER = "Invalid bitcode wrapper header"
    MALFORMED_BLOCK = "Malformed block"
    INVALID_RECORD = "Invalid record"
    INVALID_ID = "Invalid ID"
    INVALID_TYPE = "Invalid type"
    INVALID_TYPE_TABLE = "Invalid TYPE table"
    INVALID_VALUE = "Invalid value"
    INVALID_TYPE_FOR_VALUE = "Invalid type for value"
    INVALID_CONSTANT_REFERENCE = "Invalid constant reference"
    EXPECTED_CONSTANT = "Expected a constant"
    INVALID_MULTIPLE_BLOCKS = "Invalid multiple blocks"
    CONFLICTING_METADATA_KIND_RECORDS = "Conflicting METADATA_KIND records"
    INSUFFICIENT_FUNCTION_PROTOS = "Insufficient function protos"
    INVALID_INSTRUCTION_WITH_NO_BB = "Invalid instruction with no BB"
    NEVER_RESOLVED_VALUE_FOUND_IN_FUNCTION = "Never resolved value found in function"
    MALFORMED_GLOBAL_INITIALIZER_SET = "Malformed global initializer set"
    COULD_NOT_FIND_FUNCTION_IN_STREAM = "Could not find function in stream"


class BitcodeError(Exception):
    """Base exception for bitcode reading errors"""

    default_kind = ErrorKind.MALFORMED_BLOCK

    def __init__(self, kind: Optional[ErrorKind] = None, detail: str = ""):
        self.kind = kind or self.default_kind
        self.detail = detail
        message = self.kind.value
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SignatureError(BitcodeError):
    """The container does not start with a bitcode signature or wrapper"""
    default_kind = ErrorKind.INVALID_BITCODE_SIGNATURE


class StructuralError(BitcodeError):
    """A block or record does not have the expected shape"""
    default_kind = ErrorKind.MALFORMED_BLOCK


class ForwardReferenceError(BitcodeError):
    """A reference names something that is missing or of the wrong kind"""
    default_kind = ErrorKind.INVALID_VALUE


class UnresolvedForwardReference(ForwardReferenceError):
    """A placeholder was still in use when its scope closed"""
    default_kind = ErrorKind.INVALID_CONSTANT_REFERENCE


class TypeMismatch(ForwardReferenceError):
    """A definition's type differs from the type its references assumed"""
    default_kind = ErrorKind.INVALID_TYPE_FOR_VALUE


class DuplicateDefinitionError(BitcodeError):
    """A table entry or a single-instance block was defined twice"""
    default_kind = ErrorKind.INVALID_MULTIPLE_BLOCKS


class UnresolvedWorklistError(BitcodeError):
    """Global or alias initializers never became available"""
    default_kind = ErrorKind.MALFORMED_GLOBAL_INITIALIZER_SET


class FunctionBodyError(BitcodeError):
    """A function body failed to decode; the module itself is intact"""

    def __init__(self, function_name: str, cause: BitcodeError):
        self.function_name = function_name
        self.cause = cause
        detail = f"in function '{function_name}'"
        if cause.detail:
            detail = f"{detail}: {cause.detail}"
        super().__init__(cause.kind, detail)
