"""
Bitcode Wire Constants

Block ids, record codes and enumeration encodings of the 3.0 bitcode format,
including the legacy ids still accepted from older producers.
"""

from enum import IntEnum


class BlockId(IntEnum):
    BLOCKINFO = 0
    MODULE = 8
    PARAMATTR = 9
    TYPE_OLD = 10
    CONSTANTS = 11
    FUNCTION = 12
    TYPE_SYMTAB_OLD = 13
    VALUE_SYMTAB = 14
    METADATA = 15
    METADATA_ATTACHMENT = 16
    TYPE_NEW = 17


class ModuleCode(IntEnum):
    VERSION = 1
    TRIPLE = 2
    DATALAYOUT = 3
    ASM = 4
    SECTIONNAME = 5
    DEPLIB = 6
    GLOBALVAR = 7
    FUNCTION = 8
    ALIAS = 9
    PURGEVALS = 10
    GCNAME = 11


class AttributeCode(IntEnum):
    ENTRY_OLD = 1
    ENTRY = 2


class TypeCode(IntEnum):
    NUMENTRY = 1
    VOID = 2
    FLOAT = 3
    DOUBLE = 4
    LABEL = 5
    OPAQUE = 6
    INTEGER = 7
    POINTER = 8
    FUNCTION_OLD = 9
    HALF = 10
    ARRAY = 11
    VECTOR = 12
    X86_FP80 = 13
    FP128 = 14
    PPC_FP128 = 15
    METADATA = 16
    X86_MMX = 17
    STRUCT_ANON = 18
    STRUCT_NAME = 19
    STRUCT_NAMED = 20
    FUNCTION = 21


# In the legacy type block code 10 is a struct, not half
TYPE_CODE_STRUCT_OLD = 10

TST_CODE_ENTRY = 1


class ValueSymtabCode(IntEnum):
    ENTRY = 1
    BBENTRY = 2


class ConstantsCode(IntEnum):
    SETTYPE = 1
    NULL = 2
    UNDEF = 3
    INTEGER = 4
    WIDE_INTEGER = 5
    FLOAT = 6
    AGGREGATE = 7
    STRING = 8
    CSTRING = 9
    CE_BINOP = 10
    CE_CAST = 11
    CE_GEP = 12
    CE_SELECT = 13
    CE_EXTRACTELT = 14
    CE_INSERTELT = 15
    CE_SHUFFLEVEC = 16
    CE_CMP = 17
    INLINEASM = 18
    CE_SHUFVEC_EX = 19
    CE_INBOUNDS_GEP = 20
    BLOCKADDRESS = 21


class MetadataCode(IntEnum):
    STRING = 1
    NAME = 4
    KIND = 6
    NODE = 8
    FN_NODE = 9
    NAMED_NODE = 10
    ATTACHMENT = 11


class FunctionCode(IntEnum):
    DECLAREBLOCKS = 1
    INST_BINOP = 2
    INST_CAST = 3
    INST_GEP = 4
    INST_SELECT = 5
    INST_EXTRACTELT = 6
    INST_INSERTELT = 7
    INST_SHUFFLEVEC = 8
    INST_CMP = 9
    INST_RET = 10
    INST_BR = 11
    INST_SWITCH = 12
    INST_INVOKE = 13
    INST_UNWIND = 14
    INST_UNREACHABLE = 15
    INST_PHI = 16
    INST_ALLOCA = 19
    INST_LOAD = 20
    INST_VAARG = 23
    INST_STORE = 24
    INST_EXTRACTVAL = 26
    INST_INSERTVAL = 27
    INST_CMP2 = 28
    INST_VSELECT = 29
    INST_INBOUNDS_GEP = 30
    INST_INDIRECTBR = 31
    DEBUG_LOC_AGAIN = 33
    INST_CALL = 34
    DEBUG_LOC = 35
    INST_FENCE = 36
    INST_CMPXCHG = 37
    INST_ATOMICRMW = 38
    INST_RESUME = 39
    INST_LANDINGPAD = 40
    INST_LOADATOMIC = 41
    INST_STOREATOMIC = 42


class CastCode(IntEnum):
    TRUNC = 0
    ZEXT = 1
    SEXT = 2
    FPTOUI = 3
    FPTOSI = 4
    UITOFP = 5
    SITOFP = 6
    FPTRUNC = 7
    FPEXT = 8
    PTRTOINT = 9
    INTTOPTR = 10
    BITCAST = 11


class BinopCode(IntEnum):
    ADD = 0
    SUB = 1
    MUL = 2
    UDIV = 3
    SDIV = 4
    UREM = 5
    SREM = 6
    SHL = 7
    LSHR = 8
    ASHR = 9
    AND = 10
    OR = 11
    XOR = 12


# Flag bits carried by BINOP records
OBO_NO_UNSIGNED_WRAP = 0
OBO_NO_SIGNED_WRAP = 1
PEO_EXACT = 0


class RMWCode(IntEnum):
    XCHG = 0
    ADD = 1
    SUB = 2
    AND = 3
    NAND = 4
    OR = 5
    XOR = 6
    MAX = 7
    MIN = 8
    UMAX = 9
    UMIN = 10


class OrderingCode(IntEnum):
    NOTATOMIC = 0
    UNORDERED = 1
    MONOTONIC = 2
    ACQUIRE = 3
    RELEASE = 4
    ACQREL = 5
    SEQCST = 6


class SynchScopeCode(IntEnum):
    SINGLETHREAD = 0
    CROSSTHREAD = 1


class LandingPadClause(IntEnum):
    CATCH = 0
    FILTER = 1


# Linkage codes; 5/6 (dllimport/dllexport) and the later duplicates fold
# onto the linkages they alias.
LINKAGE_NAMES = {
    0: "external",
    1: "weak",
    2: "appending",
    3: "internal",
    4: "linkonce",
    5: "external",
    6: "external",
    7: "extern_weak",
    8: "common",
    9: "private",
    10: "weak_odr",
    11: "linkonce_odr",
    12: "available_externally",
    13: "private",
    14: "extern_weak",
    15: "linkonce_odr",
}

LINKAGE_CODES = {
    "external": 0,
    "weak": 1,
    "appending": 2,
    "internal": 3,
    "linkonce": 4,
    "extern_weak": 7,
    "common": 8,
    "private": 9,
    "weak_odr": 10,
    "linkonce_odr": 11,
    "available_externally": 12,
}

VISIBILITY_NAMES = {0: "default", 1: "hidden", 2: "protected"}
VISIBILITY_CODES = {name: code for code, name in VISIBILITY_NAMES.items()}

TLS_MODE_NAMES = {
    0: None,
    1: "generaldynamic",
    2: "localdynamic",
    3: "initialexec",
    4: "localexec",
}
TLS_MODE_CODES = {name: code for code, name in TLS_MODE_NAMES.items()}


def decode_linkage(code: int) -> str:
    return LINKAGE_NAMES.get(code, "external")


def decode_visibility(code: int) -> str:
    return VISIBILITY_NAMES.get(code, "default")


def decode_tls_mode(code: int):
    return TLS_MODE_NAMES.get(code, "generaldynamic")


def decode_alignment(code: int) -> int:
    """Alignment fields hold log2(align)+1, zero meaning unspecified."""
    return (1 << code) >> 1


def encode_alignment(align: int) -> int:
    if not align:
        return 0
    return align.bit_length()


def decode_sign_rotated(value: int) -> int:
    """Sign-rotated VBRs keep the sign in bit 0; a bare 1 stands for INT64_MIN."""
    if not value & 1:
        return value >> 1
    if value != 1:
        return -(value >> 1)
    return -(1 << 63)


def encode_sign_rotated(value: int) -> int:
    if value == -(1 << 63):
        return 1
    if value >= 0:
        return value << 1
    return ((-value) << 1) | 1
