#!/usr/bin/env python3
"""alon schema-to-C generator.

Input:  JSON file of named record schemas (borsh-style type notation).
Output: C header and source with bounds-checked deserialize/serialize
        routines, an encoded-size routine and a free routine per schema.
"""

from __future__ import annotations

import argparse
import dataclasses
import hashlib
import json
import math
import pathlib
import re
import struct
import sys
from typing import Any, Dict, List, Sequence, Tuple, Union

GENERATOR_VERSION = "0.1.0"
FORMAT_VERSION = "1"
SYMBOL_PREFIX = "alon"
DIGEST_PATTERN = re.compile(r"^// digest: ([0-9a-f]{64})$", re.MULTILINE)
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*", re.ASCII)

SCALAR_WIDTHS = {
    "u8": 1,
    "u16": 2,
    "u32": 4,
    "u64": 8,
    "f32": 4,
    "f64": 8,
}

C_SCALAR_TYPES = {
    "u8": "uint8_t",
    "u16": "uint16_t",
    "u32": "uint32_t",
    "u64": "uint64_t",
    "f32": "float",
    "f64": "double",
}

PACK_FORMATS = {
    "u8": "<B",
    "u16": "<H",
    "u32": "<I",
    "u64": "<Q",
    "f32": "<f",
    "f64": "<d",
}

LENGTH_PREFIX_WIDTH = 4
PRESENCE_WIDTH = 1
TAG_WIDTH = 1
MAX_ENUM_VARIANTS = 256

STATUS_CODES = (
    ("ALON_OK", "0"),
    ("ALON_EBUFFER", "(-1)"),
    ("ALON_ENOMEM", "(-2)"),
    ("ALON_EINVAL", "(-3)"),
)

C_KEYWORDS = frozenset(
    {
        "auto", "break", "case", "char", "const", "continue", "default", "do",
        "double", "else", "enum", "extern", "float", "for", "goto", "if",
        "inline", "int", "long", "register", "restrict", "return", "short",
        "signed", "sizeof", "static", "struct", "switch", "typedef", "union",
        "unsigned", "void", "volatile", "while", "_Alignas", "_Alignof",
        "_Atomic", "_Bool", "_Complex", "_Generic", "_Imaginary", "_Noreturn",
        "_Static_assert", "_Thread_local",
    }
)


class SchemaError(RuntimeError):
    def __init__(self, message: str, where: str = "") -> None:
        super().__init__(message)
        self.where = where


class UnsupportedSchemaError(SchemaError):
    pass


# Schema model


@dataclasses.dataclass(frozen=True)
class Scalar:
    kind: str


@dataclasses.dataclass(frozen=True)
class Text:
    pass


@dataclasses.dataclass(frozen=True)
class FixedBytes:
    size: int


@dataclasses.dataclass(frozen=True)
class FixedArray:
    element: "FieldType"
    count: int


@dataclasses.dataclass(frozen=True)
class Option:
    inner: "FieldType"


@dataclasses.dataclass(frozen=True)
class Field:
    name: str
    type: "FieldType"


@dataclasses.dataclass(frozen=True)
class Struct:
    fields: Tuple[Field, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclasses.dataclass(frozen=True)
class Enum:
    variants: Tuple[Field, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "variants", tuple(self.variants))


FieldType = Union[Scalar, Text, FixedBytes, FixedArray, Option, Struct, Enum]


def fixed_width(ftype: FieldType) -> int | None:
    if isinstance(ftype, Scalar):
        return SCALAR_WIDTHS[ftype.kind]
    if isinstance(ftype, FixedBytes):
        return ftype.size
    if isinstance(ftype, FixedArray):
        element_width = fixed_width(ftype.element)
        if element_width is None:
            return None
        return element_width * ftype.count
    return None


def is_text_array(ftype: FieldType) -> bool:
    return isinstance(ftype, FixedArray) and isinstance(ftype.element, Text)


def forces_dynamic(ftype: FieldType) -> bool:
    return isinstance(ftype, (Text, Option, Enum)) or is_text_array(ftype)


def is_identifier(name: str) -> bool:
    return IDENTIFIER_PATTERN.fullmatch(name) is not None and name not in C_KEYWORDS


def validate_schema(schema: FieldType, where: str = "definition") -> None:
    if isinstance(schema, Enum):
        raise UnsupportedSchemaError("top-level enum schemas are not supported by the raw deserializer", where)
    if not isinstance(schema, Struct):
        raise SchemaError("top-level schema must be a struct", where)
    validate_members(schema.fields, f"{where}.fields", "struct", "field")


def validate_members(members: Sequence[Field], where: str, container: str, noun: str) -> None:
    if not members:
        raise SchemaError(f"{container} must declare at least one {noun}", where)

    seen: set[str] = set()
    for index, member in enumerate(members):
        member_where = f"{where}[{index}]"
        if not isinstance(member.name, str) or not is_identifier(member.name):
            raise SchemaError(f"invalid {noun} name {member.name!r}", member_where)
        if member.name in seen:
            raise SchemaError(f"duplicate {noun} name '{member.name}'", member_where)
        seen.add(member.name)
        validate_type(member.type, member_where)


def validate_type(ftype: FieldType, where: str) -> None:
    if isinstance(ftype, Scalar):
        if ftype.kind not in SCALAR_WIDTHS:
            raise SchemaError(f"unknown scalar kind '{ftype.kind}'", where)
    elif isinstance(ftype, Text):
        return
    elif isinstance(ftype, FixedBytes):
        if ftype.size < 1:
            raise SchemaError("fixed byte buffers must hold at least one byte", where)
    elif isinstance(ftype, FixedArray):
        if ftype.count < 1:
            raise SchemaError("fixed arrays must hold at least one element", where)
        validate_type(ftype.element, where)
        if not isinstance(ftype.element, Text) and fixed_width(ftype.element) is None:
            raise UnsupportedSchemaError("array elements must be strings or fixed-width types", where)
    elif isinstance(ftype, Option):
        validate_type(ftype.inner, where)
        if not isinstance(ftype.inner, Text) and fixed_width(ftype.inner) is None:
            raise UnsupportedSchemaError("optional values must be strings or fixed-width types", where)
    elif isinstance(ftype, Struct):
        validate_members(ftype.fields, f"{where}.fields", "struct", "field")
    elif isinstance(ftype, Enum):
        if len(ftype.variants) > MAX_ENUM_VARIANTS:
            raise SchemaError(f"enum has more than {MAX_ENUM_VARIANTS} variants", where)
        validate_members(ftype.variants, f"{where}.values", "enum", "variant")
    else:
        raise SchemaError(f"unknown field type {ftype!r}", where)


# Scope resolution and layout state


def resolve(scope: Sequence[str], field_name: str) -> str:
    """Render the member access for ``field_name`` under ``scope``.

    The first scope entry is the pointer parameter of the generated function;
    later entries are nested member names.
    """
    if not scope:
        raise ValueError("scope must start with the base parameter name")
    base = scope[0]
    nested = "".join(f"{segment}." for segment in scope[1:])
    return f"{base}->{nested}{field_name}"


@dataclasses.dataclass(frozen=True)
class LayoutState:
    """Offset tracking for one generated function.

    While ``dynamic`` is false every field sits at ``static_offset``. The
    first variable-length or presence-dependent field flips ``dynamic`` and
    seeds the runtime cursor with ``static_offset``, which then stays frozen
    as the width of the static prefix.
    """

    scope: Tuple[str, ...]
    static_offset: int = 0
    dynamic: bool = False

    def address(self, field_name: str) -> str:
        return resolve(self.scope, field_name)

    def advance(self, width: int) -> "LayoutState":
        if self.dynamic:
            return self
        return dataclasses.replace(self, static_offset=self.static_offset + width)

    def enter(self, name: str) -> "LayoutState":
        return dataclasses.replace(self, scope=self.scope + (name,))

    def with_scope(self, scope: Sequence[str]) -> "LayoutState":
        return dataclasses.replace(self, scope=tuple(scope))


def pad(indent: int) -> str:
    return "  " * indent


def begin_dynamic(state: LayoutState, indent: int) -> Tuple[List[str], LayoutState]:
    if state.dynamic:
        return [], state
    line = f"{pad(indent)}uint64_t cursor = {state.static_offset};"
    return [line], dataclasses.replace(state, dynamic=True)


# Field emitters


def emit_copy(
    address: str, width: int, state: LayoutState, serialize: bool, indent: int
) -> Tuple[List[str], LayoutState]:
    p = pad(indent)
    lines: List[str] = []
    if state.dynamic:
        lines.append(f"{p}if (cursor + {width} > len) return ALON_EBUFFER;")
        position = "buf + cursor"
    elif state.static_offset == 0:
        position = "buf"
    else:
        position = f"buf + {state.static_offset}"

    if serialize:
        lines.append(f"{p}sol_memcpy({position}, &{address}, {width});")
    else:
        lines.append(f"{p}sol_memcpy(&{address}, {position}, {width});")

    if state.dynamic:
        lines.append(f"{p}cursor += {width};")
        return lines, state
    return lines, state.advance(width)


def emit_text(address: str, serialize: bool, indent: int) -> List[str]:
    p = pad(indent)
    q = pad(indent + 1)
    width = LENGTH_PREFIX_WIDTH
    if serialize:
        return [
            f"{p}{{",
            f"{q}uint32_t n = (uint32_t)sol_strlen({address});",
            f"{q}if (cursor + {width} > len) return ALON_EBUFFER;",
            f"{q}sol_memcpy(buf + cursor, &n, {width});",
            f"{q}cursor += {width};",
            f"{q}if (cursor + n > len) return ALON_EBUFFER;",
            f"{q}sol_memcpy(buf + cursor, {address}, n);",
            f"{q}cursor += n;",
            f"{p}}}",
        ]
    return [
        f"{p}{{",
        f"{q}uint32_t n;",
        f"{q}if (cursor + {width} > len) return ALON_EBUFFER;",
        f"{q}sol_memcpy(&n, buf + cursor, {width});",
        f"{q}cursor += {width};",
        f"{q}if (cursor + n > len) return ALON_EBUFFER;",
        f"{q}char *s = (char *)sol_calloc((uint64_t)n + 1, 1);",
        f"{q}if (s == NULL) return ALON_ENOMEM;",
        f"{q}sol_memcpy(s, buf + cursor, n);",
        f"{q}s[n] = '\\0';",
        f"{q}{address} = s;",
        f"{q}cursor += n;",
        f"{p}}}",
    ]


def emit_option(address: str, ftype: Option, state: LayoutState, serialize: bool, indent: int) -> List[str]:
    p = pad(indent)
    q = pad(indent + 1)
    holds_text = isinstance(ftype.inner, Text)

    def payload(payload_indent: int) -> List[str]:
        if holds_text:
            return emit_text(address, serialize, payload_indent)
        value_lines, _ = emit_copy(f"{address}.value", fixed_width(ftype.inner), state, serialize, payload_indent)
        return value_lines

    if serialize:
        present = f"{address} != NULL" if holds_text else f"{address}.present"
        return [
            f"{p}if (cursor + {PRESENCE_WIDTH} > len) return ALON_EBUFFER;",
            f"{p}if ({present}) {{",
            f"{q}buf[cursor] = 1;",
            f"{q}cursor += {PRESENCE_WIDTH};",
            *payload(indent + 1),
            f"{p}}} else {{",
            f"{q}buf[cursor] = 0;",
            f"{q}cursor += {PRESENCE_WIDTH};",
            f"{p}}}",
        ]

    r = pad(indent + 2)
    lines = [
        f"{p}{{",
        f"{q}if (cursor + {PRESENCE_WIDTH} > len) return ALON_EBUFFER;",
        f"{q}uint8_t flag = buf[cursor];",
        f"{q}cursor += {PRESENCE_WIDTH};",
        f"{q}if (flag != 0) {{",
        *payload(indent + 2),
    ]
    if holds_text:
        lines.extend([f"{q}}} else {{", f"{r}{address} = NULL;"])
    else:
        lines.extend([f"{r}{address}.present = 1;", f"{q}}} else {{", f"{r}{address}.present = 0;"])
    lines.extend([f"{q}}}", f"{p}}}"])
    return lines


def emit_enum(field: Field, state: LayoutState, serialize: bool, indent: int) -> List[str]:
    p = pad(indent)
    q = pad(indent + 1)
    r = pad(indent + 2)
    tag = f"{state.address(field.name)}.tag"
    lines, _ = emit_copy(tag, TAG_WIDTH, state, serialize, indent)
    lines.append(f"{p}switch ({tag}) {{")

    variant_state = state.enter(field.name)
    for index, variant in enumerate(field.type.variants):
        lines.append(f"{q}case {index}: {{")
        variant_lines, _ = emit_field(variant, variant_state, serialize, indent + 2)
        lines.extend(variant_lines)
        lines.append(f"{r}break;")
        lines.append(f"{q}}}")

    lines.append(f"{q}default:")
    lines.append(f"{r}return ALON_EINVAL;")
    lines.append(f"{p}}}")
    return lines


def emit_field(field: Field, state: LayoutState, serialize: bool, indent: int) -> Tuple[List[str], LayoutState]:
    ftype = field.type
    if isinstance(ftype, Struct):
        lines, inner = emit_fields(ftype.fields, state.enter(field.name), serialize, indent)
        return lines, inner.with_scope(state.scope)

    lines: List[str] = []
    if forces_dynamic(ftype):
        lines, state = begin_dynamic(state, indent)
    address = state.address(field.name)

    if isinstance(ftype, Enum):
        lines.extend(emit_enum(field, state, serialize, indent))
    elif isinstance(ftype, Text):
        lines.extend(emit_text(address, serialize, indent))
    elif is_text_array(ftype):
        lines.append(f"{pad(indent)}for (uint64_t i = 0; i < {ftype.count}; i++) {{")
        lines.extend(emit_text(f"{address}[i]", serialize, indent + 1))
        lines.append(f"{pad(indent)}}}")
    elif isinstance(ftype, Option):
        lines.extend(emit_option(address, ftype, state, serialize, indent))
    else:
        width = fixed_width(ftype)
        if width is None:
            raise UnsupportedSchemaError(f"field '{field.name}' has no fixed wire width", field.name)
        copy_lines, state = emit_copy(address, width, state, serialize, indent)
        lines.extend(copy_lines)
    return lines, state


def emit_fields(
    fields: Sequence[Field], state: LayoutState, serialize: bool, indent: int
) -> Tuple[List[str], LayoutState]:
    lines: List[str] = []
    for field in fields:
        field_lines, state = emit_field(field, state, serialize, indent)
        lines.extend(field_lines)
    return lines, state


def render_codec_function(prototype: str, static_prefix: int, body: Sequence[str]) -> str:
    lines = [f"{prototype} {{"]
    if static_prefix:
        lines.append(f"  if (len < {static_prefix}) return ALON_EBUFFER;")
    lines.extend(body)
    lines.append("  return ALON_OK;")
    lines.append("}")
    return "\n".join(lines)


def emit_deserializer(name: str, schema: Struct) -> str:
    validate_schema(schema)
    body, state = emit_fields(schema.fields, LayoutState(scope=("out",)), serialize=False, indent=1)
    return render_codec_function(function_prototypes(name)["deserialize"], state.static_offset, body)


def emit_serializer(name: str, schema: Struct) -> str:
    validate_schema(schema)
    body, state = emit_fields(schema.fields, LayoutState(scope=("in",)), serialize=True, indent=1)
    return render_codec_function(function_prototypes(name)["serialize"], state.static_offset, body)


# Lifecycle and size emitters


def emit_lifecycle_fields(fields: Sequence[Field], scope: Sequence[str], indent: int) -> List[str]:
    p = pad(indent)
    lines: List[str] = []
    for field in fields:
        ftype = field.type
        address = resolve(scope, field.name)
        if isinstance(ftype, Text) or (isinstance(ftype, Option) and isinstance(ftype.inner, Text)):
            lines.append(f"{p}sol_free({address});")
        elif is_text_array(ftype):
            for index in range(ftype.count):
                lines.append(f"{p}sol_free({address}[{index}]);")
        elif isinstance(ftype, Struct):
            lines.extend(emit_lifecycle_fields(ftype.fields, tuple(scope) + (field.name,), indent))
        elif isinstance(ftype, Enum):
            cases: List[str] = []
            for index, variant in enumerate(ftype.variants):
                variant_lines = emit_lifecycle_fields([variant], tuple(scope) + (field.name,), indent + 2)
                if variant_lines:
                    cases.append(f"{pad(indent + 1)}case {index}: {{")
                    cases.extend(variant_lines)
                    cases.append(f"{pad(indent + 2)}break;")
                    cases.append(f"{pad(indent + 1)}}}")
            if cases:
                lines.append(f"{p}switch ({address}.tag) {{")
                lines.extend(cases)
                lines.append(f"{pad(indent + 1)}default:")
                lines.append(f"{pad(indent + 2)}break;")
                lines.append(f"{p}}}")
    return lines


def emit_lifecycle(name: str, schema: Struct) -> str:
    validate_schema(schema)
    body = emit_lifecycle_fields(schema.fields, ("x",), 1)
    lines = [f"{function_prototypes(name)['free']} {{"]
    lines.extend(body if body else ["  (void)x;"])
    lines.append("}")
    return "\n".join(lines)


def emit_size_fields(fields: Sequence[Field], scope: Sequence[str], indent: int) -> Tuple[List[str], int]:
    p = pad(indent)
    lines: List[str] = []
    constant = 0
    for field in fields:
        ftype = field.type
        address = resolve(scope, field.name)
        width = fixed_width(ftype)
        if width is not None:
            constant += width
        elif isinstance(ftype, Text):
            constant += LENGTH_PREFIX_WIDTH
            lines.append(f"{p}size += sol_strlen({address});")
        elif is_text_array(ftype):
            constant += LENGTH_PREFIX_WIDTH * ftype.count
            lines.append(f"{p}for (uint64_t i = 0; i < {ftype.count}; i++) size += sol_strlen({address}[i]);")
        elif isinstance(ftype, Option):
            constant += PRESENCE_WIDTH
            if isinstance(ftype.inner, Text):
                lines.append(f"{p}if ({address} != NULL) size += {LENGTH_PREFIX_WIDTH} + sol_strlen({address});")
            else:
                lines.append(f"{p}if ({address}.present) size += {fixed_width(ftype.inner)};")
        elif isinstance(ftype, Struct):
            inner_lines, inner_constant = emit_size_fields(ftype.fields, tuple(scope) + (field.name,), indent)
            lines.extend(inner_lines)
            constant += inner_constant
        elif isinstance(ftype, Enum):
            constant += TAG_WIDTH
            lines.append(f"{p}switch ({address}.tag) {{")
            for index, variant in enumerate(ftype.variants):
                variant_lines, variant_constant = emit_size_fields(
                    [variant], tuple(scope) + (field.name,), indent + 2
                )
                lines.append(f"{pad(indent + 1)}case {index}: {{")
                if variant_constant:
                    lines.append(f"{pad(indent + 2)}size += {variant_constant};")
                lines.extend(variant_lines)
                lines.append(f"{pad(indent + 2)}break;")
                lines.append(f"{pad(indent + 1)}}}")
            lines.append(f"{pad(indent + 1)}default:")
            lines.append(f"{pad(indent + 2)}break;")
            lines.append(f"{p}}}")
    return lines, constant


def emit_size(name: str, schema: Struct) -> str:
    validate_schema(schema)
    body, constant = emit_size_fields(schema.fields, ("in",), 1)
    lines = [f"{function_prototypes(name)['size']} {{"]
    if not body:
        lines.append("  (void)in;")
        lines.append(f"  return {constant};")
    else:
        lines.append(f"  uint64_t size = {constant};")
        lines.extend(body)
        lines.append("  return size;")
    lines.append("}")
    return "\n".join(lines)


# Struct and signature rendering


def struct_name(name: str) -> str:
    return f"{SYMBOL_PREFIX}_{name}"


def function_prototypes(name: str) -> Dict[str, str]:
    record = f"struct {struct_name(name)}"
    symbol = struct_name(name)
    return {
        "deserialize": f"int {symbol}_deserialize(const uint8_t *buf, uint64_t len, {record} *out)",
        "serialize": f"int {symbol}_serialize(const {record} *in, uint8_t *buf, uint64_t len)",
        "size": f"uint64_t {symbol}_size(const {record} *in)",
        "free": f"void {symbol}_free({record} *x)",
    }


def c_declarator(ftype: FieldType, name: str, where: str) -> str:
    if isinstance(ftype, Scalar):
        return f"{C_SCALAR_TYPES[ftype.kind]} {name}"
    if isinstance(ftype, Text):
        return f"char *{name}"
    if isinstance(ftype, FixedBytes):
        return f"uint8_t {name}[{ftype.size}]"
    if isinstance(ftype, FixedArray):
        if isinstance(ftype.element, Text):
            return f"char *{name}[{ftype.count}]"
        return c_declarator(ftype.element, f"{name}[{ftype.count}]", where)
    if isinstance(ftype, Option):
        if isinstance(ftype.inner, Text):
            return f"char *{name}"
        value = c_declarator(ftype.inner, "value", where)
        return f"struct {{\n    uint8_t present;\n    {value};\n  }} {name}"
    kind = "struct" if isinstance(ftype, Struct) else "enum"
    raise UnsupportedSchemaError(
        f"field '{name}' has a nested {kind} type; nested composite storage is not supported", where
    )


def render_struct_decl(name: str, schema: Struct, where: str = "definition") -> str:
    lines = [f"struct {struct_name(name)} {{"]
    for index, field in enumerate(schema.fields):
        lines.append(f"  {c_declarator(field.type, field.name, f'{where}.fields[{index}]')};")
    lines.append("};")
    return "\n".join(lines)


def render_declarations(name: str, schema: Struct, where: str = "definition") -> str:
    prototypes = function_prototypes(name)
    lines = [render_struct_decl(name, schema, where), ""]
    for key in ("deserialize", "serialize", "size", "free"):
        lines.append(f"{prototypes[key]};")
    return "\n".join(lines)


@dataclasses.dataclass
class CompiledSchema:
    name: str
    declarations: str
    deserialize_body: str
    serialize_body: str
    size_body: str
    lifecycle_body: str


def compile_schema(name: str, schema: FieldType, where: str = "definition") -> CompiledSchema:
    if not is_identifier(name):
        raise SchemaError(f"invalid schema name {name!r}", where)
    validate_schema(schema, where)
    declarations = render_declarations(name, schema, where)
    return CompiledSchema(
        name=name,
        declarations=declarations,
        deserialize_body=emit_deserializer(name, schema),
        serialize_body=emit_serializer(name, schema),
        size_body=emit_size(name, schema),
        lifecycle_body=emit_lifecycle(name, schema),
    )


# Schema files and reference encoding


@dataclasses.dataclass
class SchemaCase:
    prefix: str
    schema: FieldType
    definition: Any
    examples: List[Any]
    where: str


def is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_type(notation: Any, where: str) -> FieldType:
    if isinstance(notation, str):
        if notation in SCALAR_WIDTHS:
            return Scalar(notation)
        if notation == "string":
            return Text()
        raise SchemaError(f"unknown type '{notation}'", where)

    if isinstance(notation, list):
        if len(notation) == 1 and is_count(notation[0]):
            return FixedBytes(notation[0])
        if len(notation) == 2 and is_count(notation[1]):
            return FixedArray(parse_type(notation[0], f"{where}[0]"), notation[1])
        if len(notation) == 1:
            raise UnsupportedSchemaError("variable-length arrays are not supported", where)
        raise SchemaError("expected [size] or [element, count]", where)

    if isinstance(notation, dict):
        kind = notation.get("kind")
        if kind == "option":
            if "type" not in notation:
                raise SchemaError("option type requires 'type'", where)
            return Option(parse_type(notation["type"], f"{where}.type"))
        if kind == "struct":
            return Struct(parse_members(notation.get("fields"), f"{where}.fields"))
        if kind == "enum":
            return Enum(parse_members(notation.get("values"), f"{where}.values"))
        raise SchemaError(f"unknown type kind {kind!r}", where)

    raise SchemaError(f"unsupported type notation {notation!r}", where)


def parse_members(members: Any, where: str) -> Tuple[Field, ...]:
    if not isinstance(members, list):
        raise SchemaError("expected a list of [name, type] pairs", where)

    parsed: List[Field] = []
    for index, member in enumerate(members):
        member_where = f"{where}[{index}]"
        if not isinstance(member, list) or len(member) != 2 or not isinstance(member[0], str):
            raise SchemaError("expected [name, type] pair", member_where)
        parsed.append(Field(member[0], parse_type(member[1], member_where)))
    return tuple(parsed)


def parse_schema_file(text: str) -> List[SchemaCase]:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaError(f"invalid JSON: {e.msg}", f"line {e.lineno} column {e.colno}") from e

    if not isinstance(document, dict) or not isinstance(document.get("cases"), list):
        raise SchemaError("expected an object with a 'cases' list", "$")

    cases: List[SchemaCase] = []
    seen: set[str] = set()
    for index, entry in enumerate(document["cases"]):
        where = f"cases[{index}]"
        if not isinstance(entry, dict):
            raise SchemaError("expected a case object", where)

        prefix = entry.get("prefix")
        if not isinstance(prefix, str) or not is_identifier(prefix):
            raise SchemaError("expected an identifier 'prefix'", f"{where}.prefix")
        if prefix in seen:
            raise SchemaError(f"duplicate prefix '{prefix}'", f"{where}.prefix")
        seen.add(prefix)

        definition = entry.get("definition")
        schema = parse_type(definition, f"{where}.definition")
        examples = entry.get("examples", [])
        if not isinstance(examples, list):
            raise SchemaError("expected a list of examples", f"{where}.examples")
        cases.append(SchemaCase(prefix, schema, definition, examples, where))

    return cases


def encode_value(ftype: FieldType, value: Any, where: str = "value") -> bytes:
    """Reference wire encoding of ``value``, used for golden test vectors."""
    if isinstance(ftype, Scalar):
        if ftype.kind.startswith("u"):
            limit = 1 << (8 * SCALAR_WIDTHS[ftype.kind])
            if not is_count(value) or not 0 <= value < limit:
                raise SchemaError(f"expected {ftype.kind} value, got {value!r}", where)
        elif isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SchemaError(f"expected {ftype.kind} value, got {value!r}", where)
        elif not math.isfinite(value):
            raise SchemaError(f"{ftype.kind} value {value!r} is not finite", where)
        try:
            return struct.pack(PACK_FORMATS[ftype.kind], value)
        except (OverflowError, struct.error) as e:
            raise SchemaError(f"{ftype.kind} value {value!r} is not representable", where) from e

    if isinstance(ftype, Text):
        if not isinstance(value, str):
            raise SchemaError(f"expected string, got {value!r}", where)
        if "\x00" in value:
            raise SchemaError("strings may not contain NUL characters", where)
        data = value.encode("utf-8")
        return struct.pack("<I", len(data)) + data

    if isinstance(ftype, FixedBytes):
        if (
            not isinstance(value, list)
            or len(value) != ftype.size
            or not all(is_count(b) and 0 <= b < 256 for b in value)
        ):
            raise SchemaError(f"expected {ftype.size} byte values", where)
        return bytes(value)

    if isinstance(ftype, FixedArray):
        if not isinstance(value, list) or len(value) != ftype.count:
            raise SchemaError(f"expected {ftype.count} elements", where)
        return b"".join(encode_value(ftype.element, item, f"{where}[{i}]") for i, item in enumerate(value))

    if isinstance(ftype, Option):
        if value is None:
            return b"\x00"
        return b"\x01" + encode_value(ftype.inner, value, where)

    if isinstance(ftype, Struct):
        if not isinstance(value, dict):
            raise SchemaError(f"expected object, got {value!r}", where)
        pieces: List[bytes] = []
        for field in ftype.fields:
            if field.name not in value:
                raise SchemaError(f"missing field '{field.name}'", where)
            pieces.append(encode_value(field.type, value[field.name], f"{where}.{field.name}"))
        return b"".join(pieces)

    if isinstance(ftype, Enum):
        if not isinstance(value, dict) or len(value) != 1:
            raise SchemaError("expected an object with exactly one variant key", where)
        (variant_name, payload), = value.items()
        for index, variant in enumerate(ftype.variants):
            if variant.name == variant_name:
                return bytes([index]) + encode_value(variant.type, payload, f"{where}.{variant_name}")
        raise SchemaError(f"unknown enum variant '{variant_name}'", where)

    raise SchemaError(f"unknown field type {ftype!r}", where)


def build_vectors(cases: Sequence[SchemaCase]) -> Dict[str, Any]:
    vectors: Dict[str, Any] = {}
    for case in cases:
        examples = []
        for index, example in enumerate(case.examples):
            output = encode_value(case.schema, example, f"{case.where}.examples[{index}]")
            examples.append({"input": example, "output": list(output)})
        vectors[case.prefix] = {"definition": case.definition, "examples": examples}
    return vectors


# File rendering


def render_prelude(solana: bool) -> List[str]:
    lines = ["#pragma once", ""]
    if solana:
        lines.append("#include <solana_sdk.h>")
    else:
        lines.extend(
            [
                "#include <stdint.h>",
                "#include <stdlib.h>",
                "#include <string.h>",
                "",
                "#define sol_memcpy memcpy",
                "#define sol_calloc calloc",
                "#define sol_strlen strlen",
                "#define sol_free free",
            ]
        )
    lines.append("")
    for macro, value in STATUS_CODES:
        lines.append(f"#define {macro} {value}")
    return lines


def host_adapter_prototypes(name: str) -> Dict[str, str]:
    record = f"struct {struct_name(name)}"
    symbol = struct_name(name)
    return {
        "deserialize_account": f"int {symbol}_deserialize_account(const SolAccountInfo *account, {record} *out)",
        "serialize_account": f"int {symbol}_serialize_account(const {record} *in, SolAccountInfo *account)",
        "deserialize_instruction": f"int {symbol}_deserialize_instruction(const SolParameters *params, {record} *out)",
    }


def render_host_adapters(name: str) -> str:
    prototypes = host_adapter_prototypes(name)
    symbol = struct_name(name)
    bodies = [
        (prototypes["deserialize_account"], f"{symbol}_deserialize(account->data, account->data_len, out)"),
        (prototypes["serialize_account"], f"{symbol}_serialize(in, account->data, account->data_len)"),
        (prototypes["deserialize_instruction"], f"{symbol}_deserialize(params->data, params->data_len, out)"),
    ]
    return "\n\n".join(f"{prototype} {{\n  return {call};\n}}" for prototype, call in bodies)


@dataclasses.dataclass
class RenderedOutputs:
    header: str
    source: str
    vectors: str | None = None


def compute_file_digest(source_bytes: bytes, options: Sequence[str]) -> str:
    h = hashlib.sha256()
    h.update(GENERATOR_VERSION.encode("utf-8"))
    h.update(b"\x00")
    h.update(FORMAT_VERSION.encode("utf-8"))
    h.update(b"\x00")
    for option in options:
        h.update(option.encode("utf-8"))
        h.update(b"\x00")
    h.update(source_bytes)
    return h.hexdigest()


def render_outputs(
    source_path: pathlib.Path,
    source_text: str,
    source_bytes: bytes,
    header_name: str,
    solana: bool = False,
    vectors: bool = False,
) -> RenderedOutputs:
    cases = parse_schema_file(source_text)
    compiled = [compile_schema(case.prefix, case.schema, f"{case.where}.definition") for case in cases]

    digest = compute_file_digest(source_bytes, [header_name, "solana" if solana else "libc"])
    source_label = str(source_path)
    try:
        source_label = str(source_path.resolve().relative_to(pathlib.Path.cwd().resolve()))
    except ValueError:
        source_label = str(source_path.resolve())

    meta = (
        "// alon-generated\n"
        f"// source: {source_label}\n"
        f"// generator_version: {GENERATOR_VERSION}\n"
        f"// format_version: {FORMAT_VERSION}\n"
        f"// digest: {digest}\n\n"
    )

    header_parts = ["\n".join(render_prelude(solana))]
    source_parts = [f'#include "{header_name}"']
    for unit in compiled:
        declarations = unit.declarations
        if solana:
            adapters = host_adapter_prototypes(unit.name)
            declarations += "\n" + "\n".join(f"{prototype};" for prototype in adapters.values())
        header_parts.append(declarations)
        source_parts.extend([unit.deserialize_body, unit.serialize_body, unit.size_body, unit.lifecycle_body])
        if solana:
            source_parts.append(render_host_adapters(unit.name))

    rendered = RenderedOutputs(
        header=meta + "\n\n".join(header_parts) + "\n",
        source=meta + "\n\n".join(source_parts) + "\n",
    )
    if vectors:
        try:
            rendered.vectors = json.dumps(build_vectors(cases), indent=2, allow_nan=False) + "\n"
        except ValueError as e:
            raise SchemaError(f"examples are not representable as JSON: {e}", "cases") from e
    return rendered


def extract_existing_digest(text: str) -> str | None:
    m = DIGEST_PATTERN.search(text)
    if not m:
        return None
    return m.group(1)


def fail(path: pathlib.Path, error: SchemaError) -> None:
    location = f" {error.where}:" if error.where else ""
    print(f"{path}: error:{location} {error}", file=sys.stderr)


def run(args: argparse.Namespace) -> int:
    in_path = pathlib.Path(args.input)
    header_path = pathlib.Path(args.header)
    source_path = pathlib.Path(args.source)

    if not in_path.exists():
        print(f"error: input file does not exist: {in_path}", file=sys.stderr)
        return 1

    source_bytes = in_path.read_bytes()
    source_text = source_bytes.decode("utf-8")

    try:
        rendered = render_outputs(
            in_path,
            source_text,
            source_bytes,
            header_path.name,
            solana=args.solana,
            vectors=args.vectors is not None,
        )
    except SchemaError as e:
        fail(in_path, e)
        return 1

    targets: List[Tuple[pathlib.Path, str]] = [(header_path, rendered.header), (source_path, rendered.source)]
    if args.vectors is not None and rendered.vectors is not None:
        targets.append((pathlib.Path(args.vectors), rendered.vectors))

    if args.check:
        status = 0
        for out_path, content in targets:
            if not out_path.exists():
                print(f"{out_path} is missing (run generator)", file=sys.stderr)
                status = 1
                continue
            if out_path.read_text(encoding="utf-8") != content:
                print(f"{out_path} is out of date (run generator)", file=sys.stderr)
                status = 1
                continue
            print(f"up-to-date: {out_path}")
        return status

    for out_path, content in targets:
        if out_path.exists():
            existing = out_path.read_text(encoding="utf-8")
            old_digest = extract_existing_digest(existing)
            new_digest = extract_existing_digest(content)
            if old_digest and new_digest and old_digest == new_digest:
                print(f"unchanged: {out_path}")
                continue
            if existing == content:
                print(f"unchanged: {out_path}")
                continue

        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(content, encoding="utf-8")
        print(f"generated: {out_path}")
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate alon C codecs from JSON record schemas")
    parser.add_argument("--in", dest="input", required=True, help="Input schema JSON file")
    parser.add_argument("--header", required=True, help="Output C header")
    parser.add_argument("--source", required=True, help="Output C source")
    parser.add_argument("--vectors", help="Output JSON file of golden test vectors from the schema examples")
    parser.add_argument("--solana", action="store_true", help="Target the Solana SDK and emit account/instruction adapters")
    parser.add_argument("--check", action="store_true", help="Check outputs are up to date")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    return run(build_arg_parser().parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
