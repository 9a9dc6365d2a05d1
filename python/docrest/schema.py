"""
The schema compiler: turning a resource's declarative field types into a JSON Schema.

A resource's schema may be declared in one of two ways.  The compact, declarative form maps each
field name to a logical type name::

    {
        "name":     "string",
        "price":    "number",
        "owner":    "id",
        "released": "date-time",
        "address":  { "street": "string", "zip": "integer" },   # a nested object
        "tags":     [ "string" ]                                # an array of strings
    }

Alternatively, a schema that already contains a ``properties`` object is taken to be
pre-formatted: each property is a property description (e.g. ``{"type": "integer",
"required": true}``).  Logical type names are recognized there as well, and a property-level
``required: true`` is converted into the JSON Schema ``required`` list of its parent.

Beyond the JSON Schema primitive types, three logical types are supported:

``id``
    a store identifier: a string of 24 hexadecimal characters, coerced to the store-native
    identifier type (:py:class:`bson.ObjectId`) wherever it is bound.
``date``, ``date-time``
    strings in ISO 8601 format.

Type names that are neither are passed through as opaque annotations that accept any value.
"""
import datetime
from collections import OrderedDict
from collections.abc import Mapping
from typing import List, Tuple

from jsonschema import Draft7Validator, FormatChecker
from jsonschema import exceptions as jsexc

from . import SchemaError

ID_TYPE = "id"
DATE_TYPE = "date"
DATETIME_TYPE = "date-time"
ID_PATTERN = r"^[0-9a-fA-F]{24}$"
ID_MESSAGE = "Expected a store identifier"

COERCE_KW = "x-coerce"
OPAQUE_KW = "x-type"

PRIMITIVES = set("string number integer boolean object array null".split())

def compile_type(name: str) -> Mapping:
    """
    compile a single type name into a JSON Schema rule
    """
    if name == ID_TYPE:
        return OrderedDict([("type", "string"), ("pattern", ID_PATTERN), (COERCE_KW, ID_TYPE)])
    if name in (DATE_TYPE, DATETIME_TYPE):
        return OrderedDict([("type", "string"), ("format", name)])
    if name in PRIMITIVES:
        return OrderedDict([("type", name)])
    return OrderedDict([(OPAQUE_KW, name)])

def _compile_decl(decl, field=None) -> Mapping:
    if isinstance(decl, str):
        return compile_type(decl)
    if isinstance(decl, Mapping):
        if "properties" in decl:
            return _compile_formatted(decl, field)
        return _compile_object(decl)
    if isinstance(decl, (list, tuple)):
        out = OrderedDict([("type", "array")])
        if len(decl) == 1:
            out["items"] = _compile_decl(decl[0], field)
        elif len(decl) > 1:
            out["items"] = [_compile_decl(d, field) for d in decl]
        return out

    raise SchemaError("%s: unsupported type declaration: %s" % (field or "(schema)", repr(decl)))

def _compile_object(decl: Mapping) -> Mapping:
    props = OrderedDict()
    for field, ftype in decl.items():
        props[field] = _compile_decl(ftype, field)
    return OrderedDict([("type", "object"), ("properties", props)])

def _compile_property(spec: Mapping, field: str) -> Mapping:
    out = OrderedDict((k, v) for k, v in spec.items() if k != "required" or not isinstance(v, bool))

    tp = out.get("type")
    if isinstance(tp, str) and tp not in PRIMITIVES:
        del out["type"]
        for k, v in compile_type(tp).items():
            out.setdefault(k, v)
    elif tp is not None and not isinstance(tp, (str, list)):
        raise SchemaError("%s: unsupported type declaration: %s" % (field, repr(tp)))

    if "properties" in out:
        out = _compile_formatted(out, field)
    if isinstance(out.get("items"), Mapping):
        out["items"] = _compile_property(out["items"], field)
    elif isinstance(out.get("items"), (list, tuple)):
        out["items"] = [_compile_property(i, field) for i in out["items"]]
    return out

def _compile_formatted(schema: Mapping, field: str=None) -> Mapping:
    props = schema.get("properties")
    if not isinstance(props, Mapping):
        raise SchemaError("%s: properties: not an object" % (field or "(schema)"))

    out = OrderedDict((k, v) for k, v in schema.items() if k != "properties")
    out.setdefault("type", "object")
    required = list(out.get("required", [])) if isinstance(out.get("required"), list) else []
    out["properties"] = OrderedDict()
    for name, spec in props.items():
        if isinstance(spec, Mapping) and "properties" not in spec and \
           any(k in spec for k in ("type", "required", "format", "items", "enum")):
            out["properties"][name] = _compile_property(spec, name)
            if spec.get("required") is True and name not in required:
                required.append(name)
        else:
            out["properties"][name] = _compile_decl(spec, name)

    if required:
        out["required"] = required
    elif "required" in out:
        del out["required"]
    return out

def compile_schema(decl) -> Mapping:
    """
    compile a resource schema declaration into a JSON Schema object.  None is returned if
    ``decl`` is None (i.e. the resource has no schema).
    :raises SchemaError:  if the declaration is malformed
    """
    if decl is None:
        return None
    if not isinstance(decl, Mapping):
        raise SchemaError("schema: not an object: " + repr(decl))
    if "properties" in decl:
        return _compile_formatted(decl)
    return _compile_object(decl)

def field_rule(schema: Mapping, field: str) -> Mapping:
    """
    return the compiled rule for a top-level field of an object schema, or None if the field
    is not declared.
    """
    if not schema:
        return None
    return schema.get("properties", {}).get(field)

def logical_type(rule: Mapping) -> str:
    """
    return the logical type name of a compiled rule: one of "id", "date", "date-time", or a
    JSON Schema type name.  None is returned if no type can be determined.
    """
    if not rule:
        return None
    if rule.get(COERCE_KW) == ID_TYPE:
        return ID_TYPE
    if rule.get("format") in (DATE_TYPE, DATETIME_TYPE):
        return rule["format"]
    tp = rule.get("type")
    if isinstance(tp, list):
        tp = tp[0] if tp else None
    return tp

def parse_datetime(value: str) -> datetime.datetime:
    """
    parse an ISO 8601 date-time string.  A trailing "Z" is accepted as UTC.
    :raises ValueError:  if the value is not a date-time
    """
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(value)

format_checker = FormatChecker(formats=())

@format_checker.checks(DATE_TYPE, raises=ValueError)
def _is_date(value):
    if isinstance(value, str):
        datetime.date.fromisoformat(value)
    return True

@format_checker.checks(DATETIME_TYPE, raises=ValueError)
def _is_datetime(value):
    if isinstance(value, str):
        if len(value) <= 10:
            raise ValueError("missing time component")
        parse_datetime(value)
    return True

class SchemaValidator:
    """
    a validator for documents against a compiled schema that reports only the first error
    """

    def __init__(self, schema: Mapping):
        try:
            Draft7Validator.check_schema(schema)
        except jsexc.SchemaError as ex:
            raise SchemaError("schema: not compilable: " + ex.message) from ex
        self.schema = schema
        self._validator = Draft7Validator(schema, format_checker=format_checker)

    def errors(self, doc) -> List[Tuple[str, str]]:
        """
        return all of the validation errors found in a document as a list of (field, message)
        pairs, ordered by field path.
        """
        out = []
        for err in sorted(self._validator.iter_errors(doc),
                          key=lambda e: ([str(p) for p in e.absolute_path], e.validator)):
            out.append(self._explain(err))
        return out

    def first_error(self, doc) -> Tuple[str, str]:
        """
        return the first validation error found in a document as a (field, message) pair, or
        None if the document is valid.
        """
        errs = self.errors(doc)
        return errs[0] if errs else None

    def _explain(self, err: jsexc.ValidationError) -> Tuple[str, str]:
        path = [str(p) for p in err.absolute_path]
        if err.validator == "required" and isinstance(err.instance, Mapping):
            missing = [p for p in err.validator_value if p not in err.instance]
            if missing:
                return (".".join(path + [missing[0]]), "is required")
        if isinstance(err.schema, Mapping) and err.schema.get(COERCE_KW) == ID_TYPE:
            return (".".join(path), ID_MESSAGE)
        return (".".join(path), err.message)
