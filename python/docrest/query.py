"""
The query compiler: turning a read request into a store-level query plan.

A read request on a resource can be shaped by the following query parameters:

``fields``
    a comma-delimited list of the fields to include in the returned documents.  The store key,
    ``_id``, is excluded unless it is listed.
``sort``
    a comma-delimited list of ``field[:asc|desc]`` tokens
``limit``
    the maximum number of documents to return (0 for no limit)
``offset``
    the number of leading matched documents to skip
``q`` (configurable)
    a free-text phrase to search for

In addition, the URL path can select documents either by identifier (``R/{id}``) or by
field values (``R/_/{field}/{value}[/{field}/{value}...]``).  Malformed parameters never cause
an error; they are ignored in favor of the resource's defaults.
"""
import logging
from collections import OrderedDict, namedtuple
from collections.abc import Mapping
from typing import List

from . import SYSTEM_NAME
from .resources import ResourceDefinition
from .schema import field_rule, logical_type, parse_datetime, ID_TYPE, DATETIME_TYPE, COERCE_KW
from .store.base import native_id, KEY_PROP

log = logging.getLogger(SYSTEM_NAME).getChild("query")

DEF_TEXT_PARAM = "q"

QueryPlan = namedtuple("QueryPlan", "filter projection sort limit skip")

def _to_int(value):
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        pass
    try:
        return int(float(value))
    except (ValueError, TypeError, OverflowError):
        return None

def coerce_value(rule: Mapping, value: str):
    """
    convert a string value from a URL into the type declared by a field rule.  Identifiers
    become store-native identifiers, integers and numbers become numbers, and date-times
    become datetimes.
    :raises ValueError:  if the value cannot be converted to the declared type
    """
    ltype = logical_type(rule)
    if ltype == ID_TYPE:
        return native_id(value)
    if ltype == "integer":
        return int(value)
    if ltype == "number":
        return float(value)
    if ltype == DATETIME_TYPE:
        return parse_datetime(value)
    return value

def identifier_rule(resource: ResourceDefinition, field: str) -> Mapping:
    """
    return the compiled rule for a top-level field of a resource.  The store key, ``_id``, is an
    identifier even when the resource does not declare it.
    """
    rule = field_rule(resource.schema, field)
    if not rule and field == KEY_PROP:
        rule = {COERCE_KW: ID_TYPE}
    return rule

class QueryCompiler:
    """
    a compiler of read requests on a particular resource
    """

    def __init__(self, resource: ResourceDefinition, text_param: str=DEF_TEXT_PARAM):
        """
        :param ResourceDefinition resource:  the resource being read
        :param str text_param:  the name of the query parameter that carries a free-text search
        """
        self.resource = resource
        self.text_param = text_param or DEF_TEXT_PARAM

    def compile(self, params: Mapping=None, filter_tokens: List[str]=None, id: str=None) -> QueryPlan:
        """
        compile the request into a query plan
        :param dict      params:  the query parameters (names mapped to single values)
        :param [str] filter_tokens:  the decoded path segments following the ``_`` marker that
                                  give alternating field names and values
        :param str           id:  the identifier given as the leaf path segment, if any
        """
        if params is None:
            params = {}
        filter = self.make_filter(filter_tokens, params.get(self.text_param))
        if id is not None:
            filter.update(self.id_filter(id))

        plan = QueryPlan(filter, self.make_projection(params.get("fields")),
                         self.make_sort(params.get("sort")), self.make_limit(params.get("limit")),
                         self.make_skip(params.get("offset")))
        log.debug("%s: compiled query plan: %s", self.resource.name, str(plan))
        return plan

    def make_projection(self, fields: str) -> Mapping:
        out = OrderedDict()
        if fields:
            for name in fields.split(','):
                name = name.strip()
                if name:
                    out[name] = 1
            if out and KEY_PROP not in out:
                out[KEY_PROP] = 0
        return out

    def make_skip(self, offset: str) -> int:
        out = _to_int(offset)
        if out is None or out < 0:
            return 0
        return out

    def make_limit(self, limit: str) -> int:
        out = _to_int(limit)
        if out is None or out < 0:
            return self.resource.limit
        return out

    def make_sort(self, sort: str) -> tuple:
        out = OrderedDict()
        if sort:
            for token in sort.split(','):
                parts = token.split(':')
                field = parts[0].strip()
                if field:
                    out[field] = -1 if len(parts) > 1 and parts[1].strip() == "desc" else 1
        else:
            for field, dir in self.resource.sort:
                out[field] = -1 if dir == "desc" else 1
        return tuple(out.items())

    def make_filter(self, tokens: List[str]=None, text: str=None) -> Mapping:
        out = OrderedDict()
        tokens = tokens or []
        for i in range(0, len(tokens) - 1, 2):
            field, value = tokens[i], tokens[i+1]
            if not field or not value:
                continue
            out[field] = self._field_term(field, value)

        if text:
            out["$text"] = {"$search": '"%s"' % text}
        return out

    def _field_term(self, field: str, value: str):
        rule = identifier_rule(self.resource, field)
        if rule:
            try:
                value = coerce_value(rule, value)
            except ValueError as ex:
                log.debug("%s: %s: treating value as a pattern: %s", self.resource.name, field, str(ex))

        if isinstance(value, str):
            return OrderedDict([("$regex", "^%s$" % value), ("$options", "i")])
        return value

    def id_filter(self, id: str) -> Mapping:
        """
        return the filter that selects the document with the given identifier
        """
        rule = identifier_rule(self.resource, self.resource.id)
        if rule and logical_type(rule) in (ID_TYPE, "integer"):
            try:
                id = coerce_value(rule, id)
            except ValueError as ex:
                log.debug("%s: using identifier as given: %s", self.resource.name, str(ex))
        return {self.resource.id: id}
