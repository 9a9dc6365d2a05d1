"""
The payload normalizer: preparing a document submitted via POST or PUT for storage.
"""
import time, logging
from collections.abc import Mapping, MutableMapping

from . import SYSTEM_NAME, ValidationError
from .resources import ResourceDefinition
from .schema import COERCE_KW, ID_TYPE
from .store.base import native_id, KEY_PROP
from .query import identifier_rule

log = logging.getLogger(SYSTEM_NAME).getChild("payload")

CREATED_PROP = "created"
MODIFIED_PROP = "modified"

def now_ms() -> int:
    """
    return the current time as integer milliseconds since the epoch
    """
    return int(time.time() * 1000)

def coerce_ids(value, rule: Mapping):
    """
    return a copy of a value in which every identifier-typed element (according to the compiled
    rule that describes it) has been converted to a store-native identifier.  Elements that are
    not declared in the rule are returned as is.
    """
    if not rule:
        return value

    if rule.get(COERCE_KW) == ID_TYPE and isinstance(value, str):
        try:
            return native_id(value)
        except ValueError:
            return value

    if isinstance(value, Mapping):
        props = rule.get("properties") or {}
        return type(value)((k, coerce_ids(v, props.get(k))) for k, v in value.items())

    if isinstance(value, list):
        items = rule.get("items")
        if isinstance(items, Mapping):
            return [coerce_ids(v, items) for v in value]
        if isinstance(items, list):
            return [coerce_ids(v, items[i]) if i < len(items) else v for i, v in enumerate(value)]

    return value

class PayloadNormalizer:
    """
    a validator and normalizer of write payloads for a particular resource
    """

    def __init__(self, resource: ResourceDefinition):
        self.resource = resource

    def validate(self, doc):
        """
        check the given document against the resource's schema, if it has one.
        :raises ValidationError:  reporting the first problem found
        """
        if not isinstance(doc, Mapping):
            raise ValidationError("", "Document must be a JSON object")
        if self.resource.validator:
            err = self.resource.validator.first_error(doc)
            if err:
                log.debug("%s: document failed validation: %s: %s", self.resource.name, *err)
                raise ValidationError(*err)

    def normalize(self, doc: Mapping, now: int=None) -> MutableMapping:
        """
        validate the given document and return a copy prepared for storage: identifiers are
        converted to store-native form, ``created`` is set if it is not already, and
        ``modified`` is set to the current time.
        :param dict doc:  the document submitted by the client
        :param int  now:  the time to stamp the document with, in epoch milliseconds; if not
                          provided, the current time is used.
        :raises ValidationError:  if the document does not conform to the resource's schema
        """
        self.validate(doc)
        if now is None:
            now = now_ms()

        out = dict(coerce_ids(doc, self.resource.schema))
        if KEY_PROP in out:
            out[KEY_PROP] = coerce_ids(out[KEY_PROP], identifier_rule(self.resource, KEY_PROP))
        if out.get(CREATED_PROP) is None:
            out[CREATED_PROP] = now
        out[MODIFIED_PROP] = now
        return out
