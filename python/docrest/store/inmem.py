"""
An implementation of the document store interface based on a simple in-memory look-up.

This is provided primarily for testing and development purposes.  It understands the subset of
the MongoDB filter language that docrest generates (plus a few common operators) and mimics
MongoDB's sort ordering across value types.
"""
import re, datetime
from copy import deepcopy
from collections import OrderedDict
from collections.abc import Mapping, MutableMapping
from typing import Iterator, List, Sequence, Tuple

from bson import ObjectId

from .base import DocumentStore, KEY_PROP
from .. import StoreError

_PatternType = type(re.compile(""))

class InMemoryDocumentStore(DocumentStore):
    """
    an in-memory DocumentStore implementation
    """

    def __init__(self, config: Mapping=None, dbdata: MutableMapping=None):
        """
        create the store
        :param dict config:  the store configuration (currently unused)
        :param dict dbdata:  the initial contents of the store: a dictionary whose keys are
                             collection names and values are lists of documents.
        """
        super(InMemoryDocumentStore, self).__init__(config)
        self._db = {}
        if dbdata:
            for collname, docs in dbdata.items():
                for doc in docs:
                    self._insert(collname, doc)

    def connect(self):
        self._ready = True

    def _coll(self, collname) -> MutableMapping:
        return self._db.setdefault(collname, OrderedDict())

    def _insert(self, collname, doc):
        doc = deepcopy(dict(doc))
        if KEY_PROP not in doc:
            doc[KEY_PROP] = ObjectId()
        coll = self._coll(collname)
        if doc[KEY_PROP] in coll:
            raise StoreError("E11000 duplicate key error collection: %s index: _id_ dup key: %s" %
                             (collname, str(doc[KEY_PROP])))
        coll[doc[KEY_PROP]] = doc
        return doc

    def _select(self, collname, filter) -> Iterator[MutableMapping]:
        try:
            for doc in self._db.get(collname, {}).values():
                if _matches(doc, filter or {}):
                    yield doc
        except re.error as ex:
            raise StoreError("Regular expression is invalid: " + str(ex)) from ex

    def find(self, collname: str, filter: Mapping, projection: Mapping=None,
             sort: Sequence[Tuple[str, int]]=None, skip: int=0, limit: int=0) -> List[MutableMapping]:
        self._check_ready()
        out = list(self._select(collname, filter))
        for field, dir in reversed(list(sort or [])):
            out.sort(key=lambda d: _sort_key(_lookup(d, field)), reverse=(dir < 0))
        if skip and skip > 0:
            out = out[skip:]
        if limit and limit > 0:
            out = out[:limit]
        return [_project(d, projection) for d in out]

    def find_one(self, collname: str, filter: Mapping, projection: Mapping=None) -> MutableMapping:
        self._check_ready()
        for doc in self._select(collname, filter):
            return _project(doc, projection)
        return None

    def insert_one(self, collname: str, doc: Mapping) -> MutableMapping:
        self._check_ready()
        return deepcopy(self._insert(collname, doc))

    def replace_one(self, collname: str, filter: Mapping, doc: Mapping) -> int:
        self._check_ready()
        for old in self._select(collname, filter):
            key = old[KEY_PROP]
            if KEY_PROP in doc and doc[KEY_PROP] != key:
                raise StoreError("Performing an update on the path '_id' would modify the "
                                 "immutable field '_id'")
            new = deepcopy(dict(doc))
            new[KEY_PROP] = key
            self._db[collname][key] = new
            return 1
        return 0

    def delete_many(self, collname: str, filter: Mapping) -> int:
        self._check_ready()
        keys = [d[KEY_PROP] for d in self._select(collname, filter)]
        for key in keys:
            del self._db[collname][key]
        return len(keys)


_missing = object()

def _lookup(doc, path: str):
    val = doc
    for part in path.split('.'):
        if isinstance(val, Mapping) and part in val:
            val = val[part]
        else:
            return _missing
    return val

def _matches(doc: Mapping, filter: Mapping) -> bool:
    for key, cond in filter.items():
        if key == "$and":
            if not all(_matches(doc, f) for f in cond):
                return False
        elif key == "$or":
            if not any(_matches(doc, f) for f in cond):
                return False
        elif key == "$text":
            if not _text_matches(doc, cond.get("$search", "")):
                return False
        elif key.startswith("$"):
            raise StoreError("unknown top level operator: " + key)
        elif not _cond_matches(_lookup(doc, key), cond):
            return False
    return True

def _is_operator_doc(cond) -> bool:
    return isinstance(cond, Mapping) and len(cond) > 0 and all(k.startswith("$") for k in cond)

def _values(val) -> list:
    # a condition on an array-valued field matches if it matches any element
    if isinstance(val, list):
        return val + [val]
    return [val]

def _regex_matches(val, pattern, options="") -> bool:
    if not isinstance(pattern, _PatternType):
        flags = 0
        for opt, flag in (("i", re.IGNORECASE), ("m", re.MULTILINE), ("s", re.DOTALL), ("x", re.VERBOSE)):
            if opt in options:
                flags |= flag
        pattern = re.compile(pattern, flags)
    return any(isinstance(v, str) and pattern.search(v) for v in _values(val))

def _compare(val, arg, op) -> bool:
    for v in _values(val):
        if v is _missing or v is None or _sort_key(v)[0] != _sort_key(arg)[0]:
            continue
        if op(v, arg):
            return True
    return False

def _cond_matches(val, cond) -> bool:
    if isinstance(cond, _PatternType):
        return _regex_matches(val, cond)

    if not _is_operator_doc(cond):
        if cond is None:
            return val is _missing or val is None
        return any(v == cond for v in _values(val))

    for op, arg in cond.items():
        if op == "$options":
            continue
        elif op == "$regex":
            if not _regex_matches(val, arg, cond.get("$options", "")):
                return False
        elif op == "$eq":
            if not _cond_matches(val, arg):
                return False
        elif op == "$ne":
            if _cond_matches(val, arg):
                return False
        elif op == "$in":
            if not any(_cond_matches(val, a) for a in arg):
                return False
        elif op == "$nin":
            if any(_cond_matches(val, a) for a in arg):
                return False
        elif op == "$exists":
            if (val is not _missing) != bool(arg):
                return False
        elif op == "$gt":
            if not _compare(val, arg, lambda a, b: a > b):
                return False
        elif op == "$gte":
            if not _compare(val, arg, lambda a, b: a >= b):
                return False
        elif op == "$lt":
            if not _compare(val, arg, lambda a, b: a < b):
                return False
        elif op == "$lte":
            if not _compare(val, arg, lambda a, b: a <= b):
                return False
        else:
            raise StoreError("unknown operator: " + op)
    return True

def _strings(val) -> Iterator[str]:
    if isinstance(val, str):
        yield val
    elif isinstance(val, Mapping):
        for v in val.values():
            yield from _strings(v)
    elif isinstance(val, list):
        for v in val:
            yield from _strings(v)

def _text_matches(doc: Mapping, search: str) -> bool:
    # quoted phrases must all appear; otherwise any one of the terms must appear
    phrases = [p.lower() for p in re.findall(r'"([^"]*)"', search) if p]
    terms = [t.lower() for t in re.sub(r'"[^"]*"', ' ', search).split()]
    text = "\n".join(s.lower() for s in _strings(doc))
    if phrases:
        return all(p in text for p in phrases)
    return any(t in text for t in terms)

def _sort_key(val):
    # mimic MongoDB's ordering across BSON types
    if val is _missing or val is None:
        return (0, 0)
    if isinstance(val, bool):
        return (6, val)
    if isinstance(val, (int, float)):
        return (1, val)
    if isinstance(val, str):
        return (2, val)
    if isinstance(val, Mapping):
        return (3, str(val))
    if isinstance(val, list):
        return (4, str(val))
    if isinstance(val, ObjectId):
        return (5, str(val))
    if isinstance(val, datetime.datetime):
        return (7, val.timestamp() if val.tzinfo else val.replace(tzinfo=datetime.timezone.utc).timestamp())
    return (8, str(val))

def _project(doc: Mapping, projection: Mapping) -> MutableMapping:
    doc = deepcopy(doc)
    if not projection:
        return doc

    incl = [f for f, v in projection.items() if v and f != KEY_PROP]
    if any(projection.values()):
        out = OrderedDict()
        if projection.get(KEY_PROP, 1) and KEY_PROP in doc:
            out[KEY_PROP] = doc[KEY_PROP]
        for field in incl:
            val = _lookup(doc, field)
            if val is _missing:
                continue
            parts = field.split('.')
            tgt = out
            for part in parts[:-1]:
                tgt = tgt.setdefault(part, OrderedDict())
            tgt[parts[-1]] = val
        return out

    for field, v in projection.items():
        if not v:
            parts = field.split('.')
            tgt = doc
            for part in parts[:-1]:
                tgt = tgt.get(part) if isinstance(tgt, Mapping) else None
            if isinstance(tgt, MutableMapping):
                tgt.pop(parts[-1], None)
    return doc
