"""
The resource registry: the set of resources served by an API, built once from the configuration.

Each resource is declared in the ``resources`` configuration list either by its bare name (which
gets the default definition) or by an object with a ``name`` property and any of the following:

``schema``
    the field schema for write validation (see :py:mod:`docrest.schema`)
``id``
    the field used to address a single document in the resource's URL (default: ``_id``)
``sort``
    the default sort order, either as an object mapping fields to "asc" or "desc" or as a list
    of ``field[:asc|desc]`` strings
``limit``
    the default maximum number of documents returned by a list request (default: 0, unlimited)
``maxAge``
    the number of seconds clients may cache GET responses
``crossDomain``, ``crossDomainAllowOrigin``
    the resource's cross-origin (CORS) policy; if ``crossDomain`` is not set, the global policy
    applies
``verbs``
    the operations to enable, a subset of "read", "readOne", "create", "update", "delete"
    (default: all)
``get``, ``post``, ``put``, ``del``
    booleans that, when false, disable the operations accessed by that HTTP method
"""
import logging
from collections import OrderedDict, namedtuple
from collections.abc import Mapping
from typing import Iterator, List

from . import SYSTEM_NAME
from .config import ConfigurationException
from .schema import compile_schema, SchemaValidator

log = logging.getLogger(SYSTEM_NAME).getChild("resources")

READ     = "read"
READ_ONE = "readOne"
CREATE   = "create"
UPDATE   = "update"
DELETE   = "delete"
ALL_VERBS = frozenset([READ, READ_ONE, CREATE, UPDATE, DELETE])

_method_flags = OrderedDict([
    ("get",  (READ, READ_ONE)),
    ("post", (CREATE,)),
    ("put",  (UPDATE,)),
    ("del",  (DELETE,))
])

DEF_ID_FIELD = "_id"

ResourceDefinition = namedtuple("ResourceDefinition",
                                "name schema validator verbs id sort limit max_age "
                                "cross_domain cross_domain_allow_origin")

def parse_sort(sort) -> tuple:
    """
    normalize a sort specification into a tuple of (field, direction) pairs where direction is
    "asc" or "desc".  The specification can be a mapping of fields to directions, a list of
    ``field[:dir]`` strings, or a single comma-delimited string of them.  A later entry for the
    same field replaces the direction of the earlier one.
    """
    if not sort:
        return ()
    if isinstance(sort, str):
        sort = sort.split(',')

    out = OrderedDict()
    if isinstance(sort, Mapping):
        for field, dir in sort.items():
            out[field] = "desc" if dir in ("desc", -1) else "asc"
    else:
        for token in sort:
            parts = str(token).split(':')
            field = parts[0].strip()
            if field:
                out[field] = "desc" if len(parts) > 1 and parts[1].strip() == "desc" else "asc"
    return tuple(out.items())

class ResourceDeclaration(namedtuple("ResourceDeclaration", "kind name spec")):
    """
    a resource declaration as it appeared in the configuration, resolved into one of two kinds:
    ``NAME_ONLY`` (the bare name) or ``FULL`` (an object with a name and other properties).
    """
    NAME_ONLY = "name"
    FULL = "full"

    @classmethod
    def parse(cls, decl):
        """
        resolve a configured declaration, returning None if it is not recognizable as one
        """
        if isinstance(decl, str) and decl:
            return cls(cls.NAME_ONLY, decl, {})
        if isinstance(decl, Mapping) and isinstance(decl.get("name"), str) and decl["name"]:
            return cls(cls.FULL, decl["name"], decl)
        return None

    def _int_param(self, param, default=None):
        val = self.spec.get(param, default)
        if val is None:
            return default
        try:
            val = int(val)
        except (ValueError, TypeError) as ex:
            raise ConfigurationException("%s.%s: not an integer: %s" % (self.name, param, repr(val)),
                                         cause=ex, param=param)
        return max(val, 0)

    def _verbs(self) -> frozenset:
        verbs = self.spec.get("verbs")
        if verbs is None:
            verbs = set(ALL_VERBS)
        else:
            if isinstance(verbs, str):
                verbs = [verbs]
            verbs = set(verbs)
            bad = verbs - ALL_VERBS
            if bad:
                raise ConfigurationException("%s.verbs: unrecognized verbs: %s" %
                                             (self.name, ", ".join(sorted(bad))), param="verbs")
        for flag, flagged in _method_flags.items():
            if self.spec.get(flag) is False:
                verbs -= set(flagged)
        return frozenset(verbs)

    def define(self) -> ResourceDefinition:
        """
        create the definition of the declared resource, applying defaults
        """
        schema = compile_schema(self.spec.get("schema"))
        crossdom = self.spec.get("crossDomain")
        return ResourceDefinition(
            name=self.name,
            schema=schema,
            validator=SchemaValidator(schema) if schema else None,
            verbs=self._verbs(),
            id=self.spec.get("id") or DEF_ID_FIELD,
            sort=parse_sort(self.spec.get("sort")),
            limit=self._int_param("limit", 0),
            max_age=self._int_param("maxAge"),
            cross_domain=None if crossdom is None else bool(crossdom),
            cross_domain_allow_origin=self.spec.get("crossDomainAllowOrigin") or "*"
        )

class ResourceRegistry(Mapping):
    """
    a read-only mapping of resource names to their :py:class:`ResourceDefinition` instances.
    """

    def __init__(self, declarations: List=None):
        """
        build the registry from a list of resource declarations.  A declaration that reuses
        the name of an earlier one replaces it.
        """
        defs = OrderedDict()
        for decl in (declarations or []):
            rdecl = ResourceDeclaration.parse(decl)
            if not rdecl:
                log.warning("Ignoring unrecognized resource declaration: %s", repr(decl))
                continue
            if rdecl.name in defs:
                log.info("Resource %s redeclared; replacing earlier declaration", rdecl.name)
                del defs[rdecl.name]
            defs[rdecl.name] = rdecl.define()
        self._defs = defs

    def __getitem__(self, name) -> ResourceDefinition:
        return self._defs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._defs)

    def __len__(self):
        return len(self._defs)

    def names(self) -> List[str]:
        """
        return the names of the registered resources in the order they were declared
        """
        return list(self._defs.keys())
