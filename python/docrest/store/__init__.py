"""
module providing implementations of the document store that backs a docrest API.  A
:py:class:`~docrest.store.base.DocumentStore` speaks directly to a backend storage system; the
:py:mod:`~docrest.crud` module drives it on behalf of web requests.
"""
from collections.abc import Mapping

from .base import DocumentStore, native_id, KEY_PROP
from .inmem import InMemoryDocumentStore
from .mongo import MongoDocumentStore, make_db_url
from ..config import ConfigurationException

def create_store(config: Mapping) -> DocumentStore:
    """
    instantiate a :py:class:`DocumentStore` based on the given ``database`` configuration.  The
    ``factory`` parameter selects the implementation: "mongo" (the default) or "inmem".
    """
    if not isinstance(config, Mapping):
        raise ConfigurationException("database config: not a dictionary: " + str(config))

    factory = config.get("factory", "mongo")
    if factory == "mongo":
        return MongoDocumentStore(make_db_url(config), config)

    elif factory == "inmem":
        return InMemoryDocumentStore(config)

    raise ConfigurationException("database.factory type not supported: " + str(factory))
