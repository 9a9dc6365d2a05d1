"""
The abstract interface to the document store that backs a docrest API.

The interface is modeled on a MongoDB database:

  *  the store holds named collections of documents, one per resource
  *  a document is a dictionary that can be exported to JSON once its store-native values
     (the :py:class:`~bson.ObjectId` key and datetimes) are rendered
  *  every document has a store-native key, ``_id``, assigned at insertion if not provided
  *  documents are selected with MongoDB-style filter documents

Every operation either returns its complete result or raises a
:py:class:`~docrest.StoreError`; nothing is retried.
"""
from abc import ABC, abstractmethod
from collections.abc import Mapping, MutableMapping
from typing import Iterator, List, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from .. import StoreError, InitializationError

KEY_PROP = "_id"

def native_id(value) -> ObjectId:
    """
    convert a value into the store-native identifier type
    :raises ValueError:  if the value is not a valid identifier
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as ex:
        raise ValueError("Not a valid store identifier: " + repr(value)) from ex

class DocumentStore(ABC):
    """
    an abstract document store.  A store is not usable until :py:meth:`connect` has
    completed successfully; this is reflected by the :py:attr:`ready` property.
    """

    def __init__(self, config: Mapping=None):
        if config is None:
            config = {}
        self.cfg = config
        self._ready = False

    @property
    def ready(self) -> bool:
        """
        True if the store has been connected and is ready to accept requests
        """
        return self._ready

    def _check_ready(self):
        if not self._ready:
            raise InitializationError()

    @abstractmethod
    def connect(self):
        """
        establish the connection to the store.  Upon successful return, :py:attr:`ready` is True.
        :raises StoreError:  if the connection could not be established
        """
        raise NotImplementedError()

    def disconnect(self):
        """
        release the connection to the store
        """
        self._ready = False

    @abstractmethod
    def find(self, collname: str, filter: Mapping, projection: Mapping=None,
             sort: Sequence[Tuple[str, int]]=None, skip: int=0, limit: int=0) -> List[MutableMapping]:
        """
        return the documents from a collection that match a filter.
        :param str    collname:  the name of the collection to search
        :param dict     filter:  the MongoDB-style filter to select documents with
        :param dict projection:  the fields to include (value 1) or exclude (value 0); if empty or
                                 None, whole documents are returned
        :param list       sort:  a list of (field, direction) pairs where direction is 1 for
                                 ascending and -1 for descending
        :param int        skip:  the number of leading matched documents to skip
        :param int       limit:  the maximum number of documents to return; 0 means no limit
        """
        raise NotImplementedError()

    @abstractmethod
    def find_one(self, collname: str, filter: Mapping, projection: Mapping=None) -> MutableMapping:
        """
        return the first document matching a filter or None if there are no matches
        """
        raise NotImplementedError()

    @abstractmethod
    def insert_one(self, collname: str, doc: Mapping) -> MutableMapping:
        """
        add a document to a collection.  A copy of the stored document is returned, including
        its store-native key.
        """
        raise NotImplementedError()

    @abstractmethod
    def replace_one(self, collname: str, filter: Mapping, doc: Mapping) -> int:
        """
        replace the first document matching a filter with the given document, keeping its
        store-native key.
        :return:  the number of documents that matched (0 or 1)
        """
        raise NotImplementedError()

    @abstractmethod
    def delete_many(self, collname: str, filter: Mapping) -> int:
        """
        delete all documents that match a filter
        :return:  the number of documents deleted
        """
        raise NotImplementedError()
