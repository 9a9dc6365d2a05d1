"""
The CRUD executor: carrying out compiled query plans and normalized payloads against the
document store.
"""
import logging
from collections.abc import Mapping, MutableMapping
from typing import List

from . import SYSTEM_NAME, StoreError, ObjectNotFound, InitializationError
from .query import QueryPlan
from .payload import CREATED_PROP
from .store.base import DocumentStore, KEY_PROP

log = logging.getLogger(SYSTEM_NAME).getChild("crud")

class CRUDExecutor:
    """
    the executor of the five operations supported on resources.  Failures reported by the
    store are raised as :py:class:`~docrest.StoreError` exceptions carrying the store's message; nothing
    is retried.
    """

    def __init__(self, store: DocumentStore, log: logging.Logger=log):
        self.store = store
        self.log = log

    def _call(self, opname, func, *args):
        try:
            return func(*args)
        except (StoreError, InitializationError):
            raise
        except Exception as ex:
            self.log.error("%s: store failure: %s", opname, str(ex))
            raise StoreError(str(ex), ex) from ex

    def find_items(self, collname: str, plan: QueryPlan) -> List[MutableMapping]:
        """
        return the documents selected by a query plan
        """
        return self._call("find_items", self.store.find, collname, plan.filter, plan.projection,
                          plan.sort, plan.skip, plan.limit)

    def find_item(self, collname: str, filter: Mapping, projection: Mapping=None) -> MutableMapping:
        """
        return the single document selected by a filter or None if it does not exist
        """
        return self._call("find_item", self.store.find_one, collname, filter, projection)

    def add_item(self, collname: str, doc: Mapping) -> MutableMapping:
        """
        insert a new document, returning it as stored
        """
        return self._call("add_item", self.store.insert_one, collname, doc)

    def update_item(self, collname: str, filter: Mapping, doc: Mapping) -> MutableMapping:
        """
        replace the document selected by a filter with a new version.  The whole document is
        replaced except for its store key and the time it was created.
        :raises ObjectNotFound:  if no document matches the filter
        """
        prev = self.find_item(collname, filter, {KEY_PROP: 1, CREATED_PROP: 1})
        if prev is None:
            raise ObjectNotFound(collname, str(filter))

        doc = dict(doc)
        doc.pop(KEY_PROP, None)
        if prev.get(CREATED_PROP) is not None:
            doc[CREATED_PROP] = prev[CREATED_PROP]

        n = self._call("update_item", self.store.replace_one, collname, {KEY_PROP: prev[KEY_PROP]}, doc)
        if n < 1:
            raise ObjectNotFound(collname, str(filter))
        doc[KEY_PROP] = prev[KEY_PROP]
        return doc

    def delete_item(self, collname: str, filter: Mapping) -> int:
        """
        delete the documents selected by a filter, returning the number deleted.
        :raises ValueError:  if the filter is empty; whole collections cannot be deleted
        """
        if not filter:
            raise ValueError("delete_item(): refusing to delete with an empty filter")
        return self._call("delete_item", self.store.delete_many, collname, filter)
