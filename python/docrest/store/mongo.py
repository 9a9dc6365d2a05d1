"""
An implementation of the document store interface that uses a MongoDB database as its backend
"""
import re
from collections.abc import Mapping, MutableMapping
from typing import List, Sequence, Tuple

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .base import DocumentStore
from .. import StoreError
from ..config import ConfigurationException

_dburl_re = re.compile(r"^mongodb(\+srv)?://(\S+(:\S+)?@)?[\w\-]+(\.[\w\-]+)*(:\d+)?(,[^/]+)*/\w+(\?\w.*)?$")

def make_db_url(dbcfg: Mapping) -> str:
    """
    determine the database URL from the ``database`` configuration.  A ``db_url`` parameter is
    used as is; otherwise, the URL is built from ``host``, ``port``, and ``name`` (and
    optionally ``user`` and ``pw``).
    """
    if dbcfg.get("db_url"):
        return dbcfg["db_url"]
    cred = ""
    if dbcfg.get("user"):
        cred = "%s:%s@" % (dbcfg["user"], dbcfg.get("pw", ""))
    return "mongodb://%s%s:%s/%s" % (cred, dbcfg.get("host", "localhost"), dbcfg.get("port", 27017),
                                     dbcfg.get("name", "local"))

class MongoDocumentStore(DocumentStore):
    """
    an implementation of DocumentStore using a MongoDB database as the backend store.
    """

    def __init__(self, dburl: str, config: Mapping=None):
        """
        create the store; the connection is not made until :py:meth:`connect` is called.

        :param str   dburl:  the URL of MongoDB database in the form,
                             'mongodb://USER:PW@HOST:PORT/DBNAME'
        :param dict config:  the ``database`` configuration; if it contains a ``timeout`` value,
                             it is used as the time limit (in milliseconds) for selecting a
                             server and for each database operation.
        """
        if not _dburl_re.match(dburl):
            raise ConfigurationException("MongoDocumentStore: Bad dburl format (need "
                                         "'mongodb://[USER:PASS@]HOST[:PORT]/DBNAME'): " + dburl)
        super(MongoDocumentStore, self).__init__(config)
        self._dburl = dburl
        self._mngocli = None
        self._native = None

    def connect(self):
        """
        establish a connection to the database and confirm that the server is responding.
        """
        opts = {}
        if self.cfg.get("timeout"):
            opts["serverSelectionTimeoutMS"] = int(self.cfg["timeout"])
            opts["socketTimeoutMS"] = int(self.cfg["timeout"])
        try:
            self._mngocli = MongoClient(self._dburl, **opts)
            self._native = self._mngocli.get_default_database()
            self._native.command("ping")
        except PyMongoError as ex:
            self.disconnect()
            raise StoreError(str(ex), ex) from ex
        self._ready = True

    def disconnect(self):
        """
        close the connection to the database.
        """
        super(MongoDocumentStore, self).disconnect()
        if self._mngocli:
            try:
                self._mngocli.close()
            finally:
                self._mngocli = None
                self._native = None

    @property
    def native(self):
        """
        the native pymongo database object that holds the resource collections
        """
        return self._native

    def find(self, collname: str, filter: Mapping, projection: Mapping=None,
             sort: Sequence[Tuple[str, int]]=None, skip: int=0, limit: int=0) -> List[MutableMapping]:
        self._check_ready()
        try:
            cursor = self.native[collname].find(filter, projection or None)
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as ex:
            raise StoreError(str(ex), ex) from ex

    def find_one(self, collname: str, filter: Mapping, projection: Mapping=None) -> MutableMapping:
        self._check_ready()
        try:
            return self.native[collname].find_one(filter, projection or None)
        except PyMongoError as ex:
            raise StoreError(str(ex), ex) from ex

    def insert_one(self, collname: str, doc: Mapping) -> MutableMapping:
        self._check_ready()
        doc = dict(doc)
        try:
            # insert_one() sets _id on the given dictionary
            self.native[collname].insert_one(doc)
            return doc
        except PyMongoError as ex:
            raise StoreError(str(ex), ex) from ex

    def replace_one(self, collname: str, filter: Mapping, doc: Mapping) -> int:
        self._check_ready()
        try:
            return self.native[collname].replace_one(filter, doc).matched_count
        except PyMongoError as ex:
            raise StoreError(str(ex), ex) from ex

    def delete_many(self, collname: str, filter: Mapping) -> int:
        self._check_ready()
        try:
            return self.native[collname].delete_many(filter).deleted_count
        except PyMongoError as ex:
            raise StoreError(str(ex), ex) from ex
