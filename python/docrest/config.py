"""
Utilities for obtaining the configuration of a docrest service and for setting up its logging.

A configuration is a (JSON-compatible) dictionary.  It is usually read from a YAML or JSON file
via :py:func:`load_from_file` or :py:func:`resolve_configuration` and is then merged over the
:py:data:`DEFAULTS` with :py:func:`merge_config`.  The resulting dictionary should be treated as
read-only.
"""
import os, sys, json, logging
from copy import deepcopy
from collections.abc import Mapping
from urllib.parse import urlparse

import yaml

from . import POWERED_BY

__all__ = [ "ConfigurationException", "DEFAULTS", "NORMAL", "merge_config", "load_from_file",
            "resolve_configuration", "configure_log" ]

NORMAL = 15
logging.addLevelName(NORMAL, "NORMAL")

DEF_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

global_logdir = None

DEFAULTS = {
    "name": "API",
    "base": "/",
    "version": "",
    "queryParam": "q",
    "jsonp": True,
    "crossDomain": True,
    "crossDomainAllowOrigin": "*",
    "maxAge": None,
    "include_headers": {
        "X-API-Powered-By": POWERED_BY
    },
    "database": {
        "factory": "mongo",
        "host": "localhost",
        "port": 27017,
        "name": "local"
    },
    "resources": []
}

class ConfigurationException(Exception):
    """
    an exception indicating that the configuration provided is missing data or is otherwise
    invalid.
    """
    def __init__(self, message, cause=None, param=None):
        super(ConfigurationException, self).__init__(message)
        self.cause = cause
        self.param = param

def merge_config(primary: Mapping, defconf: Mapping) -> dict:
    """
    merge the data from a primary configuration over a default configuration.  Values in
    nested dictionaries are merged recursively; all other values (including lists) in the
    primary replace those of the defaults.  Neither input is modified.
    :param Mapping primary:  the configuration whose values take precedence
    :param Mapping defconf:  the configuration providing the default values
    :return:  a new merged configuration
    """
    out = deepcopy(dict(defconf))
    for key, val in primary.items():
        if isinstance(val, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = merge_config(val, out[key])
        else:
            out[key] = deepcopy(val)
    return out

def load_from_file(configfile: str) -> dict:
    """
    read the configuration from the given file.  A file with a name ending in ".json" is parsed
    as JSON; anything else is parsed as YAML.
    :raises ConfigurationException:  if the file cannot be read or parsed
    """
    try:
        with open(configfile) as fd:
            if configfile.endswith(".json"):
                out = json.load(fd)
            else:
                out = yaml.safe_load(fd)
    except (OSError, ValueError, yaml.YAMLError) as ex:
        raise ConfigurationException("%s: unable to load configuration: %s" % (configfile, str(ex)),
                                     cause=ex)

    if out is None:
        out = {}
    if not isinstance(out, Mapping):
        raise ConfigurationException("%s: configuration is not an object" % configfile)
    return out

def resolve_configuration(location: str) -> dict:
    """
    load the configuration from a location given either as a file path or as a ``file:`` URL
    """
    url = urlparse(location)
    if url.scheme in ("", "file"):
        return load_from_file(url.path if url.scheme else location)
    raise ConfigurationException("Unsupported configuration location: " + location)

def configure_log(logfile: str=None, level=None, format: str=None, config: Mapping=None,
                  addstderr=False):
    """
    configure the root logger to write messages to a file.  Values not provided as arguments
    are looked for in ``config`` (as ``logfile``, ``loglevel``, and ``logformat``).  If no log
    file can be determined, messages are sent to standard error.

    :param str logfile:  the path to the log file; a relative path is taken relative to the
                         ``logdir`` configuration parameter, if set.
    :param level:        the minimum level to record, as a number or a level name
    :param str format:   the format for each message line
    :param dict config:  the configuration to consult for unspecified values
    :param bool addstderr: if True, messages will also be copied to standard error
    """
    global global_logdir
    if config is None:
        config = {}
    if not logfile:
        logfile = config.get('logfile')
    if level is None:
        level = config.get('loglevel', logging.INFO)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ConfigurationException("loglevel: unrecognized level name")
    if not format:
        format = config.get('logformat', DEF_LOG_FORMAT)
    frmtr = logging.Formatter(format)

    root = logging.getLogger()
    root.setLevel(level)

    if logfile:
        global_logdir = config.get('logdir', global_logdir)
        if not os.path.isabs(logfile) and global_logdir:
            logfile = os.path.join(global_logdir, logfile)
        hdlr = logging.FileHandler(logfile)
        hdlr.setLevel(level)
        hdlr.setFormatter(frmtr)
        root.addHandler(hdlr)

    if addstderr or not logfile:
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setLevel(level)
        hdlr.setFormatter(frmtr)
        root.addHandler(hdlr)
