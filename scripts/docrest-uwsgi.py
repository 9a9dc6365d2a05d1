"""
the uWSGI script for launching a docrest web API.

This script launches the web service using uwsgi.  For example, one can
launch the service with the following command:

  uwsgi --plugin python3 --http-socket :3000 --wsgi-file docrest-uwsgi.py     \
        --set-ph docrest_config_file=api_conf.yml

See the documentation for docrest.wsgi and docrest.config for the configuration parameters
supported by this service.

This script also pays attention to the following environment variables:

   DOCREST_HOME          The directory where docrest is installed; this is used to find
                            the docrest python package.
   DOCREST_PYTHONPATH    The directory containing the python package, docrest.
                            This overrides what is implied by DOCREST_HOME.
   DOCREST_CONFIG_FILE   The configuration file to use; this is overridden by the
                            docrest_config_file uwsgi variable.
   DOCREST_MONGODB_URL   The URL of the MongoDB database to serve documents from; this
                            overrides the database configuration.
"""
import os, sys, logging

try:
    import docrest
except ImportError:
    drpath = os.environ.get('DOCREST_PYTHONPATH')
    if not drpath and 'DOCREST_HOME' in os.environ:
        drpath = os.path.join(os.environ['DOCREST_HOME'], "lib", "python")
    if drpath:
        sys.path.insert(0, drpath)
    import docrest

from docrest import config, wsgi

import uwsgi

def _dec(obj):
    # decode an object if it is not None
    return obj.decode() if isinstance(obj, (bytes, bytearray)) else obj

# determine where the configuration is coming from
confsrc = _dec(uwsgi.opt.get("docrest_config_file")) or os.environ.get("DOCREST_CONFIG_FILE")
if not confsrc:
    raise config.ConfigurationException("docrest: configuration file not provided")
cfg = config.resolve_configuration(confsrc)

if uwsgi.opt.get("docrest_log_file"):
    cfg["logfile"] = _dec(uwsgi.opt.get("docrest_log_file"))
config.configure_log(config=cfg)

if os.environ.get("DOCREST_MONGODB_URL"):
    cfg.setdefault("database", {})
    cfg["database"]["factory"] = "mongo"
    cfg["database"]["db_url"] = os.environ["DOCREST_MONGODB_URL"]

application = wsgi.DocRestApp(cfg)
if not application.init():
    logging.error("docrest: database unavailable; resource requests will get 503")

msg = "%s (docrest v%s) ready with %s backend" % (application.name, docrest.__version__,
                                                   cfg.get("database", {}).get("factory", "mongo"))
print(msg)
logging.info(msg)
