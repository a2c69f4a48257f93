"""Stockline - line-item computation and stock allocation for entry grids."""
import importlib
import logging

from stockline.database import init_db


def _load_config(config_object):
    """Accept a 'module.Class' path, a class, or a mapping; return a plain dict of settings."""
    if isinstance(config_object, str):
        module_name, _, attr = config_object.rpartition('.')
        config_object = getattr(importlib.import_module(module_name), attr)
    if isinstance(config_object, dict):
        return dict(config_object)
    return {key: getattr(config_object, key) for key in dir(config_object) if key.isupper()}


def create_context(config_object='config.Config', cache_client=None):
    """
    Build the runtime context: config, database engine/session, stock cache
    and the SQL-backed catalog that editing sessions consume.
    """
    config = _load_config(config_object)

    logging.basicConfig(
        level=getattr(logging, str(config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    logger = logging.getLogger(__name__)

    engine = init_db(config)

    from stockline.database import get_session
    from stockline.services.cache_service import init_cache
    from stockline.services.catalog_service import SqlCatalog

    cache = init_cache(config, client=cache_client)
    db = get_session()
    catalog = SqlCatalog(db, config.get('COMPANY_ID', 1))

    logger.info(f"Context ready (env={config.get('ENV')}, cache={'on' if cache.is_available() else 'off'})")
    return {
        'config': config,
        'engine': engine,
        'db': db,
        'cache': cache,
        'catalog': catalog,
    }
