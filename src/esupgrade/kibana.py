"""
Default Kibana index pattern.

Creates the `default-kibana-index` index pattern and makes it the default
of the single Kibana `config` document. Best effort: problems are logged
and reported through the return value, never raised.
"""

from loguru import logger

from esupgrade.core.store import DocumentStore
from esupgrade.migration.classifier import DEFAULT_KIBANA_INDEX, KIBANA_INDEX


async def setup_default_kibana_index(store: DocumentStore) -> bool:
    """
    Point Kibana's default index at `default-kibana-index`.

    Returns:
        True when the index pattern and the config document were written.
    """
    try:
        response = await store.search(KIBANA_INDEX, doc_type="config")
        hits = (response.get("hits") or {}).get("hits") or []
        if len(hits) != 1:
            logger.warning(
                f"Found {len(hits)} Kibana config document(s), expected 1; "
                f"default index not configured"
            )
            return False

        config_doc = hits[0]
        await store.put(
            KIBANA_INDEX,
            "index-pattern",
            DEFAULT_KIBANA_INDEX,
            {"title": DEFAULT_KIBANA_INDEX, "timeFieldName": "timestamp", "fields": "[]"},
        )

        source = dict(config_doc.get("_source") or {})
        source["defaultIndex"] = DEFAULT_KIBANA_INDEX
        await store.put(KIBANA_INDEX, config_doc.get("_type", "config"), config_doc["_id"], source)
    except Exception as e:
        logger.error(f"Could not set up the default Kibana index: {e}")
        return False

    logger.info("Default Kibana index setup complete")
    return True
