"""
JSON layer for esupgrade.

Backed by `orjson`. Its output is compact (no whitespace after separators),
which is the encoding the dashboards application uses for the serialized
sub-documents we rewrite (`visState`, index pattern `fields`).
"""
from datetime import date, datetime

import orjson


def loads(obj):
    return orjson.loads(obj)


def _default(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


def dumps(obj, **kwargs) -> str:
    option = orjson.OPT_NON_STR_KEYS
    if kwargs.get('indent') == 2:
        option |= orjson.OPT_INDENT_2
    default_fn = kwargs.get('default', _default)
    # orjson dumps returns bytes; callers expect str
    return orjson.dumps(obj, option=option, default=default_fn).decode('utf-8')


def dumps_bytes(obj) -> bytes:
    return orjson.dumps(obj, option=orjson.OPT_NON_STR_KEYS, default=_default)


__all__ = ["loads", "dumps", "dumps_bytes"]
