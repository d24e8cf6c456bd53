"""
Map broker user property keys to HTTP header names.

HTTP gateway brokers carry the original request's headers as user
properties with a field prefix, and the original path/query under a
dedicated key.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

VERBATIM_PATH_KEY = "JMS_Solace_HTTP_target_path_query_verbatim"
REQUEST_PATH_HEADER = "X-Request-Path"
FIELD_PREFIX = "JMS_Solace_HTTP_field_"

logger = logging.getLogger(__name__)


def translate_header_name(key: str) -> str:
    if key == VERBATIM_PATH_KEY:
        return REQUEST_PATH_HEADER
    if key.startswith(FIELD_PREFIX):
        return key[len(FIELD_PREFIX):]
    return key


def translate_properties(
    properties: Mapping[str, str],
    base: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """
    Translate every property key onto a copy of base; values are copied verbatim.

    Header names compare case-insensitively. A later header replaces an
    earlier one with the same name and the replacement is logged.
    """
    headers = dict(base or {})
    seen = {name.lower(): name for name in headers}
    for key, value in properties.items():
        name = translate_header_name(key)
        previous = seen.get(name.lower())
        if previous is not None:
            logger.warning("Header %s from property %s replaces %s", name, key, previous)
            del headers[previous]
        headers[name] = value
        seen[name.lower()] = name
    return headers
