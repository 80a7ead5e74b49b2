"""
从资源 payload 里按路径取值：
    total_spent / $.total_spent
    default_address.country_code
    addresses[0].city
    line_items[*].sku / line_items.sku     -> 列表（对列表隐式 map）
取不到返回 ABSENT；任何异常都降级为 ABSENT，不往外抛。
"""
from __future__ import annotations

import logging, re
from typing import Any, List, Tuple, Union

from app.services.recipe_engine.types import ABSENT


logger = logging.getLogger(__name__)


_TOKEN_RE = re.compile(r"([^.\[\]]+)|\[(\*|-?\d+)\]")

_Token = Tuple[str, Union[str, int]]      # ("key", name) / ("index", n) / ("wildcard", "*")


def _tokenize(path: str) -> List[_Token]:
    path = (path or "").strip()
    if path.startswith("$"):
        path = path[1:].lstrip(".")
    tokens: List[_Token] = []
    pos = 0
    for m in _TOKEN_RE.finditer(path):
        gap = path[pos:m.start()]
        if gap.strip("."):
            raise ValueError(f"invalid path segment {gap!r} in {path!r}")
        pos = m.end()
        name, index = m.group(1), m.group(2)
        if name is not None:
            tokens.append(("key", name.strip()))
        elif index == "*":
            tokens.append(("wildcard", "*"))
        else:
            tokens.append(("index", int(index)))
    if path[pos:].strip("."):
        raise ValueError(f"invalid path tail in {path!r}")
    return tokens


def _step(current: Any, token: _Token) -> Any:
    kind, arg = token

    if kind == "wildcard":
        return list(current) if isinstance(current, list) else ABSENT

    if kind == "index":
        if isinstance(current, list) and -len(current) <= int(arg) < len(current):
            return current[int(arg)]
        return ABSENT

    # key：列表上隐式 map，丢掉取不到的元素
    if isinstance(current, list):
        out = []
        for item in current:
            value = _step(item, token)
            if value is ABSENT:
                continue
            if isinstance(value, list) and isinstance(item, list):
                out.extend(value)
            else:
                out.append(value)
        return out if out else ABSENT

    if isinstance(current, dict):
        return current[arg] if arg in current else ABSENT
    return ABSENT


def get_field_value(data: Any, path: str) -> Any:
    if not path:
        return ABSENT
    try:
        tokens = _tokenize(path)
    except ValueError as e:
        logger.debug("field_accessor.bad_path path=%r err=%s", path, e)
        return ABSENT
    if not tokens:
        return ABSENT

    current = data
    for token in tokens:
        current = _step(current, token)
        if current is ABSENT:
            return ABSENT
    return current


def has_field(data: Any, path: str) -> bool:
    value = get_field_value(data, path)
    return value is not ABSENT and value is not None
