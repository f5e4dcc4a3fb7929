from __future__ import annotations

import re

from crate_lens.errors import CRATE_NAME_PATTERN, InvalidCrateName

MAX_CRATE_NAME_LENGTH = 64

_NAME_RE = re.compile(CRATE_NAME_PATTERN)


def validate_crate_name(name: str) -> None:
    """
    校验包名：非空、长度不超过 64，且仅包含字母、数字、连字符与下划线。
    """
    if not name:
        raise InvalidCrateName(name, "Crate name cannot be empty")
    if len(name) > MAX_CRATE_NAME_LENGTH:
        raise InvalidCrateName(name, f"Crate name cannot be longer than {MAX_CRATE_NAME_LENGTH} characters")
    if not _NAME_RE.match(name):
        raise InvalidCrateName(name)
