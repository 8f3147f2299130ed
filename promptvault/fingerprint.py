from __future__ import annotations

import hashlib
from typing import Mapping, Optional


def fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def fingerprint_multi(contents: Mapping[str, str]) -> str:
    """Digest of a path -> content map; independent of the map's order."""
    hasher = hashlib.sha256()
    for path in sorted(contents):
        hasher.update(path.encode("utf-8"))
        hasher.update(b"\n")
        hasher.update(contents[path].encode("utf-8"))
        hasher.update(b"\n")
    return hasher.hexdigest()


def fingerprint_for(content: str, multi_file_contents: Optional[Mapping[str, str]]) -> str:
    # Hash the same representation that gets stored.
    if multi_file_contents is not None:
        return fingerprint_multi(multi_file_contents)
    return fingerprint(content)
