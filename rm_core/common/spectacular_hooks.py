# rm_core/common/spectacular_hooks.py
from __future__ import annotations


def preprocess_exclude_legacy_api(endpoints):
    """
    ROOT_URLCONF mounts the same router at /api/v1/ and at the legacy /api/
    alias. Keep only /api/v1/* in the schema so operation ids stay unique.
    """
    return [
        (path, path_regex, method, callback)
        for path, path_regex, method, callback in endpoints
        if path.startswith("/api/v1/") or not path.startswith("/api/")
    ]
