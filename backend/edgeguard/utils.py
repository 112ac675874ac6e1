"""Small helpers shared by several middleware stages."""


def path_has_prefix(path: str, prefix: str) -> bool:
    """
    Prefix match on path-segment boundaries.

    "/api/v1" matches "/api/v1" and "/api/v1/users" but not "/api/v10".
    """
    prefix = prefix.rstrip("/")
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")
