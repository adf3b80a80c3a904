# paths.py
from urllib.parse import quote


def _segments(path: str) -> list:
    """Splits a path into clean segments, resolving '.' and '..' without going above the start."""
    parts = []
    for segment in path.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            # Clamped: '..' at the top stays at the top.
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return parts


def normalize_root(root: str) -> str:
    """Returns the canonical absolute form of a configured root ('' and '/' both become '/')."""
    return "/" + "/".join(_segments(root or ""))


def _is_within(path: str, root: str) -> bool:
    if root == "/":
        return True
    return path == root or path.startswith(root + "/")


def normalize(root: str, relative: str) -> str:
    """
    Joins the configured root with a caller-supplied path and returns the
    canonical absolute remote path.

    The result always stays lexically under the root. A path that already
    starts with '/' and lies inside the root is kept as is, so normalizing
    a normalized path returns it unchanged.
    """
    base = normalize_root(root)
    relative = relative or ""

    if relative.replace("\\", "/").startswith("/"):
        absolute = "/" + "/".join(_segments(relative))
        if _is_within(absolute, base):
            return absolute

    parts = _segments(base) + _segments(relative)
    return "/" + "/".join(parts)


def join(directory: str, name: str) -> str:
    """Joins a root-relative directory and an entry name into a root-relative path."""
    return "/".join(_segments(f"{directory or ''}/{name or ''}"))


def relative_to(root: str, absolute: str) -> str:
    """Turns an absolute remote path under `root` back into a root-relative one."""
    base = _segments(normalize_root(root))
    parts = _segments(absolute)
    if parts[: len(base)] != base:
        raise ValueError(f"'{absolute}' is not under '{normalize_root(root)}'")
    return "/".join(parts[len(base) :])


def url_path(prefix: str, absolute: str) -> str:
    """Builds an endpoint path such as '/list/a/b' from an absolute remote path."""
    return f"{prefix.rstrip('/')}/{quote(absolute.lstrip('/'), safe='/')}"
