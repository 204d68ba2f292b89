from __future__ import annotations

import functools
import platform
import sys
from importlib import metadata
from typing import Any, Callable, Optional

_ENV_PACKAGES = ("sumbench", "numpy", "pandas")


def _package_version(name: str) -> Optional[str]:
    try:
        return metadata.version(name)
    except Exception:
        return None


@functools.lru_cache(maxsize=None)
def _module_distribution(top_level: str) -> Optional[str]:
    try:
        dists = metadata.packages_distributions().get(top_level) or []
    except Exception:
        return None
    return dists[0] if dists else None


def package_provenance(fn: Callable[..., Any]) -> dict[str, Optional[str]]:
    """Return the distribution name/version that provides ``fn``.

    Functions defined in ``__main__`` or in plain scripts have no
    distribution; both fields are ``None`` then.
    """
    while isinstance(fn, functools.partial):
        fn = fn.func
    module = getattr(fn, "__module__", None) or ""
    top_level = module.split(".")[0]
    if not top_level or top_level == "__main__":
        return {"pkg_name": None, "pkg_vers": None}
    dist = _module_distribution(top_level)
    if dist is None:
        name = top_level if top_level in sys.modules else None
        return {"pkg_name": name, "pkg_vers": None}
    return {"pkg_name": dist, "pkg_vers": _package_version(dist)}


def environment_info() -> dict[str, Any]:
    return {
        "python": platform.python_version(),
        "platform": platform.platform(),
        "packages": {name: _package_version(name) for name in _ENV_PACKAGES},
    }


__all__ = ["package_provenance", "environment_info"]
