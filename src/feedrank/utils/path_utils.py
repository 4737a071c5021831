import os
from pathlib import Path
from typing import Optional, Sequence

HOME_ENV = "FEEDRANK_HOME"
ROOT_MARKERS = ("feedrank.yaml", "pyproject.toml")


def find_repo_root(start: Optional[Path] = None, markers: Sequence[str] = ROOT_MARKERS) -> Path:
    """Locate the directory that holds feedrank's data and config files.

    ``FEEDRANK_HOME`` wins when set. Otherwise walk up from ``start`` (this
    file by default) to the first folder containing any of ``markers``, and
    fall back to the working directory for installed copies.
    """
    home = os.environ.get(HOME_ENV)
    if home:
        return Path(home).expanduser().resolve()
    p = (start or Path(__file__).resolve()).parent
    for candidate in [p, *p.parents]:
        if any((candidate / m).exists() for m in markers):
            return candidate
    return Path.cwd()
