from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


def load_yaml_section(path: Optional[str], section: str) -> Dict[str, Any]:
    """Return the mapping stored under ``section`` in a YAML file.

    A missing path, an unreadable or malformed file, or a section that is not
    a mapping all yield ``{}`` so callers fall back to their defaults.
    """
    if not path:
        return {}
    import yaml  # type: ignore

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring config file {path}: {e}")
        return {}
    body = data.get(section, {}) if isinstance(data, dict) else {}
    if not isinstance(body, dict):
        logger.warning(f"Section '{section}' in {path} is not a mapping; using defaults")
        return {}
    return body


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


@contextmanager
def atomic_path(path: str | Path) -> Iterator[Path]:
    """Yield a sibling temp path; on success it replaces ``path`` in one rename."""
    target = Path(path)
    ensure_dir(target.parent)
    tmp = target.with_suffix(target.suffix + ".tmp")
    try:
        yield tmp
        tmp.replace(target)
    finally:
        if tmp.exists():
            tmp.unlink()
