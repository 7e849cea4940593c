"""Reading the key=value configuration file."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import ValidationError

from .errors import ConfigurationError
from .models import Config

logger = logging.getLogger(__name__)

_INDEXED = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\[(\d+)\]$")
_LIST_KEYS = {"largefs"}


def _clean(text: str) -> str:
    text = text.split("#", 1)[0].strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


def parse_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Parse ``NAME=value`` lines into a mapping keyed by lower-case name.

    ``#`` starts a comment, names not starting with a letter are skipped,
    empty values are treated as unset. ``NAME[n]=value`` entries are gathered
    into a list ordered by index.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigurationError(f"cannot open {path}: {e.strerror}")

    values: Dict[str, Any] = {}
    indexed: Dict[str, Dict[int, str]] = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        name, value = line.split("=", 1)
        name = _clean(name)
        value = _clean(value)
        if not name or not name[0].isalpha() or not value:
            continue

        match = _INDEXED.match(name)
        if match:
            key = match.group(1).lower()
            indexed.setdefault(key, {})[int(match.group(2))] = value
        elif name.lower() in _LIST_KEYS:
            values[name.lower()] = value.split()
        else:
            values[name.lower()] = value

    for key, items in indexed.items():
        values[key] = [items[i] for i in sorted(items)]

    unknown = sorted(set(values) - set(Config.model_fields))
    for key in unknown:
        logger.warning("ignoring unknown configuration key %s", key.upper())
        del values[key]
    return values


def load_config(path: Union[str, Path]) -> Config:
    """Load and validate the configuration file."""
    values = parse_config_file(path)
    try:
        return Config(**values)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            field = ".".join(str(part) for part in err["loc"]).upper()
            problems.append(f"{field}: {err['msg']}")
        raise ConfigurationError("; ".join(problems))
