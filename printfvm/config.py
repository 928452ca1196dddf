"""
printf VM — Run Configuration

Defaults live here as module constants. A JSON file can override them:

    {
        "padding": 8000,
        "max_steps": 10000000,
        "max_depth": 100000,
        "annotations": [
            {"name": "user input",  "start": "0x1000", "end": "0x1100"},
            {"name": "flag output", "start": "0x1800", "end": "0x1900"}
        ]
    }

Addresses may be JSON integers or strings in 0x / $ hex or decimal.
Annotation labels only decorate diagnostics; they never change results.
Negative padding or limits are rejected.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

from .dispatch import DEFAULT_MAX_DEPTH, DEFAULT_MAX_STEPS
from .errors import PrintfVMError
from .state import DEFAULT_PADDING, AddressAnnotations, MemoryRegion


class ConfigError(PrintfVMError):
    """Raised for unreadable or malformed configuration files."""


@dataclass
class VMConfig:
    padding: int = DEFAULT_PADDING
    max_steps: int = DEFAULT_MAX_STEPS
    max_depth: int = DEFAULT_MAX_DEPTH
    regions: List[MemoryRegion] = field(default_factory=list)

    @property
    def annotations(self) -> AddressAnnotations:
        return AddressAnnotations(self.regions)


def parse_int(value: Union[int, str]) -> int:
    """Parse an integer that may be hex (0x...), $ prefix, or decimal."""
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    value = value.strip()
    if value.lower().startswith("0x"):
        return int(value, 16)
    if value.startswith("$"):
        return int(value[1:], 16)
    return int(value)


def config_from_dict(data: dict) -> VMConfig:
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a JSON object")
    try:
        regions = [
            MemoryRegion(str(r["name"]), parse_int(r["start"]), parse_int(r["end"]))
            for r in data.get("annotations", [])
        ]
        config = VMConfig(
            padding=parse_int(data.get("padding", DEFAULT_PADDING)),
            max_steps=parse_int(data.get("max_steps", DEFAULT_MAX_STEPS)),
            max_depth=parse_int(data.get("max_depth", DEFAULT_MAX_DEPTH)),
            regions=regions,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration: {e}") from e

    for name in ("padding", "max_steps", "max_depth"):
        if getattr(config, name) < 0:
            raise ConfigError(f"{name} must not be negative")
    return config


def load_config(path: Union[str, Path]) -> VMConfig:
    """Load a VMConfig from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"configuration file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e
    return config_from_dict(data)
