"""
Session configuration, loadable from YAML.
"""
import __future__
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Mapping, Optional

import yaml

from snip.snip_datatypes import ConfigError

DEFAULT_REFERENCES = [
    "math", "sys", "os", "re", "json",
    "collections", "itertools", "functools", "asyncio",
]

UNDEFINED_NAME_POLICIES = ("error", "warning", "ignore")


@dataclass
class PrinterConfig:
    max_depth: int = 4
    max_items: int = 100
    max_string: int = 10_000


@dataclass
class SessionConfig:
    references: List[str] = field(default_factory=lambda: list(DEFAULT_REFERENCES))
    # Allows top-level `await` in submissions.
    preview_features: bool = True
    future_flags: List[str] = field(default_factory=list)
    undefined_names: str = "error"
    timeout: Optional[float] = None
    compile_in_executor: bool = True
    trace_depth: int = 5
    printer: PrinterConfig = field(default_factory=PrinterConfig)

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.undefined_names not in UNDEFINED_NAME_POLICIES:
            raise ConfigError(
                f"undefined_names must be one of {', '.join(UNDEFINED_NAME_POLICIES)}, "
                f"not {self.undefined_names!r}"
            )
        if self.timeout is not None and (not isinstance(self.timeout, (int, float)) or self.timeout <= 0):
            raise ConfigError(f"timeout must be a positive number, not {self.timeout!r}")
        if self.trace_depth < 0:
            raise ConfigError("trace_depth must be >= 0")
        for name in self.future_flags:
            if name not in __future__.all_feature_names:
                raise ConfigError(f"unknown __future__ feature: {name!r}")
        for name in ("max_depth", "max_items", "max_string"):
            if getattr(self.printer, name) < 1:
                raise ConfigError(f"printer.{name} must be >= 1")

    @property
    def compile_flags(self) -> int:
        flags = 0
        for name in self.future_flags:
            flags |= getattr(__future__, name).compiler_flag
        return flags

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> 'SessionConfig':
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        printer_data = data.pop("printer", None) or {}
        if not isinstance(printer_data, Mapping):
            raise ConfigError("printer must be a mapping")
        printer_known = {f.name for f in fields(PrinterConfig)}
        unknown = sorted(set(printer_data) - printer_known)
        if unknown:
            raise ConfigError(f"unknown printer keys: {', '.join(unknown)}")
        try:
            return cls(printer=PrinterConfig(**printer_data), **data)
        except TypeError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_yaml(cls, path) -> 'SessionConfig':
        p = Path(path)
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"config file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
        if data is not None and not isinstance(data, Mapping):
            raise ConfigError(f"{path}: top level must be a mapping")
        return cls.from_mapping(data)
