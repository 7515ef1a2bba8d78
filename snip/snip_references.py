"""
The reference set: names every submission can resolve without declaring them.
"""
import collections.abc
import importlib
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

from snip.snip_datatypes import ConfigError

logger = logging.getLogger(__name__)


def _parse_spec(spec: str) -> tuple[str, str, bool]:
    """Splits 'pkg.mod as alias' into (module, bound name, bind_submodule)."""
    parts = spec.split()
    match parts:
        case [module]:
            # `import os.path` binds `os`
            return module, module.split('.')[0], False
        case [module, "as", alias] if alias.isidentifier():
            return module, alias, True
        case _:
            raise ConfigError(f"invalid reference: {spec!r}")


class ReferenceSet(collections.abc.Mapping):
    """Immutable name -> object mapping, supplied once per session."""

    def __init__(self, bindings: Optional[Mapping[str, Any]] = None):
        self._bindings: Dict[str, Any] = dict(bindings or {})
        self._view = MappingProxyType(self._bindings)

    @classmethod
    def from_modules(cls, specs: Iterable[str]) -> 'ReferenceSet':
        bindings: Dict[str, Any] = {}
        for spec in specs:
            module_name, name, bind_submodule = _parse_spec(spec)
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                raise ConfigError(f"cannot load reference {module_name!r}: {e}") from e
            if not bind_submodule:
                module = importlib.import_module(name)
            bindings[name] = module
            logger.debug(f"Reference loaded: {spec}")
        return cls(bindings)

    def __getitem__(self, key: str) -> Any:
        return self._view[key]

    def __iter__(self):
        return iter(self._view)

    def __len__(self) -> int:
        return len(self._view)

    @property
    def names(self) -> frozenset:
        return frozenset(self._bindings)

    def __repr__(self) -> str:
        return f"<ReferenceSet names=[{', '.join(sorted(self._bindings))}]>"
