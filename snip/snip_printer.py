"""
Formatters for submission results and faults.
"""
import collections.abc
import dataclasses
import traceback
from typing import Callable, Optional

from snip.snip_config import PrinterConfig

SUBMISSION_FILE_PREFIX = "<submission"

_PLAIN_MODULES = ("builtins", "__main__", "__snip__")


class Printer:
    """Formats result values into readable, Python-like text."""

    def __init__(self, config: Optional[PrinterConfig] = None):
        config = config or PrinterConfig()
        self.max_depth = config.max_depth
        self.max_items = config.max_items
        self.max_string = config.max_string
        self._handlers = self._create_handlers()
        self._active: set = set()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return self._pformat_dataclass
        return self._pformat_repr

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_repr,
            float: self._pformat_repr,
            complex: self._pformat_repr,
            bool: self._pformat_repr,
            type(None): self._pformat_repr,
            bytes: self._pformat_bytes,
            list: self._pformat_list,
            tuple: self._pformat_tuple,
            set: self._pformat_set,
            frozenset: self._pformat_set,
            dict: self._pformat_dict,
        }

    def _pformat_repr(self, obj, level):
        try:
            return repr(obj)
        except Exception:
            return f"<unrepresentable {type(obj).__name__}>"

    def _pformat_str(self, obj, level):
        if len(obj) > self.max_string:
            return repr(obj[:self.max_string]) + "..."
        return repr(obj)

    def _pformat_bytes(self, obj, level):
        if len(obj) > self.max_string:
            return repr(obj[:self.max_string]) + "..."
        return repr(obj)

    def _items(self, iterable, level, fmt):
        parts = []
        for i, item in enumerate(iterable):
            if i >= self.max_items:
                parts.append("...")
                break
            parts.append(fmt(item, level + 1))
        return ", ".join(parts)

    def _nested(self, obj, level, open_, close, body: Callable[[], str]):
        if id(obj) in self._active or level >= self.max_depth:
            return f"{open_}...{close}"
        self._active.add(id(obj))
        try:
            return f"{open_}{body()}{close}"
        finally:
            self._active.discard(id(obj))

    def _pformat_list(self, obj, level):
        return self._nested(obj, level, "[", "]", lambda: self._items(obj, level, self.pformat))

    def _pformat_tuple(self, obj, level):
        if len(obj) == 1:
            return self._nested(obj, level, "(", ",)", lambda: self._items(obj, level, self.pformat))
        return self._nested(obj, level, "(", ")", lambda: self._items(obj, level, self.pformat))

    def _pformat_set(self, obj, level):
        name = type(obj).__name__
        if not obj:
            return f"{name}()"
        try:
            ordered = sorted(obj)
        except TypeError:
            ordered = list(obj)
        inner = self._nested(obj, level, "{", "}", lambda: self._items(ordered, level, self.pformat))
        return inner if isinstance(obj, set) else f"{name}({inner})"

    def _pformat_dict(self, obj: collections.abc.Mapping, level):
        def pair(item, lvl):
            k, v = item
            return f"{self.pformat(k, lvl)}: {self.pformat(v, lvl)}"
        return self._nested(obj, level, "{", "}", lambda: self._items(obj.items(), level, pair))

    def _pformat_dataclass(self, obj, level):
        def body():
            parts = [
                f"{f.name}={self.pformat(getattr(obj, f.name), level + 1)}"
                for f in dataclasses.fields(obj) if f.repr
            ]
            return ", ".join(parts)
        return self._nested(obj, level, f"{type(obj).__qualname__}(", ")", body)


def exception_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ in _PLAIN_MODULES:
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


class FaultFormatter:
    """Formats an exception raised by a submission, with a short submission-only trace."""

    def __init__(self, trace_depth: int = 5,
                 source_lookup: Optional[Callable[[str], Optional[str]]] = None):
        self.trace_depth = trace_depth
        self.source_lookup = source_lookup

    def format(self, exc: BaseException) -> str:
        lines = []
        seen = set()
        current: Optional[BaseException] = exc
        first = True
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            header = self._headline(current)
            lines.append(header if first else f"Caused by: {header}")
            lines.extend(self._frames(current))
            first = False
            if current.__cause__ is not None:
                current = current.__cause__
            elif not current.__suppress_context__:
                current = current.__context__
            else:
                current = None
        return "\n".join(lines)

    def _headline(self, exc: BaseException) -> str:
        name = exception_name(exc)
        message = str(exc)
        return f"{name}: {message}" if message else name

    def _frames(self, exc: BaseException):
        if not self.trace_depth:
            return []
        frames = [
            f for f in traceback.extract_tb(exc.__traceback__)
            if f.filename.startswith(SUBMISSION_FILE_PREFIX)
        ]
        out = []
        for f in frames[-self.trace_depth:]:
            where = "" if f.name == "<module>" else f", in {f.name}"
            out.append(f"  at {f.filename}, line {f.lineno}{where}")
            text = self._source_line(f)
            if text:
                out.append(f"    {text}")
        return out

    def _source_line(self, frame: traceback.FrameSummary) -> str:
        if self.source_lookup is not None and frame.lineno:
            source = self.source_lookup(frame.filename)
            if source is not None:
                lines = source.splitlines()
                if 0 < frame.lineno <= len(lines):
                    return lines[frame.lineno - 1].strip()
        return (frame.line or "").strip()
