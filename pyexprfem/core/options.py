"""pyexprfem.core.options
Typed option list used to configure assemblers and quadrature.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator


_KINDS = {"int": int, "real": float, "switch": bool, "string": str}


@dataclass
class OptionEntry:
    name: str
    desc: str
    value: Any
    kind: str

    def __repr__(self):
        return f"{self.name} = {self.value!r} ({self.kind}: {self.desc})"


class OptionList:
    """
    Ordered collection of named, typed and documented options.

    Entries are declared once with ``add_*`` and changed afterwards with
    ``set_*``; reading or writing an undeclared key raises ``KeyError``.
    """

    def __init__(self):
        self._entries: Dict[str, OptionEntry] = {}

    # ------------------------------------------------------------------ add
    def _add(self, name: str, desc: str, value, kind: str) -> None:
        self._entries[name] = OptionEntry(name, desc, _KINDS[kind](value), kind)

    def add_int(self, name: str, desc: str, value: int) -> None:
        self._add(name, desc, value, "int")

    def add_real(self, name: str, desc: str, value: float) -> None:
        self._add(name, desc, value, "real")

    def add_switch(self, name: str, desc: str, value: bool) -> None:
        self._add(name, desc, value, "switch")

    def add_string(self, name: str, desc: str, value: str) -> None:
        self._add(name, desc, value, "string")

    # ------------------------------------------------------------------ get
    def _get(self, name: str, kind: str):
        try:
            entry = self._entries[name]
        except KeyError:
            raise KeyError(f"Option '{name}' is not defined.") from None
        if entry.kind != kind:
            raise TypeError(f"Option '{name}' is of kind '{entry.kind}', not '{kind}'.")
        return entry.value

    def get_int(self, name: str) -> int:
        return self._get(name, "int")

    def get_real(self, name: str) -> float:
        return self._get(name, "real")

    def get_switch(self, name: str) -> bool:
        return self._get(name, "switch")

    def get_string(self, name: str) -> str:
        return self._get(name, "string")

    def get(self, name: str):
        if name not in self._entries:
            raise KeyError(f"Option '{name}' is not defined.")
        return self._entries[name].value

    # ------------------------------------------------------------------ set
    def _set(self, name: str, value, kind: str) -> None:
        if name not in self._entries:
            raise KeyError(f"Option '{name}' is not defined.")
        entry = self._entries[name]
        if entry.kind != kind:
            raise TypeError(f"Option '{name}' is of kind '{entry.kind}', not '{kind}'.")
        entry.value = _KINDS[kind](value)

    def set_int(self, name: str, value: int) -> None:
        self._set(name, value, "int")

    def set_real(self, name: str, value: float) -> None:
        self._set(name, value, "real")

    def set_switch(self, name: str, value: bool) -> None:
        self._set(name, value, "switch")

    def set_string(self, name: str, value: str) -> None:
        self._set(name, value, "string")

    def update(self, values: Dict[str, Any]) -> "OptionList":
        """Set several declared options at once, keeping their kinds."""
        for name, value in values.items():
            if name not in self._entries:
                raise KeyError(f"Option '{name}' is not defined.")
            self._set(name, value, self._entries[name].kind)
        return self

    def copy(self) -> "OptionList":
        other = OptionList()
        for e in self._entries.values():
            other._add(e.name, e.desc, e.value, e.kind)
        return other

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[OptionEntry]:
        return iter(self._entries.values())

    def __repr__(self):
        body = "\n".join(f"  {e!r}" for e in self._entries.values())
        return f"OptionList(\n{body}\n)"
