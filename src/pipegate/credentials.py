# credentials.py
from __future__ import annotations

import os
from typing import Dict, Iterable, Mapping, Optional

MASK = "***"


class Credential:
    """
    A secret value handed to exactly one gated Runner call.
    Never prints its value; call reveal() at the point of use.
    """

    __slots__ = ("name", "_value")

    def __init__(self, name: str, value: str):
        self.name = name
        self._value = value

    def reveal(self) -> str:
        return self._value

    def mask(self, text: str) -> str:
        if not self._value:
            return text
        return text.replace(self._value, MASK)

    def __repr__(self) -> str:
        return f"Credential({self.name!r}, {MASK})"

    __str__ = __repr__


class SecretStore:
    """Read-only lookup of credentials by name, loaded once per run."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    @classmethod
    def from_env(cls, names: Iterable[str], environ: Optional[Mapping[str, str]] = None) -> "SecretStore":
        env = os.environ if environ is None else environ
        return cls({n: env[n] for n in names if env.get(n)})

    def get(self, name: Optional[str]) -> Optional[Credential]:
        if not name or name not in self._values:
            return None
        return Credential(name, self._values[name])

    def names(self) -> list[str]:
        return sorted(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __repr__(self) -> str:
        return f"SecretStore({self.names()})"
