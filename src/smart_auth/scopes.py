"""SMART on FHIR scope parsing, serialisation and grant checks.

Grant comparison is a plain string-set difference: ``patient/*.read`` does
**not** satisfy a request for ``patient/Observation.read``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar, Final, Iterable, Iterator, Sequence

from smart_auth.errors import ScopeNotGranted

_CLINICAL_RE: Final[re.Pattern[str]] = re.compile(r"^(patient|user)/[A-Za-z*]+\.(read|write|\*)$")


@dataclass(frozen=True, slots=True)
class Scope:
    """A single scope token, e.g. ``patient/Patient.read``."""

    value: str

    # Well-known SMART scopes, populated below the class body.
    PATIENT_ALL_READ: ClassVar[Scope]
    PATIENT_ALL_WRITE: ClassVar[Scope]
    PATIENT_ALL_FULL: ClassVar[Scope]
    USER_ALL_READ: ClassVar[Scope]
    USER_ALL_WRITE: ClassVar[Scope]
    USER_ALL_FULL: ClassVar[Scope]
    LAUNCH: ClassVar[Scope]
    LAUNCH_PATIENT: ClassVar[Scope]
    OPENID: ClassVar[Scope]
    FHIR_USER: ClassVar[Scope]
    OFFLINE_ACCESS: ClassVar[Scope]
    ONLINE_ACCESS: ClassVar[Scope]

    def __str__(self) -> str:
        return self.value

    @classmethod
    def patient_read(cls, resource_type: str) -> Scope:
        return cls(f"patient/{resource_type}.read")

    @classmethod
    def patient_write(cls, resource_type: str) -> Scope:
        return cls(f"patient/{resource_type}.write")

    @classmethod
    def user_read(cls, resource_type: str) -> Scope:
        return cls(f"user/{resource_type}.read")

    @classmethod
    def user_write(cls, resource_type: str) -> Scope:
        return cls(f"user/{resource_type}.write")


Scope.PATIENT_ALL_READ = Scope("patient/*.read")
Scope.PATIENT_ALL_WRITE = Scope("patient/*.write")
Scope.PATIENT_ALL_FULL = Scope("patient/*.*")
Scope.USER_ALL_READ = Scope("user/*.read")
Scope.USER_ALL_WRITE = Scope("user/*.write")
Scope.USER_ALL_FULL = Scope("user/*.*")
Scope.LAUNCH = Scope("launch")
Scope.LAUNCH_PATIENT = Scope("launch/patient")
Scope.OPENID = Scope("openid")
Scope.FHIR_USER = Scope("fhirUser")
Scope.OFFLINE_ACCESS = Scope("offline_access")
Scope.ONLINE_ACCESS = Scope("online_access")


class ScopeSet(Sequence[Scope]):
    """Ordered, immutable sequence of :class:`Scope` values.

    Order is kept for serialisation; grant checks compare as sets.  A plain
    string is split on spaces, as by :meth:`parse`.
    """

    __slots__ = ("_scopes",)

    def __init__(self, scopes: Iterable[Scope | str] | str = ()) -> None:
        if isinstance(scopes, str):
            scopes = [part for part in scopes.split(" ") if part]
        self._scopes: tuple[Scope, ...] = tuple(
            s if isinstance(s, Scope) else Scope(s) for s in scopes
        )

    @classmethod
    def parse(cls, space_delimited: str | None) -> ScopeSet:
        """Split a space-delimited scope string; runs of spaces are tolerated."""
        return cls(space_delimited or "")

    def combine(self) -> str:
        """Join the scopes with single spaces, preserving insertion order."""
        return " ".join(s.value for s in self._scopes)

    def values(self) -> frozenset[str]:
        return frozenset(s.value for s in self._scopes)

    # Sequence protocol
    def __getitem__(self, index):  # type: ignore[override]
        if isinstance(index, slice):
            return ScopeSet(self._scopes[index])
        return self._scopes[index]

    def __len__(self) -> int:
        return len(self._scopes)

    def __iter__(self) -> Iterator[Scope]:
        return iter(self._scopes)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            item = Scope(item)
        return item in self._scopes

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ScopeSet):
            return self._scopes == other._scopes
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._scopes)

    def __str__(self) -> str:
        return self.combine()

    def __repr__(self) -> str:
        return f"ScopeSet({self.combine()!r})"


def combine(scopes: Iterable[Scope | str] | str) -> str:
    """Module-level shortcut for ``ScopeSet(scopes).combine()``."""
    return ScopeSet(scopes).combine()


def missing(requested: Iterable[Scope | str] | str, granted: str | None) -> ScopeSet:
    """Return requested scopes whose exact string is absent from *granted*."""
    granted_values = ScopeSet.parse(granted).values()
    return ScopeSet(s for s in ScopeSet(requested) if s.value not in granted_values)


def validate(requested: Iterable[Scope | str] | str, granted: str | None) -> None:
    """Raise :class:`ScopeNotGranted` unless every requested scope was granted."""
    absent = missing(requested, granted)
    if absent:
        raise ScopeNotGranted(requested=absent.combine(), granted=granted or "")


def is_clinical_scope(scope: Scope | str) -> bool:
    """Return *True* for ``patient|user/<Resource>.<read|write|*>`` scopes only."""
    return _CLINICAL_RE.fullmatch(str(scope)) is not None
