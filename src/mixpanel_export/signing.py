"""Query construction and request signing for the Mixpanel data export API.

Mixpanel's legacy export endpoint authenticates a request by an MD5 digest
over the canonical query string plus the project secret, sent as ``sig``.
"""

import hashlib
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

SIGNATURE_PARAM = "sig"

# Resolved at import: a Python build without MD5 cannot talk to this API at all.
_DIGEST = hashlib.md5


class Query:
    """
    Multi-valued query parameters, mutable until signed.

    Mirrors form-encoded query semantics: a name maps to one or more string
    values. ``set`` replaces, ``add`` appends.
    """

    def __init__(self, params: Mapping[str, str | Iterable[str]] | None = None):
        self._params: dict[str, list[str]] = {}
        if params:
            self.update(params)

    def set(self, name: str, value: object) -> None:
        self._params[name] = [str(value)]

    def add(self, name: str, value: object) -> None:
        self._params.setdefault(name, []).append(str(value))

    def update(self, params: "Mapping[str, str | Iterable[str]] | Query") -> None:
        """Add every value of params, keeping existing values."""
        items = params.items() if isinstance(params, (Mapping, Query)) else params
        for name, values in items:
            if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
                self.add(name, values)
            else:
                for value in values:
                    self.add(name, value)

    def remove(self, name: str) -> None:
        self._params.pop(name, None)

    def get(self, name: str) -> str | None:
        values = self._params.get(name)
        return values[0] if values else None

    def get_all(self, name: str) -> list[str]:
        return list(self._params.get(name, []))

    def items(self) -> Iterator[tuple[str, list[str]]]:
        for name, values in self._params.items():
            yield name, list(values)

    def copy(self) -> "Query":
        return Query(dict(self.items()))

    def encode(self) -> str:
        return canonical_query_string(self)

    def __contains__(self, name: object) -> bool:
        return name in self._params

    def __len__(self) -> int:
        return len(self._params)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Query):
            return NotImplemented
        return self._params == other._params

    def __repr__(self) -> str:
        return f"Query({self._params!r})"


@dataclass(frozen=True)
class SignedQuery:
    """An immutable query with its ``sig`` attached. Re-sign to change it."""

    params: tuple[tuple[str, tuple[str, ...]], ...]
    signature: str

    def encode(self) -> str:
        """Query string with ``sig`` appended after the signed parameters."""
        return urlencode(self.to_pairs())

    def to_pairs(self) -> list[tuple[str, str]]:
        """Flat (name, value) pairs including ``sig``, for HTTP client params."""
        return [*self._pairs(), (SIGNATURE_PARAM, self.signature)]

    def get(self, name: str) -> str | None:
        if name == SIGNATURE_PARAM:
            return self.signature
        for key, values in self.params:
            if key == name and values:
                return values[0]
        return None

    def _pairs(self) -> list[tuple[str, str]]:
        return [(name, value) for name, values in self.params for value in values]


def canonical_query_string(params: "Query | Mapping[str, str | Iterable[str]]") -> str:
    """
    Deterministic form encoding: names sorted, values kept in insertion order
    within a name, ``sig`` excluded.
    """
    query = params if isinstance(params, Query) else Query(params)
    pairs = [
        (name, value)
        for name, values in sorted(query.items(), key=lambda item: item[0])
        if name != SIGNATURE_PARAM
        for value in values
    ]
    return urlencode(pairs)


def compute_signature(params: "Query | Mapping[str, str | Iterable[str]]", secret: str) -> str:
    digest = _DIGEST()
    digest.update(canonical_query_string(params).encode("utf-8"))
    digest.update(secret.encode("utf-8"))
    return digest.hexdigest()


def sign(params: "Query | Mapping[str, str | Iterable[str]]", secret: str) -> SignedQuery:
    """
    Sign query parameters with the API secret.

    Any ``sig`` already present is discarded and recomputed. The returned
    SignedQuery is frozen; the input is left untouched.

    Args:
        params: Query or mapping of name to value(s)
        secret: Mixpanel API secret

    Returns:
        SignedQuery carrying the canonical parameters and hex signature
    """
    query = params if isinstance(params, Query) else Query(params)
    frozen = tuple(
        (name, tuple(values))
        for name, values in sorted(query.items(), key=lambda item: item[0])
        if name != SIGNATURE_PARAM
    )
    return SignedQuery(params=frozen, signature=compute_signature(query, secret))


__all__ = [
    "SIGNATURE_PARAM",
    "Query",
    "SignedQuery",
    "canonical_query_string",
    "compute_signature",
    "sign",
]
