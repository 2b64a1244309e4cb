"""
Caveat kinds, their wire form, and their evaluation against a request.

Wire form is a single line "<kind> = <value>". That exact text is what the
macaroon signature chains over, so serialization must be deterministic.

Evaluators are code, not data: a caveat may carry one bound at creation
time, otherwise it is looked up by kind (or custom identifier) in a
CaveatRegistry when the token is checked.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

from .context import RequestContext
from .errors import CaveatFormatError

Evaluator = Callable[[RequestContext, Any], bool]

SEPARATOR = " = "


class CaveatKind(str, Enum):
    EXPIRATION = "expiration"
    PATH = "path"
    METHOD = "method"
    IP = "ip"
    ORIGIN = "origin"
    PAYMENT_HASH = "payment_hash"
    CUSTOM = "custom"


@dataclass(frozen=True)
class CustomValue:
    """Payload of a custom caveat."""
    identifier: str
    value: Any


@dataclass(frozen=True)
class Caveat:
    """
    A restriction attached to a macaroon.

    kind is a CaveatKind, or the raw kind text for caveats this library
    does not recognise. evaluator is never serialized.
    """
    kind: Union[CaveatKind, str]
    value: Any
    evaluator: Optional[Evaluator] = field(default=None, compare=False, repr=False)

    @property
    def is_known(self) -> bool:
        return isinstance(self.kind, CaveatKind)

    @property
    def kind_name(self) -> str:
        return self.kind.value if isinstance(self.kind, CaveatKind) else self.kind

    def serialize(self) -> str:
        return serialize_caveat(self)


# --- Serialization ---


def _as_tuple(values: Union[str, Iterable[str]]) -> Tuple[str, ...]:
    if isinstance(values, str):
        return (values,)
    return tuple(values)


def _encode_value(kind: Union[CaveatKind, str], value: Any) -> str:
    if kind == CaveatKind.EXPIRATION:
        return str(int(value))
    if kind == CaveatKind.PAYMENT_HASH:
        return base64.b64encode(bytes(value)).decode("ascii")
    if kind in (CaveatKind.METHOD, CaveatKind.IP, CaveatKind.ORIGIN):
        items = _as_tuple(value)
        for item in items:
            if "," in item:
                raise ValueError(f"{kind.value} caveat entries cannot contain ',': {item!r}")
        return ",".join(items)
    if kind == CaveatKind.CUSTOM:
        return json.dumps(
            {"identifier": value.identifier, "value": value.value},
            separators=(",", ":"),
            sort_keys=True,
        )
    return str(value)


def serialize_caveat(caveat: Caveat) -> str:
    """
    Render a caveat as its single-line wire form.

    Raises:
        ValueError: the kind or value cannot be represented losslessly.
    """
    kind = caveat.kind_name
    if not kind or "=" in kind or any(ch.isspace() for ch in kind):
        raise ValueError(f"Invalid caveat kind: {kind!r}")

    value = _encode_value(caveat.kind, caveat.value)
    if "\n" in value or "\r" in value:
        raise ValueError(f"Caveat value for {kind} must be a single line")

    return f"{kind}{SEPARATOR}{value}"


def parse_caveat(text: str) -> Caveat:
    """
    Parse a caveat line back into a typed Caveat (without an evaluator).

    Raises:
        CaveatFormatError: text is not "<kind> = <value>" or a known kind's
            value does not decode.
    """
    kind_text, sep, value_text = text.partition(SEPARATOR)
    kind_text = kind_text.strip()
    value_text = value_text.strip()
    if not sep or not kind_text or "=" in kind_text:
        raise CaveatFormatError(f"Malformed caveat: {text!r}")

    try:
        kind = CaveatKind(kind_text)
    except ValueError:
        return Caveat(kind=kind_text, value=value_text)

    try:
        if kind == CaveatKind.EXPIRATION:
            value: Any = int(value_text)
        elif kind == CaveatKind.PAYMENT_HASH:
            value = base64.b64decode(value_text, validate=True)
            if len(value) != 32:
                raise CaveatFormatError("payment_hash caveat must decode to 32 bytes")
        elif kind in (CaveatKind.METHOD, CaveatKind.IP, CaveatKind.ORIGIN):
            value = tuple(v.strip() for v in value_text.split(",") if v.strip())
        elif kind == CaveatKind.CUSTOM:
            payload = json.loads(value_text)
            value = CustomValue(identifier=str(payload["identifier"]), value=payload.get("value"))
        else:
            value = value_text
    except CaveatFormatError:
        raise
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise CaveatFormatError(f"Malformed {kind.value} caveat value: {e}") from e

    return Caveat(kind=kind, value=value)


# --- Evaluators ---


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def glob_match(pattern: str, path: str) -> bool:
    """Anchored glob match where '*' matches any run of characters."""
    return _glob_to_regex(pattern).fullmatch(path) is not None


def check_expiration(ctx: RequestContext, deadline_ms: Any) -> bool:
    return ctx.current_time_ms() <= int(deadline_ms)


def check_path(ctx: RequestContext, pattern: Any) -> bool:
    return glob_match(str(pattern), ctx.path)


def check_method(ctx: RequestContext, methods: Any) -> bool:
    allowed = {m.upper() for m in _as_tuple(methods)}
    return ctx.method.upper() in allowed


def check_ip(ctx: RequestContext, ips: Any) -> bool:
    ip = ctx.forwarded_ip
    if not ip:
        return False
    return ip in _as_tuple(ips)


def check_origin(ctx: RequestContext, origins: Any) -> bool:
    origin = ctx.header("origin")
    if not origin:
        return False
    return origin in _as_tuple(origins)


def _payment_hash_checked_elsewhere(ctx: RequestContext, value: Any) -> bool:
    # Proven by the preimage check, not by the request
    return True


DEFAULT_EVALUATORS: Dict[CaveatKind, Evaluator] = {
    CaveatKind.EXPIRATION: check_expiration,
    CaveatKind.PATH: check_path,
    CaveatKind.METHOD: check_method,
    CaveatKind.IP: check_ip,
    CaveatKind.ORIGIN: check_origin,
    CaveatKind.PAYMENT_HASH: _payment_hash_checked_elsewhere,
}


# --- Constructors ---


def expiration_caveat(expires_in_seconds: int, now: Optional[float] = None) -> Caveat:
    """Caveat that expires `expires_in_seconds` from now (stored as epoch ms)."""
    base = time.time() if now is None else now
    deadline_ms = int(base * 1000) + int(expires_in_seconds) * 1000
    return Caveat(CaveatKind.EXPIRATION, deadline_ms, check_expiration)


def path_caveat(pattern: str) -> Caveat:
    """Caveat restricting the request path to a glob, e.g. '/api/protected/*'."""
    return Caveat(CaveatKind.PATH, pattern, check_path)


def method_caveat(methods: Union[str, Sequence[str]]) -> Caveat:
    return Caveat(CaveatKind.METHOD, tuple(m.upper() for m in _as_tuple(methods)), check_method)


def ip_caveat(ips: Union[str, Sequence[str]]) -> Caveat:
    return Caveat(CaveatKind.IP, _as_tuple(ips), check_ip)


def origin_caveat(origins: Union[str, Sequence[str]]) -> Caveat:
    return Caveat(CaveatKind.ORIGIN, _as_tuple(origins), check_origin)


def payment_hash_caveat(payment_hash: bytes) -> Caveat:
    if len(payment_hash) != 32:
        raise ValueError("payment_hash must be exactly 32 bytes")
    return Caveat(CaveatKind.PAYMENT_HASH, bytes(payment_hash), _payment_hash_checked_elsewhere)


def custom_caveat(identifier: str, value: Any, predicate: Evaluator) -> Caveat:
    """
    Caveat checked by a caller-supplied predicate.

    The predicate receives (ctx, value). It is not serialized; register it in
    the gate's CaveatRegistry (the gate does this for configured caveats) so
    tokens carrying this caveat can be checked later.
    """
    if not identifier:
        raise ValueError("custom caveat identifier is required")

    def evaluate(ctx: RequestContext, payload: Any) -> bool:
        if isinstance(payload, CustomValue):
            payload = payload.value
        return bool(predicate(ctx, payload))

    return Caveat(CaveatKind.CUSTOM, CustomValue(identifier, value), evaluate)


# --- Registry & validation ---


class CaveatRegistry:
    """
    Maps caveat kinds (and custom identifiers) to evaluators.

    A caveat with no evaluator found here is unknown. By default unknown
    caveats are satisfied, so tokens issued with restrictions this process
    cannot check still work; strict=True rejects them instead.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self._evaluators: Dict[CaveatKind, Evaluator] = dict(DEFAULT_EVALUATORS)
        self._custom: Dict[str, Evaluator] = {}

    def register(self, kind: CaveatKind, evaluator: Evaluator) -> None:
        self._evaluators[kind] = evaluator

    def register_custom(self, identifier: str, predicate: Evaluator) -> None:
        """Register a predicate for custom caveats; it receives the inner value."""
        self._custom[identifier] = custom_caveat(identifier, None, predicate).evaluator

    def register_caveat(self, caveat: Caveat) -> None:
        """Remember the bound evaluator of a custom caveat by its identifier."""
        if caveat.kind == CaveatKind.CUSTOM and caveat.evaluator is not None:
            self._custom[caveat.value.identifier] = caveat.evaluator

    def resolve(self, caveat: Caveat) -> Optional[Evaluator]:
        if caveat.evaluator is not None:
            return caveat.evaluator
        if caveat.kind == CaveatKind.CUSTOM:
            return self._custom.get(caveat.value.identifier)
        if caveat.is_known:
            return self._evaluators.get(caveat.kind)
        return None


def validate_caveat(
    ctx: RequestContext,
    caveat: Caveat,
    registry: Optional[CaveatRegistry] = None,
) -> bool:
    """Evaluate one caveat. Caveats with no evaluator pass unless strict."""
    if registry is None:
        evaluator = caveat.evaluator
        strict = False
    else:
        evaluator = registry.resolve(caveat)
        strict = registry.strict

    if evaluator is None:
        return not strict

    try:
        return bool(evaluator(ctx, caveat.value))
    except (ValueError, TypeError, KeyError, AttributeError):
        return False


def first_unsatisfied(
    ctx: RequestContext,
    caveats: Iterable[Caveat],
    registry: Optional[CaveatRegistry] = None,
) -> Optional[Caveat]:
    """Return the first caveat that fails for ctx, or None if all pass."""
    for caveat in caveats:
        if not validate_caveat(ctx, caveat, registry):
            return caveat
    return None


def validate_all(
    ctx: RequestContext,
    caveats: Iterable[Caveat],
    registry: Optional[CaveatRegistry] = None,
) -> bool:
    """True iff every caveat is satisfied. An empty list is always satisfied."""
    return first_unsatisfied(ctx, caveats, registry) is None
