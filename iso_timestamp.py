"""
========================================================================================================================
`Iso8601` – a deferred-validation wrapper for the *untrusted* timestamps found in externally supplied records
========================================================================================================================

Goal
----
Keep a timestamp exactly as a remote producer sent it, and only *evaluate* it when somebody needs to
compare, sort or convert it.

Why?
•  Construction never fails, so callers that only display or store the text need no error handling.
•  Two differently formatted strings may denote the same instant, so the raw text is never compared.
•  Producers are sloppy: missing separators, missing time, missing zone, the Unicode minus sign…

Parsing strategy
----------------
Strict first, permissive second, strict again:

1. The raw text is parsed as RFC 3339 (`parse_rfc3339`).  If that works we are done.
2. Otherwise a loose ISO 8601 pattern (`extract_rfc3339`) pulls out the date/time/zone pieces,
   fills in defaults for everything omitted and assembles a complete RFC 3339 candidate:

       YYYY[[-]MM[[-]DD]][(T|spaces)hh[[:]mm[[:]ss[(.|,)fraction]]]][spaces][Z | ±hh[[:]mm]]

   Omitted month/day become `01`, omitted time becomes `00:00:00`, an omitted zone means UTC.
   The sign of the zone may be an ASCII hyphen or U+2212 (MINUS SIGN).  Hour `24` is not supported.
3. The candidate goes through `parse_rfc3339` again, the one place that decides what is a valid
   calendar date and a valid UTC offset (e.g. `+25` matches the pattern but is rejected here).

Comparison
----------
There are two deliberately *different* relations:

* Meaning equality (`meaning_eq` / `partial_cmp`, also behind `==`, `<`, …) compares instants and
  holds only between two valid timestamps.  Like float NaN, an invalid timestamp is unequal to
  everything, itself included, and is neither smaller nor greater than anything.
* Sort order (`sort_cmp` / `sort_key`) is total: invalid timestamps are equal to each other and
  sort *before* every valid one.

Leap seconds (`:60`) are accepted and kept; they order after `:59.999…` of the same minute.

Year `0000` is rejected: `Instant` is built on Python's `datetime`, whose calendar starts at year 1.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from utils import quote

_NANOS_PER_SECOND = 1_000_000_000
_SECONDS_PER_DAY = 86_400


class TimestampError(ValueError):
    """A timestamp was not recognized as ISO 8601 / RFC 3339.

    `raw` is the original text, `candidate` the RFC 3339 string assembled from it (if any).
    """

    def __init__(self, message: str, raw: str, candidate: Optional[str] = None):
        super().__init__(message)
        self.raw = raw
        self.candidate = candidate


# ---------------------------------------------------------------------
# Validated instant
# ---------------------------------------------------------------------
class Instant(BaseModel):
    """A fully specified calendar date and time at a fixed UTC offset."""

    model_config = ConfigDict(frozen=True)

    local: datetime         # naive wall-clock time at `offset`, whole seconds
    nanosecond: int = 0     # >= 1e9 marks a leap second (second 59 + one more second)
    offset: int = 0         # seconds east of UTC

    @property
    def is_leap_second(self) -> bool:
        return self.nanosecond >= _NANOS_PER_SECOND

    @property
    def utc_key(self):
        """(whole seconds since 0001-01-01 UTC, nanosecond); the only basis for comparing instants."""
        loc = self.local
        seconds = (loc.toordinal() - 1) * _SECONDS_PER_DAY + loc.hour * 3600 + loc.minute * 60 + loc.second
        return seconds - self.offset, self.nanosecond

    def rfc3339(self) -> str:
        loc = self.local
        second, nanos = loc.second, self.nanosecond
        if nanos >= _NANOS_PER_SECOND:
            second += 1
            nanos -= _NANOS_PER_SECOND

        if nanos == 0:
            fraction = ""
        elif nanos % 1_000_000 == 0:
            fraction = f".{nanos // 1_000_000:03d}"
        elif nanos % 1_000 == 0:
            fraction = f".{nanos // 1_000:06d}"
        else:
            fraction = f".{nanos:09d}"

        sign = "-" if self.offset < 0 else "+"
        off_h, off_m = divmod(abs(self.offset) // 60, 60)
        return (f"{loc.year:04d}-{loc.month:02d}-{loc.day:02d}"
                f"T{loc.hour:02d}:{loc.minute:02d}:{second:02d}{fraction}"
                f"{sign}{off_h:02d}:{off_m:02d}")

    def to_datetime(self) -> datetime:
        """Aware datetime at microsecond resolution; a leap second collapses onto :59.999999."""
        micros = min(self.nanosecond, _NANOS_PER_SECOND - 1) // 1_000
        return self.local.replace(microsecond=micros, tzinfo=timezone(timedelta(seconds=self.offset)))


# ---------------------------------------------------------------------
# Strict RFC 3339 parser (the single acceptance gate)
# ---------------------------------------------------------------------
_RFC3339_RE = re.compile(r"""
    (?P<Y>\d{4})-(?P<M>\d{2})-(?P<D>\d{2})
    [Tt]
    (?P<h>\d{2}):(?P<m>\d{2}):(?P<s>\d{2})
    (?:\.(?P<ss>\d+))?
    (?:
        [Zz]
      | (?P<Zsgn>[+-])(?P<Zhrs>\d{2}):(?P<Zmin>\d{2})
    )
""", re.VERBOSE | re.ASCII)


def parse_rfc3339(text: str) -> Instant:
    """Parse a complete RFC 3339 timestamp, validating every component range."""
    m = _RFC3339_RE.fullmatch(text)
    if not m:
        raise TimestampError(f"Not an RFC 3339 timestamp: {quote(text)}", text)

    def fail(reason):
        return TimestampError(f"Invalid RFC 3339 timestamp {quote(text)}: {reason}", text)

    year, month, day = int(m['Y']), int(m['M']), int(m['D'])
    hour, minute, second = int(m['h']), int(m['m']), int(m['s'])

    try:
        date(year, month, day)
    except ValueError as e:
        raise fail(e) from e
    if hour > 23:
        raise fail(f"hour {hour:02d} out of range")
    if minute > 59:
        raise fail(f"minute {minute:02d} out of range")
    if second > 60:
        raise fail(f"second {second:02d} out of range")

    offset = 0
    if m['Zsgn']:
        off_h, off_m = int(m['Zhrs']), int(m['Zmin'])
        if off_h > 23 or off_m > 59:
            raise fail(f"offset {m['Zsgn']}{m['Zhrs']}:{m['Zmin']} out of range")
        offset = (off_h * 3600 + off_m * 60) * (-1 if m['Zsgn'] == "-" else 1)

    # nanosecond resolution; further digits are dropped
    nanos = int(m['ss'][:9].ljust(9, "0")) if m['ss'] else 0
    if second == 60:
        second = 59
        nanos += _NANOS_PER_SECOND

    return Instant(local=datetime(year, month, day, hour, minute, second), nanosecond=nanos, offset=offset)


# ---------------------------------------------------------------------
# Permissive ISO 8601 extractor
# ---------------------------------------------------------------------
_ISO8601_RE = re.compile(r"""
    (?P<Y>\d{4})
    (?:                 # always 4-digit year, double-digit month/day: YYYY[[-]MM[[-]DD]]
      -?
      (?P<M>
          0[1-9]
        | 1[012]
      )?
      (?:
        -?
        (?P<D>
            0[1-9]
          | [12][0-9]
          | 3[01]
        )?
      )?
    )?
    (?:
      (?:               # T or space(s)
          [Tt]
        | \s+
      )
      (?P<h>            # double-digit hh[[:]mm[[:]ss]]
          [01][0-9]
        | 2[0-3]        # no 24:00:00 end-of-day midnight
      )
      (?:
        :?
        (?P<m>[0-5][0-9])
        (?:             # seconds optional, implies 00
          :?
          (?P<s>
              [0-5][0-9]
            | 60        # leap second
          )
          (?:
            [.,]
            (?P<ss>\d+)
          )?
        )?
      )?
    )?
    \s*
    (?P<Z>              # no zone implies Z
        [Zz]
      | (?P<Zsgn>[+\-−])   # ASCII or Unicode minus
        (?P<Zhrs>\d{2})     # always double-digit hours
        (?:                 # colon optional before double-digit minutes
          :?
          (?P<Zmin>\d{2})
        )?
    )?
""", re.VERBOSE)


def extract_rfc3339(text: str) -> str:
    """
    Match *text* against the loose ISO 8601 pattern and return the complete RFC 3339
    candidate built from it.  The candidate is not validated here.
    Surrounding whitespace is stripped before matching.
    """
    m = _ISO8601_RE.fullmatch(text.strip())
    if not m:
        raise TimestampError(f"Failed to find RFC 3339 or ISO 8601 timestamp in {quote(text)}", text)

    fraction = f".{m['ss']}" if m['ss'] else ""
    if m['Z'] is None or m['Z'] in ("Z", "z"):
        zone = "Z"
    else:
        sign = "+" if m['Zsgn'] == "+" else "-"
        zone = f"{sign}{m['Zhrs']}:{m['Zmin'] or '00'}"

    return "{}-{}-{}T{}:{}:{}{}{}".format(
        m['Y'],
        m['M'] or "01",
        m['D'] or "01",
        m['h'] or "00",
        m['m'] or "00",
        m['s'] or "00",
        fraction,
        zone,
    )


def to_instant(text: str) -> Instant:
    """Strict parse, else permissive extraction followed by a strict re-parse of the candidate."""
    try:
        return parse_rfc3339(text)
    except TimestampError:
        pass

    candidate = extract_rfc3339(text)
    try:
        return parse_rfc3339(candidate)
    except TimestampError as e:
        raise TimestampError(
            f"Failed to convert RFC 3339 timestamp {quote(candidate)} from ISO 8601 {quote(text)}: {e}",
            text, candidate) from e


# ---------------------------------------------------------------------
# The value type
# ---------------------------------------------------------------------
class Iso8601:
    """
    A timestamp kept as the raw text it arrived as.

    Nothing is validated at construction; every comparison re-derives the `Instant`.
    `==` and the ordering operators follow meaning equality (NaN-like for invalid values),
    sorting should use `sort_key` (or `sort_cmp`), which is a total order.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: Any):
        object.__setattr__(self, "_raw", raw if isinstance(raw, str) else str(raw))

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    # copy / pickle rebuild through __init__, since slot state cannot be set on an immutable value
    def __reduce__(self):
        return (type(self), (self._raw,))

    @property
    def raw(self) -> str:
        return self._raw

    def to_instant(self) -> Instant:
        return to_instant(self._raw)

    def to_datetime(self) -> datetime:
        return self.to_instant().to_datetime()

    def _try_instant(self) -> Optional[Instant]:
        try:
            return self.to_instant()
        except TimestampError:
            return None

    def is_valid(self) -> bool:
        return self._try_instant() is not None

    # --- meaning equality / partial order ------------------------------
    def partial_cmp(self, other: "Iso8601") -> Optional[int]:
        """-1, 0 or 1 comparing the two instants; None if either one is invalid."""
        lhs = self._try_instant()
        if lhs is None:
            return None
        rhs = other._try_instant()
        if rhs is None:
            return None
        a, b = lhs.utc_key, rhs.utc_key
        return (a > b) - (a < b)

    def meaning_eq(self, other: "Iso8601") -> bool:
        """True only if both are valid and denote the same instant; never true for an invalid value."""
        return self.partial_cmp(other) == 0

    def __eq__(self, other):
        if not isinstance(other, Iso8601):
            return NotImplemented
        return self.meaning_eq(other)

    def __ne__(self, other):
        if not isinstance(other, Iso8601):
            return NotImplemented
        return not self.meaning_eq(other)

    def __lt__(self, other):
        if not isinstance(other, Iso8601):
            return NotImplemented
        return self.partial_cmp(other) == -1

    def __le__(self, other):
        if not isinstance(other, Iso8601):
            return NotImplemented
        return self.partial_cmp(other) in (-1, 0)

    def __gt__(self, other):
        if not isinstance(other, Iso8601):
            return NotImplemented
        return self.partial_cmp(other) == 1

    def __ge__(self, other):
        if not isinstance(other, Iso8601):
            return NotImplemented
        return self.partial_cmp(other) in (0, 1)

    def __hash__(self):
        instant = self._try_instant()
        return hash(instant.utc_key) if instant is not None else hash(self._raw)

    # --- total sort order ----------------------------------------------
    # Invalid timestamps are all equal to each other and come before every valid one:
    # first in an ascending sort, last in a descending one.
    def sort_key(self) -> tuple:
        instant = self._try_instant()
        if instant is None:
            return (0,)
        return (1,) + instant.utc_key

    def sort_cmp(self, other: "Iso8601") -> int:
        a, b = self.sort_key(), other.sort_key()
        return (a > b) - (a < b)

    # --- display -------------------------------------------------------
    def __str__(self):
        return f'"{self._raw}"'

    def __repr__(self):
        try:
            canonical = self.to_instant().rfc3339()
        except TimestampError as e:
            return f'Iso8601("{self._raw}" -> {e})'
        if canonical != self._raw:
            return f'Iso8601("{canonical}" <- "{self._raw}")'
        return f'Iso8601("{self._raw}")'
