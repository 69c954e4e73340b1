"""
TLE record model and parsers for the two formats CelesTrak serves.

Text payloads use the classic 2-line or 3-line (name + 2 lines) layout. JSON
payloads are GP records whose key casing has drifted over time, so keys are
matched case-insensitively against a list of known aliases.
"""
import json
from dataclasses import dataclass
from typing import Optional

from tlecache.errors import MalformedRecord, NoUsableRecords, PayloadDecodeError

LINE1_MARKER = '1 '
LINE2_MARKER = '2 '
DEBRIS_MARKER = 'DEB'

NAME_KEYS = ('object_name', 'objectname', 'object')
LINE1_KEYS = ('tle_line1', 'tle_line_1', 'tle1', 'line1')
LINE2_KEYS = ('tle_line2', 'tle_line_2', 'tle2', 'line2')


@dataclass(frozen=True)
class TLE:
    """A single element set: optional name plus the two data lines."""
    name: Optional[str]
    line1: str
    line2: str

    @property
    def norad_id(self) -> Optional[int]:
        """NORAD catalog number from columns 3-7 of line 1, if present."""
        if len(self.line1) < 7:
            return None
        try:
            return int(self.line1[2:7].strip())
        except ValueError:
            return None


def parse_tle_text(text: str) -> list[TLE]:
    """Parse 2-line and 3-line TLE text.

    Args:
        text: Raw TLE text; blank lines and surrounding whitespace are ignored

    Returns:
        Records in input order

    Raises:
        MalformedRecord: If any record is incomplete or out of order. Line
            numbers are 1-based over the non-blank lines.
    """
    lines = [l.strip() for l in text.splitlines() if l.strip()]
    records = []
    i = 0

    while i < len(lines):
        if lines[i].startswith(LINE1_MARKER):
            if i + 1 >= len(lines):
                raise MalformedRecord(i + 1, 'Missing line 2 for 2-line TLE')
            if not lines[i + 1].startswith(LINE2_MARKER):
                raise MalformedRecord(i + 2, "Expected line 2 to start with '2 '")
            records.append(TLE(name=None, line1=lines[i], line2=lines[i + 1]))
            i += 2
        else:
            if i + 2 >= len(lines):
                raise MalformedRecord(i + 1, 'Incomplete 3-line TLE block')
            if not lines[i + 1].startswith(LINE1_MARKER):
                raise MalformedRecord(i + 2, "Expected line 1 to start with '1 '")
            if not lines[i + 2].startswith(LINE2_MARKER):
                raise MalformedRecord(i + 3, "Expected line 2 to start with '2 '")
            records.append(TLE(name=lines[i], line1=lines[i + 1], line2=lines[i + 2]))
            i += 3

    return records


def _lookup(record: dict, key_map: dict, aliases) -> Optional[str]:
    for alias in aliases:
        key = key_map.get(alias)
        if key is None:
            continue
        value = record[key]
        if isinstance(value, str):
            return value
    return None


def _record_to_tle(record) -> Optional[TLE]:
    if not isinstance(record, dict):
        return None

    # First-seen casing wins when the server repeats a key
    key_map = {}
    for key in record:
        key_map.setdefault(str(key).lower(), key)

    line1 = _lookup(record, key_map, LINE1_KEYS)
    line2 = _lookup(record, key_map, LINE2_KEYS)
    if line1 is None or line2 is None:
        return None
    return TLE(name=_lookup(record, key_map, NAME_KEYS), line1=line1, line2=line2)


def parse_json_payload(payload: bytes) -> list[TLE]:
    """Parse a CelesTrak GP JSON array into TLE records.

    Records without both TLE lines are dropped.

    Raises:
        PayloadDecodeError: If the payload is not a JSON array
        NoUsableRecords: If no record carried both TLE lines
    """
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, ValueError) as e:
        raise PayloadDecodeError(str(e)) from e

    if not isinstance(data, list):
        raise PayloadDecodeError(f'expected a JSON array, got {type(data).__name__}')

    tles = [tle for tle in (_record_to_tle(r) for r in data) if tle is not None]
    if not tles:
        raise NoUsableRecords()
    return tles


def parse_payload(payload: bytes, content_type: str) -> list[TLE]:
    """Pick the parser matching a content type tag."""
    if content_type.startswith('application/json'):
        return parse_json_payload(payload)
    return parse_tle_text(payload.decode('utf8', errors='replace'))


def exclude_debris(tles: list[TLE]) -> list[TLE]:
    """Drop debris objects (names containing 'DEB'); unnamed records are kept."""
    return [t for t in tles if t.name is None or DEBRIS_MARKER not in t.name.upper()]
