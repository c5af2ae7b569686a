"""
Lead form parsing

Turns the Graph API `field_data` list of a lead into identity fields plus an
open map of everything else. Never fails: malformed entries are skipped and
missing fields stay None.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

# Lower-cased form field name -> ParsedLead attribute
FIELD_SYNONYMS = {
    'email': 'email',
    'phone_number': 'phone',
    'phone': 'phone',
    'first_name': 'first_name',
    'last_name': 'last_name',
    'full_name': 'full_name',
}


@dataclass
class ParsedLead:
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    custom_fields: Dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> Optional[str]:
        """full_name, else "first last" trimmed, else None."""
        if self.full_name:
            return self.full_name
        joined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return joined or None


def _first_value(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return str(values[0]) if values and values[0] is not None else ''
    if values is None:
        return ''
    return str(values)


def parse_lead_fields(field_data: Optional[Iterable[Dict[str, Any]]]) -> ParsedLead:
    """
    Parse a lead's field_data.

    Only the first value of each field is used. Known fields are matched
    case-insensitively; other field names are kept verbatim in custom_fields.
    Values are not validated.
    """
    parsed = ParsedLead()
    for entry in field_data or []:
        if not isinstance(entry, dict) or not entry.get('name'):
            continue
        name = str(entry['name'])
        value = _first_value(entry.get('values'))
        attribute = FIELD_SYNONYMS.get(name.lower())
        if attribute:
            setattr(parsed, attribute, value)
        else:
            parsed.custom_fields[name] = value
    return parsed
