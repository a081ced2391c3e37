"""Tag records and the builder that assembles them.

WHY: exiftool describes a tag with XML attributes (name, type, writable)
and a list of ``<desc lang="..">`` children, inside a ``<table>`` that
names its group. Clients want one flat object per tag with a qualified
path and a language → description map.

HOW: The decoder collects the raw attributes and the description entries
of one ``<tag>`` element and hands them to build_tag_record(), a pure
function that parses ``writable``, qualifies the path with the active
group and folds the descriptions into a dict.

RULES:
- path is "group:name" when a group is active, the raw name otherwise
- group is "" when no table has been seen
- descriptions are last-write-wins per language, in document order
- A tag without a name, or with an unparseable writable value, raises
  PerTagDecodeError and is skipped by the decoder
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

PATH_SEPARATOR = ":"

# Boolean spellings accepted for the writable attribute
_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class PerTagDecodeError(Exception):
    """Raised when a single ``<tag>`` element cannot be turned into a record.

    WHY: One broken tag should not cost the client the rest of the
    catalog. The decoder catches this, logs it and moves on.

    RULES:
    - Only raised for semantic problems inside one tag
    - Never raised for malformed XML (that is StreamDecodeError)
    """


@dataclass(frozen=True)
class DescriptionEntry:
    """One ``<desc>`` child of a tag, in document order."""

    lang: str
    text: str


@dataclass
class TagRecord:
    """One entry of the tag catalog, ready for serialization.

    RULES:
    - Field order matches the JSON key order of the response
    - descriptions belongs to this record only; never shared
    """

    writable: bool
    path: str
    group: str
    type: str
    descriptions: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "writable": self.writable,
            "path": self.path,
            "group": self.group,
            "type": self.type,
            "descriptions": dict(self.descriptions),
        }


def parse_writable(value: Optional[str]) -> bool:
    """Parse the writable attribute; a missing attribute means False."""
    if value is None:
        return False
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise PerTagDecodeError("Invalid writable value {!r}".format(value))


def qualify_path(group: Optional[str], name: str) -> str:
    if group:
        return "{}{}{}".format(group, PATH_SEPARATOR, name)
    return name


def build_description_map(entries: Iterable[DescriptionEntry]) -> Dict[str, str]:
    descriptions: Dict[str, str] = {}
    for entry in entries:
        descriptions[entry.lang] = entry.text
    return descriptions


def build_tag_record(
    attributes: Mapping[str, str],
    descriptions: Iterable[DescriptionEntry],
    group: Optional[str],
) -> TagRecord:
    """Combine one tag's attributes, descriptions and group into a record.

    WHY: Keeping this step pure lets the path and description rules be
    tested without any XML at all.

    HOW: Reads name/type/writable from the attribute mapping, qualifies
    the name with the group, folds the entries into a dict.

    RULES:
    - Raises PerTagDecodeError if name is missing or empty
    - type defaults to "" when absent
    - group is normalized to "" when None
    """
    name = attributes.get("name")
    if not name:
        raise PerTagDecodeError("Tag without a name attribute")

    return TagRecord(
        writable=parse_writable(attributes.get("writable")),
        path=qualify_path(group, name),
        group=group or "",
        type=attributes.get("type", ""),
        descriptions=build_description_map(descriptions),
    )
