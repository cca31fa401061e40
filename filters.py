"""
Filter engine for the club list and map.

Matching is plain case-insensitive substring search. The day filter scans
the schedule text for day names in either language, so a word that merely
contains a day name also matches.
"""
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Tuple

logger = logging.getLogger(__name__)

PRIMARY_LANGUAGE = "fr"
SECONDARY_LANGUAGE = "en"
LANGUAGES = (PRIMARY_LANGUAGE, SECONDARY_LANGUAGE)

DAY_TOKENS: Dict[str, Tuple[str, ...]] = {
    "monday": ("lundi", "monday"),
    "tuesday": ("mardi", "tuesday"),
    "wednesday": ("mercredi", "wednesday"),
    "thursday": ("jeudi", "thursday"),
    "friday": ("vendredi", "friday"),
    "saturday": ("samedi", "saturday"),
    "sunday": ("dimanche", "sunday"),
}


def canonical_day(value: str) -> str:
    """Map 'Lundi', 'monday', 'MONDAY' to 'monday'. Unknown or empty -> ''."""
    v = (value or "").strip().lower()
    if not v:
        return ""
    for day, tokens in DAY_TOKENS.items():
        if v == day or v in tokens:
            return day
    return ""


@dataclass(frozen=True)
class FilterState:
    city: str = ""
    day: str = ""
    search_text: str = ""
    language: str = PRIMARY_LANGUAGE

    @classmethod
    def from_mapping(cls, args: Mapping[str, str]) -> "FilterState":
        raw_day = (args.get("day") or "").strip()
        day = canonical_day(raw_day)
        if raw_day and not day:
            logger.warning(f"Ignoring unknown day filter {raw_day!r}")
        language = (args.get("lang") or PRIMARY_LANGUAGE).strip().lower()
        if language not in LANGUAGES:
            language = PRIMARY_LANGUAGE
        return cls(
            city=(args.get("city") or "").strip(),
            day=day,
            search_text=(args.get("q") or args.get("search") or "").strip(),
            language=language,
        )

    def is_empty(self) -> bool:
        return not (self.city or self.day or self.search_text)

    def cleared(self) -> "FilterState":
        """Reset the predicates but keep the active language."""
        return replace(self, city="", day="", search_text="")


def localized(props: Dict, field: str, language: str) -> str:
    """Secondary-language field, falling back to the primary text when empty."""
    primary = str(props.get(field) or "")
    if language == SECONDARY_LANGUAGE:
        return str(props.get(f"{field}_secondary") or "") or primary
    return primary


def matches_city(props: Dict, city: str) -> bool:
    if not city:
        return True
    return city.lower() in str(props.get("city") or "").lower()


def matches_day(props: Dict, day: str, language: str) -> bool:
    if not day:
        return True
    tokens = DAY_TOKENS.get(day)
    if not tokens:
        return True
    text = localized(props, "frequency", language).lower()
    return any(token in text for token in tokens)


def matches_text(props: Dict, query: str, language: str) -> bool:
    if not query:
        return True
    q = query.lower()
    haystack = " ".join([
        localized(props, "name", language),
        str(props.get("city") or ""),
        localized(props, "description", language),
    ]).lower()
    return q in haystack


def filter_features(features: List[Dict], state: FilterState) -> List[Dict]:
    """Stable filter: returns a new list, input order kept, features untouched."""
    out = []
    for feature in features:
        props = feature.get("properties") or {}
        if not matches_city(props, state.city):
            continue
        if not matches_day(props, state.day, state.language):
            continue
        if not matches_text(props, state.search_text, state.language):
            continue
        out.append(feature)
    return out


def feature_key(feature: Dict) -> str:
    """Stable identity: name plus coordinates, independent of list position."""
    props = feature.get("properties") or {}
    lon, lat = feature["geometry"]["coordinates"][:2]
    return f"{str(props.get('name') or '').strip()}@{float(lat):.6f},{float(lon):.6f}"


def available_cities(features: List[Dict]) -> List[str]:
    seen = {}
    for feature in features:
        city = str((feature.get("properties") or {}).get("city") or "").strip()
        if city and city.lower() not in seen:
            seen[city.lower()] = city
    return sorted(seen.values(), key=str.lower)
