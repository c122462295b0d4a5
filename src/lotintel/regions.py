from __future__ import annotations

import re


UNKNOWN_REGION = ""

_STATE_NAMES = {
    "ALABAMA": "AL",
    "ALASKA": "AK",
    "ARIZONA": "AZ",
    "ARKANSAS": "AR",
    "CALIFORNIA": "CA",
    "COLORADO": "CO",
    "CONNECTICUT": "CT",
    "DELAWARE": "DE",
    "DISTRICT OF COLUMBIA": "DC",
    "FLORIDA": "FL",
    "GEORGIA": "GA",
    "HAWAII": "HI",
    "IDAHO": "ID",
    "ILLINOIS": "IL",
    "INDIANA": "IN",
    "IOWA": "IA",
    "KANSAS": "KS",
    "KENTUCKY": "KY",
    "LOUISIANA": "LA",
    "MAINE": "ME",
    "MARYLAND": "MD",
    "MASSACHUSETTS": "MA",
    "MICHIGAN": "MI",
    "MINNESOTA": "MN",
    "MISSISSIPPI": "MS",
    "MISSOURI": "MO",
    "MONTANA": "MT",
    "NEBRASKA": "NE",
    "NEVADA": "NV",
    "NEW HAMPSHIRE": "NH",
    "NEW JERSEY": "NJ",
    "NEW MEXICO": "NM",
    "NEW YORK": "NY",
    "NORTH CAROLINA": "NC",
    "NORTH DAKOTA": "ND",
    "OHIO": "OH",
    "OKLAHOMA": "OK",
    "OREGON": "OR",
    "PENNSYLVANIA": "PA",
    "RHODE ISLAND": "RI",
    "SOUTH CAROLINA": "SC",
    "SOUTH DAKOTA": "SD",
    "TENNESSEE": "TN",
    "TEXAS": "TX",
    "UTAH": "UT",
    "VERMONT": "VT",
    "VIRGINIA": "VA",
    "WASHINGTON": "WA",
    "WEST VIRGINIA": "WV",
    "WISCONSIN": "WI",
    "WYOMING": "WY",
    "PUERTO RICO": "PR",
    "GUAM": "GU",
    "US VIRGIN ISLANDS": "VI",
    "ALBERTA": "AB",
    "BRITISH COLUMBIA": "BC",
    "MANITOBA": "MB",
    "NEW BRUNSWICK": "NB",
    "NEWFOUNDLAND AND LABRADOR": "NL",
    "NOVA SCOTIA": "NS",
    "ONTARIO": "ON",
    "PRINCE EDWARD ISLAND": "PE",
    "QUEBEC": "QC",
    "SASKATCHEWAN": "SK",
}

REGION_CODES: frozenset[str] = frozenset(_STATE_NAMES.values())

# Longest names first so "WEST VIRGINIA" wins over "VIRGINIA".
_NAMES_BY_LENGTH = sorted(_STATE_NAMES, key=len, reverse=True)

_PAREN_CODE = re.compile(r"\(\s*([A-Za-z]{2})\s*\)")
_LEADING_CODE = re.compile(r"^\s*([A-Za-z]{2})\s*-")
_TRAILING_CODE = re.compile(r",\s*([A-Za-z]{2})\b")


def normalize_region(value: str | None) -> str:
    if not value:
        return UNKNOWN_REGION
    code = value.strip().upper()
    return code if code in REGION_CODES else UNKNOWN_REGION


def extract_region(location: str | None) -> str:
    """Return the two-letter region code of a free-text auction location.

    Recognises "TX - DALLAS", "Dallas (TX)", "Dallas, TX", a bare code and
    full state/province names. Anything else is ``UNKNOWN_REGION``.
    """
    if not location or not location.strip():
        return UNKNOWN_REGION

    for pattern in (_PAREN_CODE, _LEADING_CODE, _TRAILING_CODE):
        match = pattern.search(location)
        if match:
            code = normalize_region(match.group(1))
            if code:
                return code

    code = normalize_region(location)
    if code:
        return code

    upper = re.sub(r"[^A-Z ]", " ", location.upper())
    padded = f" {' '.join(upper.split())} "
    for name in _NAMES_BY_LENGTH:
        if f" {name} " in padded:
            return _STATE_NAMES[name]
    return UNKNOWN_REGION
