"""Route identifiers and the parser for LPP route labels.

LPP labels its routes inconsistently: "6", "3G", "N3B", "56 DOBROVA - ŠOLSKA",
"76(GROS.)". This module decomposes such labels into a structured
RouteIdentifier (prefix, number, suffix, trailing text) so routes can be
joined across endpoints.
"""

import unicodedata
from typing import Any

import regex
from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

# Extended grapheme clusters, so "Š" counts as one character whether or
# not it arrives decomposed.
GRAPHEME_PATTERN = regex.compile(r"\X")

MAX_ROUTE_NUMBER = 2**32 - 1


class RouteNameParseError(ValueError):
    """Raised when a route label does not match the route grammar."""

    def __init__(self, route_name: str):
        super().__init__(f"Invalid bus route name: {route_name!r}")
        self.route_name = route_name


def _graphemes(text: str) -> list[str]:
    return GRAPHEME_PATTERN.findall(text)


def _is_digit(grapheme: str) -> bool:
    return len(grapheme) == 1 and "0" <= grapheme <= "9"


def _is_alphabetic(grapheme: str) -> bool:
    """Check whether a grapheme is a single letter (combining marks allowed)."""
    if not grapheme or not grapheme[0].isalpha():
        return False
    return all(
        char.isalpha() or unicodedata.category(char).startswith("M") for char in grapheme[1:]
    )


def _parse_number(digits: str, raw: str) -> int:
    if not digits:
        raise RouteNameParseError(raw)

    number = int(digits)
    if number > MAX_ROUTE_NUMBER:
        raise RouteNameParseError(raw)
    return number


class BaseRouteIdentifier(BaseModel):
    """Route number without prefix, suffix or trailing text.

    Groups route variants: "3", "3G" and "N3" all share the base route 3.
    """

    model_config = ConfigDict(frozen=True)

    number: int = Field(ge=0, le=MAX_ROUTE_NUMBER)

    @model_validator(mode="before")
    @classmethod
    def _from_plain_value(cls, data: Any) -> Any:
        if isinstance(data, bool):
            return data
        if isinstance(data, int):
            return {"number": data}
        if isinstance(data, str):
            if not data.isdigit():
                raise RouteNameParseError(data)
            return {"number": int(data)}
        return data

    @model_serializer
    def _serialize(self) -> int:
        return self.number

    def __str__(self) -> str:
        return str(self.number)


class RouteIdentifier(BaseModel):
    """Structured form of a route label such as "N3B".

    Hashable, so it can key the per-cycle timetable index. Snapshots carry it
    as its canonical label string.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str | None = None
    number: int = Field(ge=0, le=MAX_ROUTE_NUMBER)
    suffix: str | None = None
    trailing_text: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_label(cls, data: Any) -> Any:
        if isinstance(data, str):
            parsed = parse_route_identifier(data)
            return {
                "prefix": parsed.prefix,
                "number": parsed.number,
                "suffix": parsed.suffix,
                "trailing_text": parsed.trailing_text,
            }
        return data

    @model_serializer
    def _serialize(self) -> str:
        return self.label

    @property
    def label(self) -> str:
        """Canonical label; reparses to an identifier equal to this one."""
        return "".join(
            (
                self.prefix or "",
                str(self.number),
                self.suffix or "",
                self.trailing_text or "",
            )
        )

    def to_base(self) -> BaseRouteIdentifier:
        return BaseRouteIdentifier(number=self.number)

    def __str__(self) -> str:
        return self.label


def parse_route_identifier(raw: str) -> RouteIdentifier:
    """Parse a raw LPP route label.

    Examples:
        "19" -> number 19
        "3G" -> number 3, suffix "G"
        "N3B" -> prefix "N", number 3, suffix "B"
        "56 DOBROVA - ŠOLSKA" -> number 56, trailing text " DOBROVA - ŠOLSKA"
        "76(GROS.)" -> number 76, trailing text "(GROS.)"

    Raises:
        RouteNameParseError: If the label is empty or has no route number.
    """
    if not raw:
        raise RouteNameParseError(raw)

    if raw.isascii() and raw.isdigit():
        return RouteIdentifier(number=_parse_number(raw, raw))

    graphemes = _graphemes(raw)

    prefix: str | None = None
    if not _is_digit(graphemes[0]):
        upper = graphemes[0].upper()
        # "ß".upper() is "SS"; a prefix must stay a single grapheme.
        prefix = upper if len(_graphemes(upper)) == 1 else graphemes[0]
        graphemes = graphemes[1:]

    for index, grapheme in enumerate(graphemes):
        if not _is_digit(grapheme):
            break
    else:
        # Nothing after the number.
        return RouteIdentifier(prefix=prefix, number=_parse_number("".join(graphemes), raw))

    number = _parse_number("".join(graphemes[:index]), raw)
    following = graphemes[index + 1 :]

    if _is_alphabetic(grapheme) and not following:
        return RouteIdentifier(prefix=prefix, number=number, suffix=grapheme)

    return RouteIdentifier(
        prefix=prefix,
        number=number,
        trailing_text="".join(graphemes[index:]),
    )
