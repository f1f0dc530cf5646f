from __future__ import annotations

import enum

from handletag_core.errors import InvalidAnnotationInput


class TagColor(str, enum.Enum):
    """Fixed color categories. Values are the stored background colors."""

    red = "#ffdddd"
    orange = "#ffeacc"
    yellow = "#ffffcc"
    green = "#ddffdd"
    blue = "#ddeeff"
    purple = "#eeddff"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def menu(cls) -> list[TagColor]:
        """Palette in menu order (1-based indices are shown to users)."""
        return list(cls)

    @classmethod
    def from_choice(cls, choice: str | None) -> TagColor:
        """
        Resolve a user's color choice.

        Accepts a 1-based menu index ("3"), an identifier ("yellow") or a
        stored hex value ("#ffffcc").
        """
        text = (choice or "").strip().lower()
        if not text:
            raise InvalidAnnotationInput("Invalid color choice.")
        if text.isdecimal():
            try:
                index = int(text) - 1
            except ValueError:
                raise InvalidAnnotationInput("Invalid color choice.") from None
            options = cls.menu()
            if 0 <= index < len(options):
                return options[index]
            raise InvalidAnnotationInput("Invalid color choice.")
        for color in cls:
            if text in (color.name, color.value):
                return color
        raise InvalidAnnotationInput("Invalid color choice.")


_LABELS = {
    TagColor.red: "🔴 Red (Negative)",
    TagColor.orange: "🟠 Orange (Warning)",
    TagColor.yellow: "🟡 Yellow (Neutral)",
    TagColor.green: "🟢 Green (Positive)",
    TagColor.blue: "🔵 Blue (Info)",
    TagColor.purple: "🟣 Purple (Misc)",
}


def format_menu() -> str:
    return "\n".join(f"{i}. {color.label}" for i, color in enumerate(TagColor.menu(), start=1))
