"""Named color themes for the chat display.

Each theme is a primary/secondary pair. Primary colors inline code and
headers, secondary colors list bullets and code-block labels. Colors are
defined as RGB floats (0-1) and exposed as #RRGGBB for rich styles.
"""

from dataclasses import dataclass

DEFAULT_THEME = "Hacker Green"


def _rgb_to_hex(r: float, g: float, b: float) -> str:
    """Convert RGB floats (0-1) to #RRGGBB hex string."""
    return "#{:02X}{:02X}{:02X}".format(
        int(round(r * 255)),
        int(round(g * 255)),
        int(round(b * 255)),
    )


@dataclass(frozen=True)
class Theme:
    name: str
    primary: str
    secondary: str
    code_theme: str = "monokai"


# [LAW:one-source-of-truth] Theme names and colors live here only.
_THEMES: dict[str, Theme] = {
    "Hacker Green": Theme("Hacker Green", _rgb_to_hex(0.0, 1.0, 0.6), _rgb_to_hex(0.0, 0.7, 0.5)),
    "Cyber Blue": Theme("Cyber Blue", _rgb_to_hex(0.0, 0.8, 1.0), _rgb_to_hex(0.0, 0.6, 0.8)),
    "Neon Purple": Theme("Neon Purple", _rgb_to_hex(0.8, 0.4, 1.0), _rgb_to_hex(0.6, 0.2, 0.8)),
    "Matrix Red": Theme("Matrix Red", _rgb_to_hex(1.0, 0.2, 0.4), _rgb_to_hex(0.8, 0.1, 0.3)),
}


def theme_names() -> list[str]:
    return list(_THEMES)


def get_theme(name: str | None) -> Theme:
    """Look up a theme by name. Unknown or empty names fall back to the default."""
    return _THEMES.get(name or DEFAULT_THEME, _THEMES[DEFAULT_THEME])
