from prometheus_chat.core.palette import DEFAULT_THEME, get_theme, theme_names


def test_theme_names_in_display_order():
    assert theme_names() == ["Hacker Green", "Cyber Blue", "Neon Purple", "Matrix Red"]


def test_colors_are_hex():
    theme = get_theme("Hacker Green")
    assert theme.primary == "#00FF99"
    assert theme.secondary == "#00B280"


def test_unknown_theme_falls_back_to_default():
    assert get_theme("Solarized").name == DEFAULT_THEME
    assert get_theme(None).name == DEFAULT_THEME
    assert get_theme("").name == DEFAULT_THEME
