import pytest

from meetlive.services.meeting.text_cleanup import quick_clean


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("esto fun ciona bien", "esto funciona bien"),
        ("el p r o b l e m a es otro", "el problema es otro"),
        ("va mos a seguir", "vamos a seguir"),
        ("e s de todos", "es de todos"),
    ],
)
def test_repairs_split_words(raw, expected):
    assert quick_clean(raw) == expected


def test_keeps_capitalization_of_repaired_word():
    assert quick_clean("Fun ciona ya") == "Funciona ya"


def test_leaves_intact_words_alone():
    assert quick_clean("La demo funciona.") == "La demo funciona."


def test_normalizes_spacing_around_punctuation():
    assert quick_clean("  hola ,  qué tal  ? ") == "hola, qué tal?"
    assert quick_clean("¿ Vamos ?") == "¿Vamos?"


def test_empty_text():
    assert quick_clean("") == ""
