import pytest

from am4m_social.domain.models import Gender
from am4m_social.domain.visibility import is_visible, opposite_gender


@pytest.mark.parametrize(
    "viewer, target, expected",
    [
        (Gender.MALE, Gender.FEMALE, True),
        (Gender.FEMALE, Gender.MALE, True),
        (Gender.MALE, Gender.MALE, False),
        (Gender.FEMALE, Gender.FEMALE, False),
        (Gender.UNSET, Gender.FEMALE, False),
        (Gender.MALE, Gender.UNSET, False),
        (Gender.UNSET, Gender.UNSET, False),
    ],
)
def test_visible_only_for_opposite_declared_genders(viewer, target, expected):
    assert is_visible(viewer, target) is expected


def test_raw_strings_are_normalized():
    """Stored values may differ in case or carry whitespace"""
    assert is_visible("Male", " female ") is True
    assert is_visible("MALE", "male") is False
    assert is_visible(None, "female") is False
    assert is_visible("other", "female") is False


def test_opposite_gender():
    assert opposite_gender(Gender.MALE) is Gender.FEMALE
    assert opposite_gender("female") is Gender.MALE
    assert opposite_gender(Gender.UNSET) is None
    assert opposite_gender(None) is None
