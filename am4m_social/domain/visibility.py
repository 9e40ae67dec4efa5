"""
Gender-based visibility policy

A profile is discoverable to a viewer only when both genders are declared
and they differ. An unset gender on either side denies.
"""
from typing import Optional, Union

from .models import Gender

GenderLike = Union[Gender, str, None]


def is_visible(viewer_gender: GenderLike, target_gender: GenderLike) -> bool:
    viewer = Gender.normalize(viewer_gender)
    target = Gender.normalize(target_gender)
    if viewer is Gender.UNSET or target is Gender.UNSET:
        return False
    return viewer is not target


def opposite_gender(gender: GenderLike) -> Optional[Gender]:
    """Gender a viewer may discover, None when the viewer's own is unset"""
    g = Gender.normalize(gender)
    if g is Gender.MALE:
        return Gender.FEMALE
    if g is Gender.FEMALE:
        return Gender.MALE
    return None
