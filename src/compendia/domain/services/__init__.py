"""Domain services for Compendia.

Services contain document logic that doesn't naturally fit within a single entity.
"""

from compendia.domain.services.data_utils import (
    diff_object,
    expand_object,
    merge_object,
)
from compendia.domain.services.id_generator import generate_id, is_valid_id
from compendia.domain.services.permission_resolver import PermissionResolver
from compendia.domain.services.sorting import SORT_INTEGER_DENSITY, perform_integer_sort

__all__ = [
    "PermissionResolver",
    "SORT_INTEGER_DENSITY",
    "diff_object",
    "expand_object",
    "generate_id",
    "is_valid_id",
    "merge_object",
    "perform_integer_sort",
]
