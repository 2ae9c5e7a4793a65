"""Document id generation.

Ids are 16 random alphanumeric characters, the same shape the backend
assigns, so locally assigned ids of embedded children are indistinguishable
from server-assigned ones.
"""

import secrets
import string

ID_ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 16


def generate_id(length: int = ID_LENGTH) -> str:
    """Generate a random document id."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def is_valid_id(value: object) -> bool:
    """Whether ``value`` is a non-empty alphanumeric id string."""
    return isinstance(value, str) and value.isalnum()
