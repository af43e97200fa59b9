import re
from typing import Any

from marketchat.config import Settings
from marketchat.errors import ValidationError


UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
# placeholder ids used by demo data ("tg-1", "tg-2", ...)
TEST_ID_PATTERN = re.compile(r"^tg-\d+$")


class IdentifierPolicy:
    """Decides which participant identifiers may reach the store."""

    def __init__(self, allow_test_ids: bool = False) -> None:
        self.allow_test_ids = allow_test_ids

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdentifierPolicy":
        return cls(allow_test_ids=settings.allow_test_identifiers)

    @staticmethod
    def is_durable(value: Any) -> bool:
        return isinstance(value, str) and bool(UUID_PATTERN.match(value))

    @staticmethod
    def is_test_id(value: Any) -> bool:
        return isinstance(value, str) and bool(TEST_ID_PATTERN.match(value))

    def is_valid(self, value: Any) -> bool:
        if self.is_durable(value):
            return True
        return self.allow_test_ids and self.is_test_id(value)

    def require(self, value: Any, field: str = "id") -> str:
        if not self.is_valid(value):
            raise ValidationError(f"Invalid identifier for {field}: {value!r}", field=field)
        return value.lower() if self.is_durable(value) else value
