"""Base model with camelCase serialization for caller-facing output."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base class for engine models; dumps camelCase when ``by_alias=True``.

    Stored records use the snake_case field names, so both spellings are
    accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def utc_now() -> datetime:
    """Timezone-aware current time; the default engine clock."""
    return datetime.now(timezone.utc)
