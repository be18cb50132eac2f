from datetime import datetime, timezone
from typing import TypeAlias
from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything this app stores is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime: TypeAlias = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and reads ORM objects."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
