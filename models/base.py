"""Base model with camelCase serialization for API input/output."""

import time
import uuid

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every stored record and API payload; serializes as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def new_id() -> str:
    """Opaque identifier for users, groups, messages and stored files."""
    return uuid.uuid4().hex


def now() -> float:
    return time.time()
