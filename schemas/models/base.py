"""
Base model for all MongoDB document models.

PyObjectId handles the mismatch between BSON ObjectId and Pydantic v2.
MongoBaseModel provides to_mongo() / from_mongo() for round-tripping between
Python objects and raw MongoDB dicts.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

_M = TypeVar("_M", bound="MongoBaseModel")


def parse_object_id(value: Any) -> ObjectId:
    """Coerce a user/record identifier into an ObjectId.

    Raises:
        ValueError: when *value* is neither an ObjectId nor a 24-char hex string.
    """
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError(f"Invalid ObjectId: {value!r}")


class PyObjectId(ObjectId):
    """BSON ObjectId that Pydantic v2 knows how to validate and serialize."""

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                cls._serialize, when_used="json"
            ),
        )

    @classmethod
    def _validate(cls, v: Any) -> ObjectId:
        return parse_object_id(v)

    @staticmethod
    def _serialize(v: ObjectId) -> str:
        return str(v)


class MongoBaseModel(BaseModel):
    """
    Base for all document models.

    Stores the MongoDB _id as `id` (PyObjectId). Subclasses add collection-
    specific fields on top.

    to_mongo()  - model → dict for pymongo; ObjectIds and datetimes stay
                  native BSON types
    from_mongo() - raw pymongo dict → model instance (None passes through)
    """

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    id: Optional[PyObjectId] = Field(default=None, alias="_id")

    def to_mongo(self, *, exclude: Optional[set[str]] = None) -> dict:
        """Return a dict ready for MongoDB insertion.

        - Renames `id` → `_id`
        - Excludes None `_id` so MongoDB can auto-generate it on insert
        - Enum members are stored by value
        """
        data = self.model_dump(by_alias=True, exclude=exclude, mode="python")
        if data.get("_id") is None:
            data.pop("_id", None)
        return data

    @classmethod
    def from_mongo(cls: type[_M], data: Optional[dict]) -> Optional[_M]:
        """Build a model instance from a raw MongoDB document dict.

        Returns None when data is None (e.g. find_one returns None).
        Missing optional fields are filled with their defaults.
        """
        if data is None:
            return None
        return cls.model_validate(data)
