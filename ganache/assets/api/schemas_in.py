from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class UploadError(Exception):
    """Error during upload parsing with HTTP status and code."""

    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def _coerce_list(v: Any) -> Any:
    if v is None:
        return []
    if isinstance(v, str):
        return [v]
    return v


class SearchAssetsQuery(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    q: str | None = None
    tag: list[str] = Field(default_factory=list)
    page: int = 1
    page_size: int | None = None
    sort: Literal["newest", "oldest", "relevance"] = "newest"
    include_deleted: bool = False

    @field_validator("tag", mode="before")
    @classmethod
    def _tags_as_list(cls, v):
        return _coerce_list(v)


class ListTagsQuery(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    prefix: str | None = None
    page: int = 1
    page_size: int | None = None


class UpdateAssetBody(BaseModel):
    """Partial update; only fields present in the JSON body are applied."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: str | None = None
    caption: str | None = None
    credit: str | None = None
    source: str | None = None
    usage_notes: str | None = None
    tags: list[str] | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(include=self.model_fields_set)
