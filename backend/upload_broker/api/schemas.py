"""Pydantic schemas for the /s3 routes. Wire format is camelCase (browser upload widgets)."""
from typing import Annotated, Literal

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _config_request(**kwargs):
    # Upload widgets send extra metadata (filename, size, ...); ignore it
    return ConfigDict(extra="ignore", populate_by_name=True, **kwargs)


def _config_response(**kwargs):
    return ConfigDict(alias_generator=to_camel, populate_by_name=True, **kwargs)


def _non_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must be a non-empty string")
    return value


NonBlankStr = Annotated[str, AfterValidator(_non_blank)]


CannedAcl = Literal[
    "private",
    "public-read",
    "authenticated-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
]


# ----- Single-shot presign -----
class PresignPutRequest(BaseModel):
    model_config = _config_request()
    key: NonBlankStr
    content_type: NonBlankStr = Field(alias="contentType")
    content_length: int | None = Field(default=None, alias="contentLength")
    expires: int | None = None


class PresignPutResponse(BaseModel):
    model_config = _config_response()
    url: str
    key: str
    bucket: str
    content_type: str
    expires_in: int


class PresignGetRequest(BaseModel):
    model_config = _config_request()
    key: NonBlankStr
    expires: int | None = None


class PresignGetResponse(BaseModel):
    model_config = _config_response()
    url: str
    key: str
    expires_in: int


# ----- Multipart -----
class CreateMultipartRequest(BaseModel):
    model_config = _config_request()
    key: NonBlankStr
    content_type: NonBlankStr = Field(alias="contentType")
    acl: CannedAcl | None = None


class CreateMultipartResponse(BaseModel):
    model_config = _config_response()
    upload_id: str
    key: str
    bucket: str


class SignPartRequest(BaseModel):
    model_config = _config_request()
    key: NonBlankStr
    upload_id: NonBlankStr = Field(alias="uploadId")
    part_number: int = Field(alias="partNumber", gt=0, le=10000)


class SignPartResponse(BaseModel):
    model_config = _config_response()
    url: str
    part_number: int
    expires_in: int


class CompletedPart(BaseModel):
    """Accepts both S3 spelling (PartNumber/ETag) and camelCase."""

    model_config = _config_request()
    part_number: int = Field(
        validation_alias=AliasChoices("PartNumber", "partNumber"), gt=0, le=10000
    )
    etag: NonBlankStr = Field(validation_alias=AliasChoices("ETag", "eTag", "etag", "Etag"))


class CompleteMultipartRequest(BaseModel):
    model_config = _config_request()
    key: NonBlankStr
    upload_id: NonBlankStr = Field(alias="uploadId")
    parts: list[CompletedPart] = Field(min_length=1)


class CompleteMultipartResponse(BaseModel):
    model_config = _config_response()
    ok: bool = True
    key: str
    location: str | None = None


class AbortMultipartRequest(BaseModel):
    model_config = _config_request()
    key: NonBlankStr
    upload_id: NonBlankStr = Field(alias="uploadId")


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx response and the 202 scan-pending answer."""

    error: str
    message: str
