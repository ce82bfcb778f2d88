from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DraftAnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["text", "document", "not_available"]
    value: str | None = Field(default=None, max_length=10000)
    document_id: str | None = Field(default=None, min_length=1, alias="documentId")
    document_name: str | None = Field(default=None, alias="documentName")


class GenerateSectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_fields: dict[str, object] = Field(default_factory=dict, alias="userFields")
    user_feedback: str | None = Field(default=None, max_length=4000, alias="userFeedback")


class RejectSectionRequest(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=4000)
