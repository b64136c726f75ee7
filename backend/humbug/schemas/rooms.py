from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _RequestModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class CreateRoomRequest(_RequestModel):
    maxPlayers: int = Field(default=10, ge=2, le=10)
    questionSetId: int | None = Field(default=None, gt=0)


class JoinRoomRequest(_RequestModel):
    code: str = Field(min_length=6, max_length=6)
    nickname: str = Field(min_length=1, max_length=50)

    @field_validator("code", mode="before")
    @classmethod
    def upper_code(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("code")
    @classmethod
    def validate_code(cls, value: str) -> str:
        if not value.isascii() or not value.isalnum():
            raise ValueError("Room code must be 6 letters or digits")
        return value


class RoomActionRequest(_RequestModel):
    roomId: UUID

    @property
    def room_id(self) -> str:
        return str(self.roomId)


class StartGameRequest(RoomActionRequest):
    questionSetId: int | None = Field(default=None, gt=0)


class SubmitAnswerRequest(RoomActionRequest):
    answer: str = Field(min_length=1, max_length=200)


class ChallengeRequest(RoomActionRequest):
    answerId: int = Field(gt=0)


class RoomStateQuery(_RequestModel):
    roomId: UUID | None = None
    code: str | None = Field(default=None, min_length=6, max_length=6)

    @field_validator("code", mode="before")
    @classmethod
    def upper_code(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def require_identifier(self) -> "RoomStateQuery":
        if self.roomId is None and not self.code:
            raise ValueError("roomId or code is required")
        return self
