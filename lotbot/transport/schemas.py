# lotbot/transport/schemas.py
from pydantic import AliasChoices, BaseModel, Field, StrictInt, field_validator, model_validator

from lotbot.core.domain import InboundDelivery


class QuestionIn(BaseModel):
    id: StrictInt
    author: str | None = Field(default=None, max_length=200)
    text: str = Field(max_length=4000)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class DispatchIn(BaseModel):
    destination: str = Field(validation_alias=AliasChoices("destination", "selectionTarget"))
    questions: list[QuestionIn] = Field(min_length=1, max_length=500)

    @model_validator(mode="after")
    def unique_ids(self):
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("duplicate question ids")
        return self


class SenderIn(BaseModel):
    id: str | int


class ReplyContextIn(BaseModel):
    text: str | None = None


class DeliveryIn(BaseModel):
    delivery_id: str | int | None = Field(
        default=None, validation_alias=AliasChoices("deliveryId", "delivery_id")
    )
    sender: SenderIn
    chat_id: str | int | None = Field(default=None, validation_alias=AliasChoices("chatId", "chat_id"))
    text: str | None = Field(default=None, max_length=4096)
    reply_context: ReplyContextIn | None = Field(
        default=None, validation_alias=AliasChoices("replyContext", "reply_context")
    )

    def to_inbound(self) -> InboundDelivery:
        return InboundDelivery(
            sender_id=str(self.sender.id),
            text=self.text,
            delivery_id=str(self.delivery_id) if self.delivery_id is not None else None,
            chat_id=str(self.chat_id) if self.chat_id is not None else None,
            reply_context_text=self.reply_context.text if self.reply_context else None,
        )


class AccessCheckIn(BaseModel):
    action: str
    email: str | None = None
    name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=64)
