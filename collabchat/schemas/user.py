from pydantic import AliasChoices, BaseModel, Field


class PeerInfo(BaseModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    first_name: str | None = Field(default=None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: str | None = Field(default=None, validation_alias=AliasChoices("last_name", "lastName"))
    email: str | None = None
    profile_picture: str | None = Field(
        default=None, validation_alias=AliasChoices("profile_picture", "profilePicture")
    )

    model_config = {"frozen": True}

    @classmethod
    def unknown(cls, user_id: str) -> "PeerInfo":
        return cls(id=user_id, first_name="Unknown", last_name="User")

    @classmethod
    def loading(cls, user_id: str) -> "PeerInfo":
        return cls(id=user_id, first_name="Loading...")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email or "User"

    @property
    def initials(self) -> str:
        first = (self.first_name or "")[:1]
        last = (self.last_name or "")[:1]
        return f"{first}{last}".upper() or "??"
