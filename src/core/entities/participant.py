import re

from pydantic import BaseModel, Field, field_validator

WALLET_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


class Participant(BaseModel):
    """A seeded contest entrant. Wallet is stored lower-cased."""
    id: int
    entry_order: int
    nickname: str
    wallet: str


class ParticipantSeed(BaseModel):
    """
    Admin-supplied participant row used for bulk seeding.
    """
    entry_order: int = Field(ge=1)
    nickname: str = Field(min_length=1)
    wallet: str

    @field_validator("nickname")
    @classmethod
    def _strip_nickname(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("nickname must not be blank")
        return value

    @field_validator("wallet")
    @classmethod
    def _check_wallet(cls, value: str) -> str:
        if not WALLET_PATTERN.match(value):
            raise ValueError(f"Invalid wallet address: {value}")
        return value.lower()

    class Config:
        json_schema_extra = {
            "example": {
                "entry_order": 1,
                "nickname": "Alice",
                "wallet": "0x1111111111111111111111111111111111111111",
            }
        }
