from pydantic import BaseModel


class TokenPayload(BaseModel):
    sub: str  # identity provider subject, used as user id
    exp: int
    type: str = "access"
