from typing import Optional
from sqlmodel import SQLModel
from pydantic import EmailStr




class CurrentUser(SQLModel):
    id: str
    username: str
    email: Optional[EmailStr] = None

    @property
    def display_name(self) -> str:
        return self.username or self.email
