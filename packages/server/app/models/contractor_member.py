"""Legacy one-role-per-member table, read for membership checks only."""

import uuid

from sqlmodel import Field, SQLModel


class ContractorMember(SQLModel, table=True):
    __tablename__ = "contractor_members"

    contractor_id: uuid.UUID = Field(foreign_key="contractors.id", primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    role: str = Field(nullable=False, default="member")  # owner | admin | member
