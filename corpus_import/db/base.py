from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
SurrogateId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass
