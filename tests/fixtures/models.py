"""Record types shared by the unit and integration tests."""
import datetime
import enum
from dataclasses import dataclass

from recordmap import field, table


class Gender(enum.Enum):
    Unknown = 'unknown'
    Male = 'male'
    Female = 'female'


class Role(enum.Enum):
    Member = 1
    Admin = 2


@table('persons')
@dataclass
class Person:
    id: int | None = field(key=True, generated=True)
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = None
    gender: Gender = Gender.Unknown
    date_created: datetime.datetime | None = field(generated=True)

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'


@table('cars')
@dataclass
class Car:
    id: str = field(key=True)
    make: str | None = None
    date_registered: datetime.datetime | None = field(generated=True)


@dataclass
class Document:
    """No key fields; stored in ``document`` by convention."""
    id: str
    name: str | None = None
    data: bytes | None = None
    date_created: datetime.datetime | None = None


@table('memberships')
@dataclass
class Membership:
    person_id: int = field(key=True)
    club: str = field(key=True)
    role: Role = field(default=Role.Member, string_enum=True)


@dataclass
class FirstNameOnly:
    """Projection used with hand-written SELECTs."""
    first_name: str | None = None
