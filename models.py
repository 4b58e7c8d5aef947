from typing import Optional
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON, UniqueConstraint
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Day(str, Enum):
    lunes = "lunes"
    martes = "martes"
    miercoles = "miercoles"
    jueves = "jueves"
    viernes = "viernes"
    sabado = "sabado"
    domingo = "domingo"


class Place(str, Enum):
    residencia = "residencia"
    universidad = "universidad"


class Role(str, Enum):
    driver = "conductor"
    passenger = "pasajero"


class RequestState(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    cancelled = "cancelled"


class NotificationType(str, Enum):
    trip_requested = "trip_requested"
    trip_accepted = "trip_accepted"


class Profile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    phone: Optional[str] = None
    role: Optional[str] = None  # conductor, pasajero
    zone: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ScheduleBase(SQLModel):
    owner_id: int = Field(index=True, foreign_key="profile.id")
    day: str
    origin: str
    destination: str
    zone: Optional[str] = None
    active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class DriverSchedule(ScheduleBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    departure_time: str  # HH:MM
    seats: int = 4


class PassengerSchedule(ScheduleBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    approx_time: str  # HH:MM
    flexibility_minutes: Optional[int] = 30


class TripRequest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    passenger_id: int = Field(index=True, foreign_key="profile.id")
    driver_id: int = Field(index=True, foreign_key="profile.id")
    driver_schedule_id: int = Field(index=True, foreign_key="driverschedule.id")
    state: str = Field(default=RequestState.pending.value, index=True)
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="profile.id")
    type: str
    title: str
    body: str
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))  # e.g. {"request_id": 7}
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Vehicle(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    driver_id: int = Field(index=True, foreign_key="profile.id")
    plate: str
    brand: str
    model: str
    color: Optional[str] = None
    year: int
    capacity: int = 4
    property_card_url: str
    license_url: str
    soat_url: str
    created_at: datetime = Field(default_factory=utcnow)


class FavoriteDriver(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("passenger_id", "driver_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    passenger_id: int = Field(index=True)
    driver_id: int
    created_at: datetime = Field(default_factory=utcnow)


class ContactLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    passenger_id: int = Field(index=True)
    driver_id: int
    channel: str  # whatsapp, email, phone
    created_at: datetime = Field(default_factory=utcnow)
