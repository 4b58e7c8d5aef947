"""Profiles, role selection, vehicle registration, favorite drivers and contact history."""

import logging
import os
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

import db
from errors import ValidationError, NotFound, PermissionDenied
from models import Profile, Role, Vehicle, FavoriteDriver, ContactLog
from store import guarded, parse_role

logger = logging.getLogger(__name__)

EMAIL_DOMAIN = os.environ.get("UNIRIDE_EMAIL_DOMAIN", "correounivalle.edu.co")
CONTACT_CHANNELS = ("whatsapp", "email", "phone")


def validate_institutional_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    local, _, domain = email.partition("@")
    if not local or domain != EMAIL_DOMAIN.lower():
        raise ValidationError(f"only @{EMAIL_DOMAIN} addresses are allowed")
    return email


@guarded
def register_profile(email: str, full_name: str, phone: Optional[str] = None,
                     zone: Optional[str] = None) -> Profile:
    email = validate_institutional_email(email)
    if not (full_name or "").strip():
        raise ValidationError("missing full_name")
    with db.get_session() as session:
        if session.exec(select(Profile).where(Profile.email == email)).first():
            raise ValidationError("email already registered")
        p = Profile(email=email, full_name=full_name.strip(), phone=phone, zone=zone)
        session.add(p)
        session.commit()
        session.refresh(p)
    logger.info("registered profile %s", p.id)
    return p


@guarded
def get_profile(user_id: int) -> Profile:
    with db.get_session() as session:
        p = session.get(Profile, user_id)
        if not p:
            raise NotFound("profile not found")
        return p


@guarded
def select_role(user_id: int, role) -> Profile:
    role = parse_role(role)
    with db.get_session() as session:
        p = session.get(Profile, user_id)
        if not p:
            raise NotFound("profile not found")
        p.role = role.value
        session.add(p)
        session.commit()
        session.refresh(p)
        return p


@guarded
def register_vehicle(driver: Profile, fields: Dict[str, Any]) -> Vehicle:
    if driver.role != Role.driver.value:
        raise PermissionDenied("only drivers can register a vehicle")
    required = ["plate", "brand", "model", "year", "property_card_url", "license_url", "soat_url"]
    missing = [k for k in required if not fields.get(k)]
    if missing:
        raise ValidationError(f"missing {', '.join(missing)}")
    try:
        year = int(fields["year"])
        capacity = int(fields.get("capacity", 4))
    except (TypeError, ValueError):
        raise ValidationError("year and capacity must be integers")
    if year <= 0 or capacity <= 0:
        raise ValidationError("year and capacity must be positive")
    with db.get_session() as session:
        v = Vehicle(
            driver_id=driver.id,
            plate=str(fields["plate"]).strip().upper(),
            brand=fields["brand"],
            model=fields["model"],
            color=fields.get("color"),
            year=year,
            capacity=capacity,
            property_card_url=fields["property_card_url"],
            license_url=fields["license_url"],
            soat_url=fields["soat_url"],
        )
        session.add(v)
        session.commit()
        session.refresh(v)
        return v


@guarded
def list_vehicles(driver_id: int) -> List[Vehicle]:
    with db.get_session() as session:
        return list(session.exec(select(Vehicle).where(Vehicle.driver_id == driver_id)).all())


# ---------------------- favorites ----------------------

@guarded
def toggle_favorite(passenger_id: int, driver_id: int) -> bool:
    """Add the driver to the passenger's favorites, or remove it if present. Returns the new membership."""
    with db.get_session() as session:
        fav = session.exec(
            select(FavoriteDriver)
            .where(FavoriteDriver.passenger_id == passenger_id)
            .where(FavoriteDriver.driver_id == driver_id)
        ).first()
        if fav:
            session.delete(fav)
            session.commit()
            return False
        session.add(FavoriteDriver(passenger_id=passenger_id, driver_id=driver_id))
        try:
            session.commit()
        except IntegrityError:
            # a concurrent toggle already added it
            session.rollback()
        return True


@guarded
def list_favorites(passenger_id: int) -> List[FavoriteDriver]:
    with db.get_session() as session:
        return list(session.exec(
            select(FavoriteDriver).where(FavoriteDriver.passenger_id == passenger_id).order_by(FavoriteDriver.id)
        ).all())


# ---------------------- contact history ----------------------

@guarded
def log_contact(passenger_id: int, driver_id: int, channel: str) -> ContactLog:
    if channel not in CONTACT_CHANNELS:
        raise ValidationError(f"channel must be one of {', '.join(CONTACT_CHANNELS)}")
    with db.get_session() as session:
        c = ContactLog(passenger_id=passenger_id, driver_id=driver_id, channel=channel)
        session.add(c)
        session.commit()
        session.refresh(c)
        return c


@guarded
def contact_history(passenger_id: int, limit: int = 20) -> List[ContactLog]:
    with db.get_session() as session:
        return list(session.exec(
            select(ContactLog)
            .where(ContactLog.passenger_id == passenger_id)
            .order_by(ContactLog.created_at.desc(), ContactLog.id.desc())
            .limit(limit)
        ).all())
