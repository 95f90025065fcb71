import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from .errors import NotFound, ServiceLocked, ValidationError
from .models import Booking, Service

logger = logging.getLogger(__name__)

# Fields that may still change once a booking references the service
MUTABLE_WHEN_BOOKED = {"is_active", "description"}
EDITABLE_FIELDS = {"name", "description", "duration_minutes", "price", "category", "is_active"}


class ServiceCatalog:
    def __init__(self, db: Session):
        self.db = db

    def get(self, service_id: int) -> Service:
        service = self.db.get(Service, service_id)
        if service is None:
            raise NotFound("Service not found")
        return service

    def get_active(self, service_id: int) -> Service:
        """Service as seen by patients; inactive services do not exist for them."""
        service = self.get(service_id)
        if not service.is_active:
            raise NotFound("Service not found")
        return service

    def list(self, active_only: bool = True) -> List[Service]:
        query = self.db.query(Service)
        if active_only:
            query = query.filter(Service.is_active.is_(True))
        return query.order_by(Service.category, Service.name).all()

    def create(
        self,
        name: str,
        duration_minutes: int,
        price: Decimal = Decimal("0"),
        category: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Service:
        _check_duration(duration_minutes)
        price = Decimal(str(price))
        if self.db.query(Service).filter(Service.name == name).first():
            raise ValidationError("Service with that name already exists")

        service = Service(
            name=name,
            duration_minutes=duration_minutes,
            price=price,
            category=category,
            description=description,
            is_active=True,
        )
        self.db.add(service)
        self.db.flush()
        logger.info(f"Service {service.id} '{name}' created ({duration_minutes} min)")
        return service

    def update(self, service_id: int, **changes) -> Service:
        service = self.get(service_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown service fields: {', '.join(sorted(unknown))}")

        if changes.get("price") is not None:
            changes["price"] = Decimal(str(changes["price"]))
        changed = {k: v for k, v in changes.items() if getattr(service, k) != v}
        locked = set(changed) - MUTABLE_WHEN_BOOKED
        if locked and self.is_referenced(service_id):
            raise ServiceLocked(
                "Service has bookings; deactivate it and create a new one instead of editing "
                + ", ".join(sorted(locked))
            )
        if "duration_minutes" in changed:
            _check_duration(changed["duration_minutes"])
        if "name" in changed:
            clash = (
                self.db.query(Service)
                .filter(Service.name == changed["name"], Service.id != service_id)
                .first()
            )
            if clash:
                raise ValidationError("Service with that name already exists")

        for field, value in changed.items():
            setattr(service, field, value)
        self.db.flush()
        if changed:
            logger.info(f"Service {service_id} updated: {', '.join(sorted(changed))}")
        return service

    def is_referenced(self, service_id: int) -> bool:
        return (
            self.db.query(Booking.id).filter(Booking.service_id == service_id).first() is not None
        )


def _check_duration(duration_minutes: int) -> None:
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError("Service duration must be a positive number of minutes")
