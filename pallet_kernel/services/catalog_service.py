"""
Service layer for catalog records: products, locations, and drivers.

Returns ProductInfo / LocationInfo / DriverInfo DTOs instead of ORM entities.
"""

from __future__ import annotations

import re
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pallet_kernel.domain.clock import Clock, SystemClock
from pallet_kernel.domain.dtos import DriverInfo, LocationInfo, ProductInfo
from pallet_kernel.domain.values import LocationKind
from pallet_kernel.exceptions import (
    CapacityExceededError,
    DriverNotFoundError,
    DuplicateDriverEmailError,
    DuplicateProductNameError,
    DuplicateQrCodeError,
    InvalidCapacityError,
    InvalidExpiryDaysError,
    LocationNotFoundError,
    LocationReferencedError,
    ProductNotFoundError,
    ProductReferencedError,
    ValidationError,
)
from pallet_kernel.logging_config import get_logger
from pallet_kernel.models.driver import Driver
from pallet_kernel.models.inventory import Inventory
from pallet_kernel.models.location import Location
from pallet_kernel.models.product import Product, normalize_product_name
from pallet_kernel.models.task import Task
from pallet_kernel.services.base import BaseService
from pallet_kernel.services.inventory_service import InventoryService

logger = get_logger("services.catalog")

MAX_EXPIRY_DAYS = 3650

_QR_UNSAFE = re.compile(r"[^a-zA-Z0-9]")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            return "".join(reversed(digits))


def _validate_expiry_days(expiry_days) -> int:
    if (
        isinstance(expiry_days, bool)
        or not isinstance(expiry_days, int)
        or not 0 < expiry_days <= MAX_EXPIRY_DAYS
    ):
        raise InvalidExpiryDaysError(expiry_days)
    return expiry_days


class CatalogService(BaseService):
    """
    Service for managing products, locations, and drivers.

    Uniqueness rules (product name, QR codes, driver email) are checked up
    front for a readable error and backed by unique constraints; a
    constraint violation from a concurrent writer is mapped to the same
    typed error.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_expiry_days: int = 30,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._default_expiry_days = _validate_expiry_days(default_expiry_days)

    # =========================================================================
    # DTO conversion
    # =========================================================================

    @staticmethod
    def _product_dto(product: Product) -> ProductInfo:
        return ProductInfo(
            id=product.id,
            name=product.name,
            qr_code=product.qr_code,
            expiry_days=product.expiry_days,
            stock=product.stock,
        )

    @staticmethod
    def _location_dto(location: Location) -> LocationInfo:
        return LocationInfo(
            id=location.id,
            kind=location.kind,
            name=location.name,
            qr_code=location.qr_code,
            capacity=location.capacity,
        )

    @staticmethod
    def _driver_dto(driver: Driver) -> DriverInfo:
        return DriverInfo(
            id=driver.id,
            name=driver.name,
            email=driver.email,
            is_active=driver.is_active,
        )

    def _insert_unique(self, entity, on_conflict: Exception) -> None:
        """Insert inside a savepoint; map a unique violation to ``on_conflict``."""
        savepoint = self.session.begin_nested()
        try:
            self.session.add(entity)
            self.session.flush()
        except IntegrityError:
            savepoint.rollback()
            raise on_conflict from None
        savepoint.commit()

    # =========================================================================
    # Products
    # =========================================================================

    def _get_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def _name_taken(self, name_key: str, exclude_id: UUID | None = None) -> bool:
        stmt = select(Product.id).where(Product.name_key == name_key)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        return self.session.execute(stmt).first() is not None

    def derive_product_qr_code(self, name: str) -> str:
        """``NAME_<base36 millisecond timestamp>`` with non-alphanumerics dropped."""
        clean = _QR_UNSAFE.sub("", name).upper() or "PRODUCT"
        millis = int(self._clock.now().timestamp() * 1000)
        return f"{clean}_{_base36(millis)}"

    def get_product(self, product_id: UUID) -> ProductInfo:
        return self._product_dto(self._get_product(product_id))

    def list_products(self) -> list[ProductInfo]:
        products = self.session.execute(select(Product).order_by(Product.name)).scalars()
        return [self._product_dto(p) for p in products]

    def create_product(
        self,
        name: str,
        expiry_days: int | None = None,
        qr_code: str | None = None,
    ) -> ProductInfo:
        """
        Create a product.

        Args:
            name: Display name.  Trimmed; must be unique ignoring case.
            expiry_days: Shelf life in days used for task expiration dates.
                Defaults to the configured default (30).
            qr_code: Scannable product code.  Derived from the name when
                omitted.

        Raises:
            DuplicateProductNameError: name collides ignoring case.
            DuplicateQrCodeError: qr_code already used by another product.
            InvalidExpiryDaysError: expiry_days not in 1..3650.
        """
        name = name.strip()
        expiry_days = _validate_expiry_days(
            self._default_expiry_days if expiry_days is None else expiry_days
        )
        name_key = normalize_product_name(name)
        if not name_key:
            raise ValidationError("Product name must not be empty")
        if self._name_taken(name_key):
            raise DuplicateProductNameError(name)

        qr_code = qr_code.strip() if qr_code else self.derive_product_qr_code(name)
        if self.session.execute(
            select(Product.id).where(Product.qr_code == qr_code)
        ).first() is not None:
            raise DuplicateQrCodeError(qr_code)

        product = Product(
            name=name,
            name_key=name_key,
            qr_code=qr_code,
            expiry_days=expiry_days,
            stock=0,
        )
        self._insert_unique(product, DuplicateProductNameError(name))

        logger.info(
            "product_created",
            extra={
                "product_id": str(product.id),
                "product_name": name,
                "expiry_days": expiry_days,
            },
        )
        return self._product_dto(product)

    def update_product(
        self,
        product_id: UUID,
        name: str | None = None,
        expiry_days: int | None = None,
    ) -> ProductInfo:
        """
        Rename a product or change its shelf life.

        Task snapshots keep the name they were created with.  A new
        expiry_days applies to tasks created afterwards only.
        """
        product = self._get_product(product_id)

        if name is not None:
            name = name.strip()
            name_key = normalize_product_name(name)
            if not name_key or self._name_taken(name_key, exclude_id=product.id):
                raise DuplicateProductNameError(name)
            product.name = name
            product.name_key = name_key

        if expiry_days is not None:
            product.expiry_days = _validate_expiry_days(expiry_days)

        self.session.flush()
        logger.info("product_updated", extra={"product_id": str(product.id)})
        return self._product_dto(product)

    def delete_product(self, product_id: UUID) -> None:
        """
        Delete a product.

        Raises:
            ProductReferencedError: inventory or a task still references it.
        """
        product = self._get_product(product_id)

        if self.session.execute(
            select(exists().where(Inventory.product_id == product.id))
        ).scalar():
            raise ProductReferencedError(str(product_id), "product is still in stock")
        if self.session.execute(
            select(exists().where(Task.product_id == product.id))
        ).scalar():
            raise ProductReferencedError(str(product_id), "product is used by tasks")

        self.session.delete(product)
        self.session.flush()
        logger.info("product_deleted", extra={"product_id": str(product_id)})

    # =========================================================================
    # Locations
    # =========================================================================

    def _get_location(self, location_id: UUID) -> Location:
        location = self.session.get(Location, location_id)
        if location is None:
            raise LocationNotFoundError(str(location_id))
        return location

    @staticmethod
    def _validate_capacity(kind: LocationKind, capacity: int | None) -> int | None:
        if kind is LocationKind.DELIVERY_POINT:
            return None
        if capacity is None:
            if kind.requires_capacity:
                raise InvalidCapacityError(kind.value, capacity)
            return None
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidCapacityError(kind.value, capacity)
        return capacity

    def get_location(self, location_id: UUID) -> LocationInfo:
        return self._location_dto(self._get_location(location_id))

    def find_location_by_qr_code(self, qr_code: str) -> LocationInfo | None:
        location = self.session.execute(
            select(Location).where(Location.qr_code == qr_code)
        ).scalar_one_or_none()
        return self._location_dto(location) if location else None

    def list_locations(self, kind: LocationKind | None = None) -> list[LocationInfo]:
        stmt = select(Location).order_by(Location.kind, Location.name)
        if kind is not None:
            stmt = stmt.where(Location.kind == LocationKind(kind))
        return [self._location_dto(loc) for loc in self.session.execute(stmt).scalars()]

    def create_location(
        self,
        kind: LocationKind,
        name: str,
        qr_code: str,
        capacity: int | None = None,
    ) -> LocationInfo:
        """
        Create a warehouse, truck, delivery point, or production line.

        Capacity is required (> 0) for warehouses and trucks, optional for
        production lines, and ignored for delivery points.

        Raises:
            InvalidCapacityError: capacity missing or not positive.
            DuplicateQrCodeError: qr_code already names a location.
        """
        kind = LocationKind(kind)
        capacity = self._validate_capacity(kind, capacity)
        qr_code = qr_code.strip()

        if self.session.execute(
            select(Location.id).where(Location.qr_code == qr_code)
        ).first() is not None:
            raise DuplicateQrCodeError(qr_code)

        location = Location(
            kind=kind,
            name=name.strip(),
            qr_code=qr_code,
            capacity=capacity,
        )
        self._insert_unique(location, DuplicateQrCodeError(qr_code))

        logger.info(
            "location_created",
            extra={
                "location_id": str(location.id),
                "kind": kind.value,
                "capacity": capacity,
            },
        )
        return self._location_dto(location)

    def update_location(
        self,
        location_id: UUID,
        name: str | None = None,
        capacity: int | None = None,
    ) -> LocationInfo:
        """
        Rename a location or change its capacity.

        Raises:
            CapacityExceededError: new capacity is below current occupancy.
        """
        inventory = InventoryService(self.session)
        location = inventory.lock_location(location_id)

        if name is not None:
            location.name = name.strip()

        if capacity is not None:
            capacity = self._validate_capacity(location.kind, capacity)
            if capacity is not None:
                occupied = inventory.occupied_pallets(location.id)
                if occupied > capacity:
                    raise CapacityExceededError(
                        str(location.id), occupied, capacity, capacity
                    )
            location.capacity = capacity

        self.session.flush()
        logger.info(
            "location_updated",
            extra={"location_id": str(location.id), "capacity": location.capacity},
        )
        return self._location_dto(location)

    def delete_location(self, location_id: UUID) -> None:
        """
        Delete a location.

        Raises:
            LocationReferencedError: it holds inventory or a task uses it.
        """
        location = self._get_location(location_id)

        if self.session.execute(
            select(exists().where(Inventory.location_id == location.id))
        ).scalar():
            raise LocationReferencedError(str(location_id), "location holds inventory")
        if self.session.execute(
            select(
                exists().where(
                    (Task.from_id == location.id) | (Task.to_id == location.id)
                )
            )
        ).scalar():
            raise LocationReferencedError(str(location_id), "location is used by tasks")

        self.session.delete(location)
        self.session.flush()
        logger.info("location_deleted", extra={"location_id": str(location_id)})

    # =========================================================================
    # Drivers
    # =========================================================================

    def register_driver(self, name: str, email: str) -> DriverInfo:
        email = email.strip().lower()
        if self.session.execute(
            select(Driver.id).where(Driver.email == email)
        ).first() is not None:
            raise DuplicateDriverEmailError(email)

        driver = Driver(name=name.strip(), email=email, is_active=True)
        self._insert_unique(driver, DuplicateDriverEmailError(email))
        logger.info("driver_registered", extra={"driver_id": str(driver.id)})
        return self._driver_dto(driver)

    def get_driver(self, driver_id: UUID) -> DriverInfo:
        driver = self.session.get(Driver, driver_id)
        if driver is None:
            raise DriverNotFoundError(str(driver_id))
        return self._driver_dto(driver)

    def deactivate_driver(self, driver_id: UUID) -> DriverInfo:
        """Stop new assignments to a driver.  Existing tasks are untouched."""
        driver = self.session.get(Driver, driver_id)
        if driver is None:
            raise DriverNotFoundError(str(driver_id))
        driver.is_active = False
        self.session.flush()
        logger.info("driver_deactivated", extra={"driver_id": str(driver_id)})
        return self._driver_dto(driver)
