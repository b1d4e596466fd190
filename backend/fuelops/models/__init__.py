from .tenancy import Organization, Station
from .auth import User
from .assets import Tank, Pump, Nozzle
from .pricing import FuelPrice
from .shifts import Shift, ShiftSale, ShiftTankDip
from .supply import ReplenishmentRequest, FuelDelivery, DeliveryCompartment
from .system import IdempotencyRecord, AuditLog

__all__ = [
    'Organization', 'Station',
    'User',
    'Tank', 'Pump', 'Nozzle',
    'FuelPrice',
    'Shift', 'ShiftSale', 'ShiftTankDip',
    'ReplenishmentRequest', 'FuelDelivery', 'DeliveryCompartment',
    'IdempotencyRecord', 'AuditLog',
]
