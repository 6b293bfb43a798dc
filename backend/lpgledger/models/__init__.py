from .locations import Store, Vehicle
from .pricing import PlantPrice, MarginCategory
from .customers import Customer, B2CCustomer
from .transactions import B2BTransaction, B2BTransactionItem, BillSequence
from .b2c import B2CTransaction, B2CTransactionItem, B2CSecurityItem, CylinderHolding
from .cylinders import Cylinder, CylinderMovement, LOCATION_FIELDS

__all__ = [
    'Store', 'Vehicle',
    'PlantPrice', 'MarginCategory',
    'Customer', 'B2CCustomer',
    'B2BTransaction', 'B2BTransactionItem', 'BillSequence',
    'B2CTransaction', 'B2CTransactionItem', 'B2CSecurityItem', 'CylinderHolding',
    'Cylinder', 'CylinderMovement', 'LOCATION_FIELDS',
]
