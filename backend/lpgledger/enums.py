# Overview: Closed vocabularies shared by models, services and routes.

from __future__ import annotations

from enum import Enum


class TransactionType(str, Enum):
    SALE = "SALE"
    PAYMENT = "PAYMENT"
    BUYBACK = "BUYBACK"
    RETURN_EMPTY = "RETURN_EMPTY"
    ADJUSTMENT = "ADJUSTMENT"
    CREDIT_NOTE = "CREDIT_NOTE"


class ReturnedCondition(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    EMPTY = "EMPTY"


class CylinderStatus(str, Enum):
    FULL = "FULL"
    EMPTY = "EMPTY"
    MAINTENANCE = "MAINTENANCE"
    WITH_CUSTOMER = "WITH_CUSTOMER"
    RETIRED = "RETIRED"


class CylinderEventType(str, Enum):
    SALE = "SALE"
    RETURN_EMPTY = "RETURN_EMPTY"
    BUYBACK = "BUYBACK"
    REFILL = "REFILL"
    SEND_TO_MAINTENANCE = "SEND_TO_MAINTENANCE"
    RELEASE_FROM_MAINTENANCE = "RELEASE_FROM_MAINTENANCE"
    RETIRE = "RETIRE"


class CustomerType(str, Enum):
    B2B = "B2B"
    B2C = "B2C"


class B2CItemKind(str, Enum):
    GAS = "GAS"
    ACCESSORY = "ACCESSORY"
