from .auth import User, SessionToken
from .patients import Patient
from .catalog import Product
from .discounts import DiscountRequest

__all__ = [
    'User', 'SessionToken',
    'Patient',
    'Product',
    'DiscountRequest',
]
