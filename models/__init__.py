from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import BigInteger, Integer

# Use BigInteger in production but fall back to Integer for SQLite
BIGINT = BigInteger().with_variant(Integer, "sqlite")

db = SQLAlchemy()

# Re-export common models for convenience
from .city import City  # noqa: F401
from .product import Product, Addon  # noqa: F401
from .inventory import InventoryItem, Reservation  # noqa: F401
from .customer import Customer  # noqa: F401
from .promo import PromoCode  # noqa: F401
from .order import Order, OrderItem, OrderAddon, OrderStatusLog, OrderPayment  # noqa: F401
