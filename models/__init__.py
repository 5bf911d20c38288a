from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .shop import Shop, ShopBankAccount
from .field import Field, FieldQuantity
from .slot import FieldSlot
from .promotion import Promotion
from .booking import Booking, BookingSlot
from .payment import Payment, PaymentLog
from .payout import PayoutRequest
from .wallet import ShopWallet, WalletTransaction
from .cart import CartEntry
