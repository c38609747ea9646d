# Import every model so Base.metadata knows all tables before create_all()
from .subscriber import Subscriber
from .newsletter import Newsletter
from .email_log import EmailLog
from .transaction import Transaction
from .tool import Tool

__all__ = [
    "Subscriber",
    "Newsletter",
    "EmailLog",
    "Transaction",
    "Tool",
]
