from .customers import Customer, Conversation, Message, ConversationState
from .inventory import Product, RestockSubscription
from .orders import Order, OrderItem, Payment, PaymentInstallment
from .finance import Expense, Income
from .auth import User, SessionToken

__all__ = [
    'Customer', 'Conversation', 'Message', 'ConversationState',
    'Product', 'RestockSubscription',
    'Order', 'OrderItem', 'Payment', 'PaymentInstallment',
    'Expense', 'Income',
    'User', 'SessionToken',
]
