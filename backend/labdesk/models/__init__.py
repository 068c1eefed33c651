from .tenancy import Laboratory
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent
from .audit import AuditLog
from .dentists import Dentist
from .catalog import Product
from .worksheets import Worksheet, WorksheetProduct
from .invoices import Invoice, InvoiceLineItem, EmailLog
from .settings import BankAccount
from .documents import DocumentSequence

__all__ = [
    'Laboratory',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent', 'AuditLog',
    'Dentist', 'Product',
    'Worksheet', 'WorksheetProduct',
    'Invoice', 'InvoiceLineItem', 'EmailLog',
    'BankAccount', 'DocumentSequence',
]
