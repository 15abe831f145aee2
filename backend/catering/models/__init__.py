from .users import User, Department
from .requests import ServiceRequest
from .billing import Invoice, Payment
from .attachments import Attachment
from .notifications import Notification
from .documents import DocumentSequence, AuditLog

__all__ = [
    'User', 'Department',
    'ServiceRequest',
    'Invoice', 'Payment',
    'Attachment',
    'Notification',
    'DocumentSequence', 'AuditLog',
]
