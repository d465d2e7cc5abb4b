from .documents import Document, DocumentLine
from .payments import Payment, Knockoff
from .audit import AuditEvent
from .sequences import DocumentSequence

__all__ = [
    'Document', 'DocumentLine',
    'Payment', 'Knockoff',
    'AuditEvent',
    'DocumentSequence',
]
