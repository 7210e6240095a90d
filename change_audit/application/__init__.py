# Application layer: provisioning, subscription, record building, sink and the manager that wires them.

from change_audit.application.feed_worker import CollectionFeedWorker
from change_audit.application.manager import AuditManager
from change_audit.application.provisioner import PreImageProvisioner
from change_audit.application.record_builder import AuditRecordBuilder
from change_audit.application.sink import AuditObserver, AuditSink
from change_audit.application.subscriber import ChangeSubscriber, normalize_change

__all__ = [
    "AuditManager",
    "AuditObserver",
    "AuditRecordBuilder",
    "AuditSink",
    "ChangeSubscriber",
    "CollectionFeedWorker",
    "PreImageProvisioner",
    "normalize_change",
]
