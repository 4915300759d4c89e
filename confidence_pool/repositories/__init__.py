from .document_store import DocumentStore, MongoDocumentStore, Transaction
from .confidence_repository import ConfidencePaths, ConfidenceRepository
from .dual_write import DualPickWriter, PickSubmission

__all__ = [
    "DocumentStore",
    "MongoDocumentStore",
    "Transaction",
    "ConfidencePaths",
    "ConfidenceRepository",
    "DualPickWriter",
    "PickSubmission",
]
