"""Database models package."""
from batch_import.db.models.batch_import_job import BatchImportJob
from batch_import.db.models.batch_import_row_error import BatchImportRowError
from batch_import.db.models.catalog import Attribute, AttributeOption, Catalog
from batch_import.db.models.product import Product
from batch_import.db.models.webhook import Webhook

__all__ = [
    "Attribute",
    "AttributeOption",
    "BatchImportJob",
    "BatchImportRowError",
    "Catalog",
    "Product",
    "Webhook",
]
