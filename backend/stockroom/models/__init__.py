from .inventory import Product
from .sales import Sale
from .settings import Setting, DEFAULT_SETTINGS
from .backups import Backup, BACKUP_TYPES
from .audit import AuditLogEntry

# Collection names exposed to the rest of the package.
PRODUCTS = "products"
SALES = "sales"
SETTINGS = "settings"
BACKUPS = "backups"
AUDIT_LOG = "audit_log"

COLLECTIONS = {
    PRODUCTS: Product,
    SALES: Sale,
    SETTINGS: Setting,
    BACKUPS: Backup,
    AUDIT_LOG: AuditLogEntry,
}

# Bump when a collection or index changes; embedded in backups and exports.
SCHEMA_VERSION = 3

__all__ = [
    'Product', 'Sale', 'Setting', 'Backup', 'AuditLogEntry',
    'DEFAULT_SETTINGS', 'BACKUP_TYPES',
    'PRODUCTS', 'SALES', 'SETTINGS', 'BACKUPS', 'AUDIT_LOG',
    'COLLECTIONS', 'SCHEMA_VERSION',
]
