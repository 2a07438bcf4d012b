# Models package: import all models here so Alembic can discover them.

from halositek.models.user import User  # noqa: F401
from halositek.models.architect import Architect  # noqa: F401
from halositek.models.transaction import Transaction  # noqa: F401
from halositek.models.audit import AuditEvent  # noqa: F401
