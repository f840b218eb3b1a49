# Models package — import all models here so Alembic can discover them.

from hotmess.models.user import User  # noqa: F401
from hotmess.models.business import Business  # noqa: F401
from hotmess.models.catalog import TicketListing, Product  # noqa: F401
from hotmess.models.purchase import Purchase  # noqa: F401
from hotmess.models.escrow import EscrowOrder, Dispute, PickupBeacon  # noqa: F401
from hotmess.models.ledger import LedgerEntry  # noqa: F401
from hotmess.models.connect_account import StripeConnectAccount  # noqa: F401
from hotmess.models.notification import Notification  # noqa: F401
from hotmess.models.stripe_event import StripeEvent  # noqa: F401
from hotmess.models.audit import AuditEvent  # noqa: F401
