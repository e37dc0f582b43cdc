# Services module

from rivercafe.services.ledger_service import AccountStore, LedgerService, ReconcileResult
from rivercafe.services.fulfillment_service import FulfillmentService
from rivercafe.services.collection_service import CollectionService, CollectionResult
from rivercafe.services.order_placement_service import OrderPlacementService, PlacementResult
from rivercafe.services.account_service import AccountService, CredentialResult
from rivercafe.services.catalog_service import CatalogService
