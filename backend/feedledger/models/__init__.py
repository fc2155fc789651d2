from .parties import Party, PARTY_CUSTOMER, PARTY_WHOLESALE_BUYER, PARTY_TYPES
from .batches import Batch, BatchDiscount, BATCH_ACTIVE, BATCH_COMPLETED
from .inventory import Product
from .sales import Sale, SaleLine, SALE_RETAIL, SALE_WHOLESALE, PAYMENT_CASH, PAYMENT_CREDIT
from .ledger import (
    LedgerTransaction,
    TransactionKind,
    PAYLOAD_TYPES,
    PARTY_KINDS,
    STOCK_KINDS,
    EmptyPayload,
    SaleItem,
    SalePayload,
    WholesaleItem,
    WholesaleSalePayload,
    DiscountPayload,
    BuyBackPayload,
    StockPayload,
)

__all__ = [
    'Party', 'PARTY_CUSTOMER', 'PARTY_WHOLESALE_BUYER', 'PARTY_TYPES',
    'Batch', 'BatchDiscount', 'BATCH_ACTIVE', 'BATCH_COMPLETED',
    'Product',
    'Sale', 'SaleLine', 'SALE_RETAIL', 'SALE_WHOLESALE', 'PAYMENT_CASH', 'PAYMENT_CREDIT',
    'LedgerTransaction', 'TransactionKind', 'PAYLOAD_TYPES', 'PARTY_KINDS', 'STOCK_KINDS',
    'EmptyPayload', 'SaleItem', 'SalePayload', 'WholesaleItem', 'WholesaleSalePayload',
    'DiscountPayload', 'BuyBackPayload', 'StockPayload',
]
