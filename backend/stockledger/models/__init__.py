from .tenancy import Tenant, Setting
from .inventory import Product, ProductComponent, InventoryMovement, Supplier, PurchaseOrder, PurchaseOrderItem
from .sales import Sale, SaleItem
from .customers import Customer, CustomerCredit, CustomerPayment, GroupPurchase, GroupPurchaseParticipant
from .communications import Notification

__all__ = [
    'Tenant', 'Setting',
    'Product', 'ProductComponent', 'InventoryMovement',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
    'Sale', 'SaleItem',
    'Customer', 'CustomerCredit', 'CustomerPayment',
    'GroupPurchase', 'GroupPurchaseParticipant',
    'Notification',
]
