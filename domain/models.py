# domain/models.py

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

ORDERS = "orders"
CUSTOMERS = "customers"
INVENTORY = "inventory"
MEMBERS = "members"
PRODUCTS = "products"
WORKFLOWS = "workflows"

ENTITY_NAMES = (ORDERS, INVENTORY, MEMBERS, PRODUCTS, CUSTOMERS, WORKFLOWS)


class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    DONE = "Done"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class ServiceType(str, Enum):
    REPAIR = "Repair"
    CLEANING = "Cleaning"
    PLATING = "Plating"
    DYEING = "Dyeing"
    CUSTOM = "Custom"
    PRODUCT = "Product"


class CustomerTier(str, Enum):
    STANDARD = "Standard"
    VIP = "VIP"
    VVIP = "VVIP"


class MemberStatus(str, Enum):
    ACTIVE = "Active"
    OFF = "Off"


class InventoryCategory(str, Enum):
    CHEMICAL = "Hoá chất"
    ACCESSORY = "Phụ kiện"
    TOOL = "Dụng cụ"
    CONSUMABLE = "Vật tư tiêu hao"


class DiscountType(str, Enum):
    MONEY = "money"
    PERCENT = "percent"


def _enum(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Orders and line items
# ---------------------------------------------------------------------------

@dataclass
class StageHistoryEntry:
    """
    One visit of a line item to a workflow stage.
    Timestamps are epoch milliseconds; the entry is open while left_at is None.
    """
    stage_id: str
    stage_name: str
    entered_at: int
    performed_by: str
    left_at: Optional[int] = None
    duration: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.left_at is None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageHistoryEntry":
        return cls(**data)


@dataclass
class TechnicalLogEntry:
    id: str
    content: str
    author: str
    timestamp: str
    stage: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TechnicalLogEntry":
        return cls(**data)


@dataclass
class OrderItem:
    id: str
    name: str
    service_type: ServiceType = ServiceType.CUSTOM
    price: float = 0
    quantity: int = 1
    status: Optional[str] = None  # stage id or terminal keyword
    is_product: bool = False
    technician_id: Optional[str] = None
    before_image: Optional[str] = None
    after_image: Optional[str] = None
    service_id: Optional[str] = None
    workflow_id: Optional[str] = None
    history: List[StageHistoryEntry] = field(default_factory=list)
    technical_log: List[TechnicalLogEntry] = field(default_factory=list)
    last_updated: Optional[int] = None
    notes: Optional[str] = None
    assigned_members: List[str] = field(default_factory=list)
    commissions: Any = None
    stage_assignments: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderItem":
        data = dict(data)
        data["service_type"] = _enum(ServiceType, data.get("service_type"), ServiceType.CUSTOM)
        data["history"] = [StageHistoryEntry.from_dict(h) for h in data.get("history") or []]
        data["technical_log"] = [TechnicalLogEntry.from_dict(t) for t in data.get("technical_log") or []]
        return cls(**data)


@dataclass
class Order:
    id: str
    customer_id: str
    customer_name: str
    items: List[OrderItem] = field(default_factory=list)
    total_amount: float = 0
    deposit: float = 0
    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[str] = None
    expected_delivery: Optional[str] = None
    notes: Optional[str] = None
    discount: float = 0
    discount_type: DiscountType = DiscountType.MONEY
    additional_fees: float = 0
    surcharge_reason: str = ""

    def find_item(self, item_id: str) -> Optional[OrderItem]:
        return next((i for i in self.items if i.id == item_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        data = dict(data)
        data["items"] = [OrderItem.from_dict(i) for i in data.get("items") or []]
        data["status"] = _enum(OrderStatus, data.get("status"), OrderStatus.PENDING)
        data["discount_type"] = _enum(DiscountType, data.get("discount_type"), DiscountType.MONEY)
        return cls(**data)


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

@dataclass
class WorkflowTodo:
    id: str
    title: str
    required: bool = False


@dataclass
class WorkflowStage:
    id: str
    name: str
    order: int = 0
    color: Optional[str] = None
    details: Optional[str] = None
    standards: Optional[str] = None
    assigned_members: List[str] = field(default_factory=list)
    todos: List[WorkflowTodo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowStage":
        data = dict(data)
        data["todos"] = [WorkflowTodo(**t) for t in data.get("todos") or []]
        return cls(**data)


@dataclass
class WorkflowMaterial:
    """Inventory consumed per unit of work."""
    inventory_item_id: str
    quantity: float


@dataclass
class WorkflowDefinition:
    id: str
    label: str
    description: str = ""
    department: Optional[str] = None
    color: str = "#3b82f6"
    types: List[ServiceType] = field(default_factory=list)
    stages: List[WorkflowStage] = field(default_factory=list)
    materials: List[WorkflowMaterial] = field(default_factory=list)

    def find_stage(self, stage_id: str) -> Optional[WorkflowStage]:
        return next((s for s in self.stages if s.id == stage_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        data = dict(data)
        data["types"] = [_enum(ServiceType, t, ServiceType.CUSTOM) for t in data.get("types") or []]
        data["stages"] = [WorkflowStage.from_dict(s) for s in data.get("stages") or []]
        data["materials"] = [WorkflowMaterial(**m) for m in data.get("materials") or []]
        return cls(**data)


# ---------------------------------------------------------------------------
# Flat records
# ---------------------------------------------------------------------------

@dataclass
class Customer:
    id: str
    name: str
    phone: Optional[str] = None
    email: str = ""
    address: Optional[str] = None
    tier: CustomerTier = CustomerTier.STANDARD
    total_spent: float = 0
    last_visit: str = ""
    notes: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    assignee_id: Optional[str] = None
    interaction_count: int = 0
    group: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Customer":
        data = dict(data)
        data["tier"] = _enum(CustomerTier, data.get("tier"), CustomerTier.STANDARD)
        return cls(**data)


@dataclass
class InventoryItem:
    id: str
    name: str
    sku: Optional[str] = None
    category: InventoryCategory = InventoryCategory.CONSUMABLE
    quantity: float = 0
    unit: Optional[str] = None
    min_threshold: float = 0
    import_price: float = 0
    supplier: Optional[str] = None
    last_import: Optional[str] = None
    image: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InventoryItem":
        data = dict(data)
        data["category"] = _enum(InventoryCategory, data.get("category"), InventoryCategory.CONSUMABLE)
        return cls(**data)


@dataclass
class Member:
    id: str
    name: str
    role: str = "Tư vấn viên"
    phone: Optional[str] = None
    email: str = ""
    status: MemberStatus = MemberStatus.ACTIVE
    avatar: Optional[str] = None
    specialty: Optional[str] = None
    department: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Member":
        data = dict(data)
        data["status"] = _enum(MemberStatus, data.get("status"), MemberStatus.ACTIVE)
        return cls(**data)


@dataclass
class Product:
    id: str
    name: str
    category: Optional[str] = None
    price: float = 0
    stock: int = 0
    image: Optional[str] = None
    desc: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        return cls(**data)


ENTITY_TYPES = {
    ORDERS: Order,
    CUSTOMERS: Customer,
    INVENTORY: InventoryItem,
    MEMBERS: Member,
    PRODUCTS: Product,
    WORKFLOWS: WorkflowDefinition,
}
