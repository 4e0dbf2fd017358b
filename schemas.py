"""
Database Schemas for the Delivery Marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: customers, store owners, drivers and admins
- store: merchants delivering within a radius
- category: store categories (nested through parent_id)
- product: items a store sells, with options and addons
- cart: one staging cart per user and store
- order: immutable priced snapshot of a cart plus its status history
- review: user reviews of delivered orders
- coupon: discount rules with usage and eligibility limits
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["client", "store_owner", "admin", "delivery_driver"]
OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "on_way", "delivered", "cancelled", "refunded"]
PaymentMethod = Literal["cash", "card", "digital_wallet"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
DiscountType = Literal["percentage", "fixed", "free_delivery"]
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Address(BaseModel):
    label: str = Field("Home", description="Home, Work, etc.")
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: Optional[str] = None
    country: str = "Argentina"
    coordinates: Coordinates
    instructions: Optional[str] = Field(None, max_length=200)
    is_default: bool = False


class NotificationPreferences(BaseModel):
    email: bool = True
    push: bool = True
    sms: bool = False


class Preferences(BaseModel):
    notifications: NotificationPreferences = NotificationPreferences()
    dietary: List[str] = []
    language: str = "es"


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    phone: Optional[str] = None
    role: Role = Field("client")
    avatar: Optional[str] = None
    addresses: List[Address] = []
    favorite_stores: List[str] = []
    loyalty_points: int = 0
    is_active: bool = True
    last_login: Optional[datetime] = None
    preferences: Preferences = Preferences()


class StoreAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: Optional[str] = None
    country: str = "Argentina"


class OperatingHours(BaseModel):
    day: Weekday
    is_open: bool = True
    open_time: str = Field("09:00", pattern=r"^\d{2}:\d{2}$")
    close_time: str = Field("22:00", pattern=r"^\d{2}:\d{2}$")


class DeliveryWindow(BaseModel):
    min: int = 20
    max: int = 45


class DeliveryInfo(BaseModel):
    delivery_radius: float = Field(5, ge=0.5, le=50, description="km")
    minimum_order: float = Field(0, ge=0)
    delivery_fee: float = Field(2.5, ge=0)
    free_delivery_threshold: Optional[float] = Field(None, ge=0)
    estimated_delivery_time: DeliveryWindow = DeliveryWindow()


class RatingSummary(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = 0


class StoreSettings(BaseModel):
    accept_orders: bool = True
    auto_accept_orders: bool = False
    preparation_time: int = Field(15, ge=0, description="minutes")
    max_orders_per_hour: int = 20


class Store(BaseModel):
    owner_id: str = Field(..., description="Reference to user _id (store_owner)")
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[str] = None
    logo: Optional[str] = None
    banner: Optional[str] = None
    address: StoreAddress
    location: Coordinates
    phone: str
    email: Optional[EmailStr] = None
    operating_hours: List[OperatingHours] = []
    delivery_info: DeliveryInfo = DeliveryInfo()
    rating: RatingSummary = RatingSummary()
    average_rating: float = 0
    total_reviews: int = 0
    tags: List[str] = []
    payment_methods: List[PaymentMethod] = ["cash", "card"]
    is_active: bool = True
    is_verified: bool = False
    is_featured: bool = False
    total_orders: int = 0
    total_revenue: float = 0
    settings: StoreSettings = StoreSettings()


class Category(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    slug: str
    description: Optional[str] = Field(None, max_length=200)
    icon: Optional[str] = None
    image: Optional[str] = None
    color: str = "#3B82F6"
    parent_id: Optional[str] = None
    level: int = 0
    sort_order: int = 0
    is_active: bool = True
    is_featured: bool = False


class OptionChoice(BaseModel):
    name: str
    price: float = Field(0, ge=0)
    is_available: bool = True


class ProductOption(BaseModel):
    name: str
    type: Literal["single", "multiple"] = "single"
    required: bool = False
    choices: List[OptionChoice] = []


class ProductAddon(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    is_available: bool = True


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class ProductDiscount(BaseModel):
    type: Literal["percentage", "fixed"]
    value: float = Field(..., ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = False


class Product(BaseModel):
    store_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: str
    images: List[ProductImage] = []
    price: float = Field(..., ge=0)
    options: List[ProductOption] = []
    addons: List[ProductAddon] = []
    tags: List[str] = []
    preparation_time: int = 10
    is_available: bool = True
    stock: Optional[int] = Field(None, ge=0, description="None means unlimited")
    rating: RatingSummary = RatingSummary()
    total_orders: int = 0
    is_featured: bool = False
    discount: Optional[ProductDiscount] = None


class Customization(BaseModel):
    name: str
    options: List[str] = []
    price: float = 0


class Addon(BaseModel):
    name: str
    price: float = 0
    quantity: int = Field(1, ge=1)


class CartItem(BaseModel):
    id: str
    product_id: str
    name: str
    category: Optional[str] = None
    quantity: int = Field(1, ge=1)
    customizations: List[Customization] = []
    addons: List[Addon] = []
    special_instructions: Optional[str] = Field(None, max_length=200)
    price: float
    total_price: float


class AppliedCoupon(BaseModel):
    code: str
    coupon_id: str
    discount_amount: float


class ScheduledDelivery(BaseModel):
    date: Optional[datetime] = None
    time_slot: str = "ASAP"


class Cart(BaseModel):
    user_id: str
    store_id: str
    items: List[CartItem] = []
    subtotal: float = 0
    tax: float = 0
    delivery_fee: float = 0
    service_fee: float = 0
    discount: float = 0
    total: float = 0
    applied_coupon: Optional[AppliedCoupon] = None
    delivery_address: Optional[Address] = None
    distance_km: Optional[float] = None
    scheduled_delivery: ScheduledDelivery = ScheduledDelivery()
    is_active: bool = True
    expires_at: Optional[datetime] = None


class OrderItem(BaseModel):
    product_id: str
    name: str
    category: Optional[str] = None
    price: float
    quantity: int = Field(..., ge=1)
    customizations: List[Customization] = []
    addons: List[Addon] = []
    total_price: float
    special_instructions: Optional[str] = None


class ContactInfo(BaseModel):
    phone: str = Field(..., min_length=6, max_length=20)
    email: Optional[EmailStr] = None


class PaymentInfo(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class Pricing(BaseModel):
    subtotal: float
    delivery_fee: float = 0
    service_fee: float = 0
    tax: float = 0
    discount: float = 0
    total: float


class OrderCoupon(BaseModel):
    code: str
    type: DiscountType
    discount: float


class Timing(BaseModel):
    estimated_preparation: int = 20
    estimated_delivery: int = 25
    distance_km: Optional[float] = None
    requested_delivery_time: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class OrderRating(BaseModel):
    food: int = Field(..., ge=1, le=5)
    delivery: int = Field(..., ge=1, le=5)
    overall: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    rated_at: datetime


class StatusChange(BaseModel):
    status: OrderStatus
    at: datetime
    by: Optional[str] = None


class Order(BaseModel):
    order_number: str
    customer_id: str
    store_id: str
    items: List[OrderItem]
    status: OrderStatus = "pending"
    status_history: List[StatusChange] = []
    delivery_address: Address
    contact_info: ContactInfo
    payment_info: PaymentInfo
    pricing: Pricing
    coupon: Optional[OrderCoupon] = None
    timing: Timing = Timing()
    driver_id: Optional[str] = None
    rating: Optional[OrderRating] = None
    special_instructions: Optional[str] = Field(None, max_length=500)
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    loyalty_points_earned: int = 0


class StoreReply(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)
    responded_at: datetime
    responded_by: str


class Review(BaseModel):
    user_id: str
    store_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    food_quality: Optional[int] = Field(None, ge=1, le=5)
    delivery_time: Optional[int] = Field(None, ge=1, le=5)
    customer_service: Optional[int] = Field(None, ge=1, le=5)
    is_approved: bool = True
    is_reported: bool = False
    report_count: int = 0
    store_response: Optional[StoreReply] = None
    helpful_votes: int = 0
    voted_users: List[str] = []


class CouponUsage(BaseModel):
    user_id: str
    order_id: str
    used_at: datetime
    discount_applied: float


class Coupon(BaseModel):
    code: str = Field(..., min_length=3, max_length=20)
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    min_order_amount: float = Field(0, ge=0)
    max_usage: Optional[int] = Field(None, ge=1, description="None means unlimited")
    max_usage_per_user: int = Field(1, ge=1)
    usage_count: int = 0
    start_date: datetime
    end_date: datetime
    applicable_stores: List[str] = []
    applicable_categories: List[str] = []
    applicable_products: List[str] = []
    eligible_users: List[str] = []
    new_users_only: bool = False
    is_active: bool = True
    created_by: str
    used_by: List[CouponUsage] = []
