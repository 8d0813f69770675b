"""
Database Schemas for the OKI-MALL shop

Each top-level Pydantic model corresponds to one MongoDB collection
(User -> "users", Product -> "products", Order -> "orders"). Embedded
models describe sub-documents.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

Role = Literal["customer", "admin"]
SocialProvider = Literal["google", "kakao", "facebook"]
Category = Literal["반지", "목걸이", "귀걸이", "팔찌", "기타"]
ProductStatus = Literal["selling", "soldout", "hidden"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
PaymentMethod = Literal["card", "bank_transfer", "naver_pay", "kakao_pay", "phone", "point"]

CATEGORIES = ("반지", "목걸이", "귀걸이", "팔찌", "기타")

PRODUCT_STATUS_TEXT = {
    "selling": "판매중",
    "soldout": "품절",
    "hidden": "숨김",
}

ORDER_STATUS_TEXT = {
    "pending": "주문 대기",
    "confirmed": "주문 확인",
    "processing": "처리 중",
    "shipped": "배송 중",
    "delivered": "배송 완료",
    "cancelled": "취소됨",
    "refunded": "환불됨",
}

PAYMENT_STATUS_TEXT = {
    "pending": "결제 대기",
    "completed": "결제 완료",
    "failed": "결제 실패",
    "refunded": "환불됨",
}


class User(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, description="Display name")
    password_hash: Optional[str] = Field(None, description="BCrypt hash, absent for social-only accounts")
    role: Role = "customer"
    address: Optional[str] = None
    social_provider: Optional[SocialProvider] = None
    social_id: Optional[str] = None
    profile_image: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class OptionValue(BaseModel):
    value: str
    label: Optional[str] = None
    price_adjustment: float = 0
    stock: int = 0


class OptionGroup(BaseModel):
    type: str = Field(..., min_length=1, description="Key used by selected_options, e.g. 'size'")
    label: str = Field(..., min_length=1)
    values: List[OptionValue] = []


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    category: Category
    status: ProductStatus = "selling"
    image: Optional[str] = None
    images: List[str] = []
    options: List[OptionGroup] = []
    created_by: Optional[str] = None

    @field_validator("sku")
    @classmethod
    def upper_sku(cls, v):
        return v.strip().upper()


class ShippingAddress(BaseModel):
    recipient_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    detail_address: Optional[str] = None
    delivery_request: str = ""


class OrderItem(BaseModel):
    product_id: str
    product_name: str
    product_image: str = ""
    sku: str
    selected_options: Dict[str, str] = {}
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)


class Order(BaseModel):
    order_number: str
    user_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: ShippingAddress
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    shipping_fee: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    payment_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    status: OrderStatus = "pending"
    tracking_number: Optional[str] = None
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    cancelled_date: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    refund_amount: Optional[float] = Field(None, ge=0)
    refund_date: Optional[datetime] = None
    notes: str = ""
