"""
Database Schemas for the HeavyRent admin API

Each Pydantic model describes one MongoDB collection shared with the mobile app.
Field names stay camelCase because the app reads and writes the same documents.

Collections:
- machinery
- users
- rentRequests
- chatMessages
- adminNotifications
- userNotifications
- notifications
- categories
"""

from typing import Optional, List, Literal, Union, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime

ListingStatus = Literal["pending", "approved", "rejected"]
RequestStatus = Literal["pending", "approved", "rejected"]
ReadStatus = Literal["unread", "read"]
Role = Literal["user", "admin"]

Money = Union[float, str, None]


class MachinerySnapshot(BaseModel):
    """Listing details copied into messages and notifications at write time."""
    id: str
    name: str
    category: Optional[str] = None
    price: Optional[str] = None
    location: Optional[str] = None
    imageUrl: Optional[str] = None


class Machinery(BaseModel):
    """
    Listing ("ad") schema
    Collection name: "machinery"
    """
    name: str = Field(..., description="Machinery name")
    category: Optional[str] = Field(None, description="Category id or name")
    categoryName: Optional[str] = None
    price: Optional[str] = Field(None, description="Rent per day, numeric-as-string")
    ownerName: Optional[str] = None
    ownerPhone: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    images: List[str] = []
    specifications: Dict[str, Any] = {}
    policies: List[str] = []
    status: ListingStatus = Field("pending", description="pending -> approved | rejected")
    userId: Optional[str] = Field(None, description="Owning user uid")
    createdAt: Optional[datetime] = None


class RentRequest(BaseModel):
    """
    Rent request schema
    Collection name: "rentRequests"
    """
    userId: str
    userName: Optional[str] = None
    userEmail: Optional[str] = None
    userPhone: Optional[str] = None
    userAddress: Optional[str] = None
    machineryId: str
    machineryName: Optional[str] = None
    machineryOwnerId: Optional[str] = None
    machineryOwnerName: Optional[str] = None
    machineryOwnerPhone: Optional[str] = None
    machineryOwnerCNIC: Optional[str] = None
    machineryOwnerAddress: Optional[str] = None
    rentalStartDate: Optional[str] = Field(None, description="DD/MM/YYYY, MM/DD/YYYY or YYYY-MM-DD")
    rentalDuration: Optional[str] = None
    numberOfDays: Optional[int] = None
    deliveryLocation: Optional[str] = None
    projectType: Optional[str] = None
    operatorRequired: Optional[str] = None
    rentPerDay: Money = None
    totalRent: Money = None
    securityDeposit: Money = None
    advancePayment: Money = None
    remainingPayment: Money = None
    grandTotal: Money = None
    paymentProofUrl: Optional[str] = None
    status: RequestStatus = "pending"
    adminSeen: Optional[bool] = None
    requestedAt: Optional[datetime] = None


class ChatMessage(BaseModel):
    """
    Chat messages schema
    Collection name: "chatMessages"
    """
    chatId: str = Field(..., description="general_*, admin_initiated_* or machinery_*")
    senderId: str
    senderName: Optional[str] = None
    senderType: Role = "user"
    recipientId: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=4000)
    machineryDetails: Optional[MachinerySnapshot] = None
    status: Literal["sent", "delivered", "read"] = "sent"
    createdAt: Optional[datetime] = None


class AdminNotification(BaseModel):
    """
    Admin-facing notifications
    Collection name: "adminNotifications"
    """
    type: str = Field(..., description="new_message, new_ad, ...")
    title: str
    message: str
    userId: Optional[str] = None
    userName: Optional[str] = None
    chatId: Optional[str] = None
    machineryDetails: Optional[MachinerySnapshot] = None
    status: ReadStatus = "unread"
    createdAt: Optional[datetime] = None
    readAt: Optional[datetime] = None


class UserNotification(BaseModel):
    """
    User-facing notifications
    Collection names: "userNotifications" (chat replies, ad decisions) and
    "notifications" (rent request outcomes)
    """
    userId: str
    type: str = Field(..., description="admin_reply, ad_approved, ad_rejected, rent_approved, ...")
    title: str
    message: str
    chatId: Optional[str] = None
    machineryDetails: Optional[MachinerySnapshot] = None
    adId: Optional[str] = None
    adData: Optional[Dict[str, Any]] = None
    requestId: Optional[str] = None
    reason: Optional[str] = None
    priority: Optional[Literal["high", "medium", "low"]] = None
    status: ReadStatus = "unread"
    createdAt: Optional[datetime] = None
    readAt: Optional[datetime] = None


class Category(BaseModel):
    """
    Categories schema
    Collection name: "categories"
    """
    name: str = Field(..., min_length=1, description="Unique display name")
    order: int = Field(1, ge=1, description="Sort order, not unique")
    iconLibrary: Optional[str] = None
    iconName: Optional[str] = None


class User(BaseModel):
    """
    Users schema
    Collection name: "users" (document id is the Firebase uid)
    """
    uid: str = Field(..., description="Firebase Auth UID")
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    role: Role = "user"
    isVerified: bool = False
    isBlocked: bool = False
