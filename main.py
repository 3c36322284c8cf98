import os
import json
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import Optional, Literal, Dict, Any

from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

import database
from database import db, doc_key, serialize, subscribe
import chats
import notifications
from schemas import Category
from notifications import NotificationBatchError, notification_state
from rentals import (
    derive_status,
    estimate_listing_revenue,
    rental_end_date,
    status_label,
    summarize_rent_requests,
)

# Firebase Admin for token verification
import firebase_admin
from firebase_admin import auth as fb_auth, credentials

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("heavyrent")

# Initialize Firebase Admin SDK once if not already
if not firebase_admin._apps:
    cred_json = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON")
    if cred_json:
        try:
            cred = credentials.Certificate(json.loads(cred_json))
            firebase_admin.initialize_app(cred)
        except (ValueError, OSError):
            logger.exception("Invalid FIREBASE_SERVICE_ACCOUNT_JSON, using default credentials")
            firebase_admin.initialize_app()
    else:
        try:
            firebase_admin.initialize_app()
        except Exception:
            logger.warning("Firebase Admin not initialized; token verification will fail")

MACHINERY = "machinery"
USERS = "users"
RENT_REQUESTS = "rentRequests"
CATEGORIES = "categories"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if db is not None and os.getenv("LIVE_NOTIFICATIONS", "1") != "0":
        notification_state.start(subscribe)
    yield
    notification_state.stop()


app = FastAPI(title="HeavyRent Admin API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------
# Helpers
# ------------------------
def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


@contextmanager
def store_call(action: str):
    try:
        yield
    except PyMongoError:
        logger.exception("Store failure: %s", action)
        raise HTTPException(status_code=503, detail=f"Failed to {action}")


def find_user(d, uid: str) -> Optional[dict]:
    return d[USERS].find_one({"$or": [{"_id": uid}, {"uid": uid}]})


def now():
    return datetime.now(timezone.utc)


def verify_token(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split(" ")
        if scheme.lower() != "bearer":
            raise ValueError("Invalid auth scheme")
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    try:
        decoded = fb_auth.verify_id_token(token)
        return decoded  # contains uid, email, etc.
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)[:100]}")


def get_current_user(decoded: Dict[str, Any] = Depends(verify_token)) -> Dict[str, Any]:
    uid = decoded.get("uid")
    with store_call("load user profile"):
        user_doc = find_user(get_db(), uid)
    role = user_doc.get("role") if user_doc else None
    blocked = bool(user_doc.get("isBlocked")) if user_doc else False
    return {"uid": uid, "email": decoded.get("email"), "role": role, "isBlocked": blocked}


def require_admin(current: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current.get("role") != "admin" or current.get("isBlocked"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return current


@app.get("/")
def root():
    return {"name": "HeavyRent Admin API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response

# ------------------------
# Dashboard
# ------------------------
@app.get("/dashboard/stats")
def dashboard_stats(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch dashboard statistics"):
        listings = list(d[MACHINERY].find())
        total_users = d[USERS].count_documents({})
        requests = list(d[RENT_REQUESTS].find())
    return {
        "listings": estimate_listing_revenue(listings),
        "totalUsers": total_users,
        "rentals": summarize_rent_requests(requests),
    }

# ------------------------
# Listings
# ------------------------
class PriceUpdate(BaseModel):
    price: str = Field(..., min_length=1)


def _load_listing(d, listing_id: str) -> dict:
    ad = d[MACHINERY].find_one({"_id": doc_key(listing_id)})
    if not ad:
        raise HTTPException(status_code=404, detail="Listing not found")
    return ad


def _decide_listing(listing_id: str, approved: bool) -> dict:
    d = get_db()
    status = "approved" if approved else "rejected"
    with store_call(f"{'approve' if approved else 'reject'} ad"):
        ad = _load_listing(d, listing_id)
        if ad.get("status") != "pending":
            raise HTTPException(status_code=400, detail=f"Listing already {ad.get('status')}")
        d[MACHINERY].update_one({"_id": ad["_id"]}, {"$set": {"status": status, f"{status}At": now()}})
    notifications.notify_user_ad_decision(d, ad, approved)
    return {"id": str(ad["_id"]), "status": status}


@app.get("/machinery")
def list_machinery(status: Optional[Literal["pending", "approved", "rejected"]] = None, admin=Depends(require_admin)):
    d = get_db()
    filter_ = {"status": status} if status else {}
    with store_call("fetch ads"):
        docs = list(d[MACHINERY].find(filter_))
    docs.sort(key=chats.created_time, reverse=True)
    return {"items": [serialize(doc) for doc in docs]}


@app.post("/machinery/{listing_id}/approve")
def approve_listing(listing_id: str, admin=Depends(require_admin)):
    return _decide_listing(listing_id, approved=True)


@app.post("/machinery/{listing_id}/reject")
def reject_listing(listing_id: str, admin=Depends(require_admin)):
    return _decide_listing(listing_id, approved=False)


@app.patch("/machinery/{listing_id}/price")
def update_listing_price(listing_id: str, payload: PriceUpdate, admin=Depends(require_admin)):
    d = get_db()
    with store_call("update price"):
        ad = _load_listing(d, listing_id)
        d[MACHINERY].update_one({"_id": ad["_id"]}, {"$set": {
            "price": payload.price,
            "adminPrice": payload.price,
            "priceUpdatedAt": now(),
            "priceUpdatedBy": "admin",
        }})
        updated = d[MACHINERY].find_one({"_id": ad["_id"]})
    return serialize(updated)


@app.delete("/machinery/{listing_id}")
def delete_listing(listing_id: str, admin=Depends(require_admin)):
    with store_call("delete ad"):
        deleted = database.delete_document(MACHINERY, listing_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Listing not found")
    return {"deleted": True}


@app.get("/publishers")
def list_publishers(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch ad publishers"):
        listings = list(d[MACHINERY].find())
        users = {str(u["_id"]): u for u in d[USERS].find()}
    counts: Dict[str, Dict[str, int]] = {}
    for ad in listings:
        owner = ad.get("userId") or ad.get("ownerId")
        if not owner:
            continue
        c = counts.setdefault(owner, {"total": 0, "pending": 0, "approved": 0, "rejected": 0})
        c["total"] += 1
        if ad.get("status") in c:
            c[ad["status"]] += 1
    items = []
    for owner, c in counts.items():
        user = users.get(owner)
        if not user:
            logger.warning("Listing owner %s has no user profile", owner)
            continue
        items.append({**serialize(user), "adCounts": c})
    items.sort(key=lambda u: u["adCounts"]["total"], reverse=True)
    return {"items": items}

# ------------------------
# Rent Requests
# ------------------------
def _with_display_status(req: dict) -> dict:
    out = serialize(req)
    display = derive_status(req)
    end = rental_end_date(req)
    out["displayStatus"] = display
    out["statusLabel"] = status_label(display)
    out["endDate"] = end.isoformat() if end else None
    return out


@app.get("/rent-requests")
def list_rent_requests(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch rent requests"):
        docs = list(d[RENT_REQUESTS].find().sort("requestedAt", -1))
    return {"items": [_with_display_status(doc) for doc in docs]}


@app.get("/rent-requests/summary")
def rent_requests_summary(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch rent requests"):
        docs = list(d[RENT_REQUESTS].find())
    return summarize_rent_requests(docs)


def _load_pending_request(d, request_id: str) -> dict:
    req = d[RENT_REQUESTS].find_one({"_id": doc_key(request_id)})
    if not req:
        raise HTTPException(status_code=404, detail="Rent request not found")
    if req.get("status") != "pending":
        raise HTTPException(status_code=400, detail=f"Rent request already {req.get('status')}")
    return req


def _send_contact_cards(d, req: dict):
    request_id = str(req["_id"])
    stamp = int(now().timestamp() * 1000)
    rental = {
        "machineryName": req.get("machineryName"),
        "rentalStartDate": req.get("rentalStartDate"),
        "rentalDuration": req.get("rentalDuration"),
        "deliveryLocation": req.get("deliveryLocation"),
    }
    cards = [
        {
            "chatId": f"rent_approved_renter_{request_id}_{stamp}",
            "recipientId": req.get("userId"),
            "message": "Here are the machinery owner details. Please contact them to arrange delivery:",
            "type": "publisher_card",
            "publisherCard": {
                "ownerName": req.get("machineryOwnerName"),
                "ownerPhone": req.get("machineryOwnerPhone"),
                "ownerCNIC": req.get("machineryOwnerCNIC"),
                "ownerAddress": req.get("machineryOwnerAddress"),
                **rental,
            },
        },
        {
            "chatId": f"rent_approved_publisher_{request_id}_{stamp}",
            "recipientId": req.get("machineryOwnerId"),
            "message": "Here are the renter details. Please contact them to coordinate delivery:",
            "type": "renter_card",
            "renterCard": {
                "renterName": req.get("userName"),
                "renterPhone": req.get("userPhone"),
                "renterAddress": req.get("userAddress"),
                "projectType": req.get("projectType"),
                "operatorRequired": req.get("operatorRequired"),
                **rental,
            },
        },
    ]
    for card in cards:
        try:
            d[chats.CHAT_MESSAGES].insert_one({
                "senderId": chats.ADMIN_SENDER,
                "senderName": "Admin Support",
                "senderType": chats.ADMIN_SENDER,
                "createdAt": now(),
                "status": "sent",
                **card,
            })
        except PyMongoError:
            logger.exception("Failed to send %s for rent request %s", card["type"], request_id)


@app.post("/rent-requests/{request_id}/approve")
def approve_rent_request(request_id: str, admin=Depends(require_admin)):
    d = get_db()
    with store_call("approve request"):
        req = _load_pending_request(d, request_id)
        d[RENT_REQUESTS].update_one({"_id": req["_id"]}, {"$set": {
            "status": "approved",
            "approvedAt": now(),
            "approvedBy": "admin",
        }})
    _send_contact_cards(d, req)
    notifications.notify_rent_request_approved(d, req)
    return _with_display_status({**req, "status": "approved"})


@app.post("/rent-requests/{request_id}/reject")
def reject_rent_request(request_id: str, admin=Depends(require_admin)):
    d = get_db()
    with store_call("reject request"):
        req = _load_pending_request(d, request_id)
        d[RENT_REQUESTS].update_one({"_id": req["_id"]}, {"$set": {
            "status": "rejected",
            "rejectedAt": now(),
            "rejectedBy": "admin",
        }})
    return _with_display_status({**req, "status": "rejected"})


@app.post("/rent-requests/{request_id}/seen")
def mark_rent_request_seen(request_id: str, admin=Depends(require_admin)):
    with store_call("update request"):
        found = database.update_document(RENT_REQUESTS, request_id, {"adminSeen": True})
    if not found:
        raise HTTPException(status_code=404, detail="Rent request not found")
    return {"id": request_id, "adminSeen": True}

# ------------------------
# Users
# ------------------------
def _set_user_flags(user_id: str, action: str, fields: Dict[str, Any]):
    with store_call(f"{action} user"):
        found = database.update_document(USERS, user_id, fields)
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return {"id": user_id, **{k: v for k, v in fields.items() if isinstance(v, bool)}}


@app.get("/users")
def list_users(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch users"):
        docs = list(d[USERS].find())
    return {"items": [serialize(u) for u in docs]}


@app.post("/users/{user_id}/block")
def block_user(user_id: str, admin=Depends(require_admin)):
    return _set_user_flags(user_id, "block", {"isBlocked": True, "blockedAt": now()})


@app.post("/users/{user_id}/unblock")
def unblock_user(user_id: str, admin=Depends(require_admin)):
    return _set_user_flags(user_id, "unblock", {"isBlocked": False, "unblockedAt": now()})


@app.post("/users/{user_id}/verify")
def verify_user(user_id: str, admin=Depends(require_admin)):
    return _set_user_flags(user_id, "verify", {"isVerified": True, "verifiedAt": now()})


@app.delete("/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin)):
    d = get_db()
    with store_call("delete user"):
        res = d[USERS].delete_one({"_id": doc_key(user_id)})
        if res.deleted_count == 0:
            raise HTTPException(status_code=404, detail="User not found")
        removed = d[MACHINERY].delete_many({"userId": user_id}).deleted_count
    return {"deleted": True, "listingsDeleted": removed}


@app.post("/users/{user_id}/chat")
def chat_with_user(user_id: str, admin=Depends(require_admin)):
    d = get_db()
    with store_call("initiate chat with user"):
        user = d[USERS].find_one({"_id": doc_key(user_id)})
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        ref = chats.start_admin_chat(d, user)
    return {"chatId": ref.chat_id, "userId": ref.user_id}

# ------------------------
# Categories
# ------------------------
class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1)
    order: Optional[int] = None
    iconLibrary: str = "MaterialCommunityIcons"
    iconName: str = Field(..., min_length=1)


class CategoryOrder(BaseModel):
    order: int


def _check_unique_name(d, name: str, exclude_id=None):
    wanted = name.strip().lower()
    for cat in d[CATEGORIES].find({}, {"name": 1}):
        if exclude_id is not None and cat["_id"] == exclude_id:
            continue
        if (cat.get("name") or "").strip().lower() == wanted:
            raise HTTPException(status_code=400, detail="This category name already exists")


@app.get("/categories")
def list_categories():
    d = get_db()
    with store_call("fetch categories"):
        docs = list(d[CATEGORIES].find().sort("order", 1))
    return {"items": [serialize(c) for c in docs]}


@app.post("/categories")
def create_category(payload: CategoryIn, admin=Depends(require_admin)):
    d = get_db()
    with store_call("save category"):
        _check_unique_name(d, payload.name)
        order = payload.order
        if order is None:
            orders = [c.get("order") or 0 for c in d[CATEGORIES].find({}, {"order": 1})]
            order = max(orders, default=0) + 1
        if order < 1:
            raise HTTPException(status_code=400, detail="Order must be at least 1")
        cat_id = database.create_document(CATEGORIES, Category(
            name=payload.name.strip(),
            order=order,
            iconLibrary=payload.iconLibrary,
            iconName=payload.iconName.strip(),
        ))
    return {"id": cat_id, "name": payload.name.strip(), "order": order}


@app.put("/categories/{category_id}")
def update_category(category_id: str, payload: CategoryIn, admin=Depends(require_admin)):
    d = get_db()
    key = doc_key(category_id)
    with store_call("save category"):
        if d[CATEGORIES].find_one({"_id": key}) is None:
            raise HTTPException(status_code=404, detail="Category not found")
        _check_unique_name(d, payload.name, exclude_id=key)
        fields: Dict[str, Any] = {
            "name": payload.name.strip(),
            "iconLibrary": payload.iconLibrary,
            "iconName": payload.iconName.strip(),
            "updatedAt": now(),
        }
        if payload.order is not None:
            if payload.order < 1:
                raise HTTPException(status_code=400, detail="Order must be at least 1")
            fields["order"] = payload.order
        d[CATEGORIES].update_one({"_id": key}, {"$set": fields})
        updated = d[CATEGORIES].find_one({"_id": key})
    return serialize(updated)


@app.patch("/categories/{category_id}/order")
def update_category_order(category_id: str, payload: CategoryOrder, admin=Depends(require_admin)):
    if payload.order < 1:
        raise HTTPException(status_code=400, detail="Order must be at least 1")
    with store_call("update order"):
        found = database.update_document(CATEGORIES, category_id, {"order": payload.order, "updatedAt": now()})
    if not found:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"id": category_id, "order": payload.order}


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin)):
    with store_call("delete category"):
        deleted = database.delete_document(CATEGORIES, category_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"deleted": True}

# ------------------------
# Chats
# ------------------------
class ChatReply(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


def _unread_counts(d):
    # the live subscription keeps this current; without one, refresh on read
    if not notification_state.live:
        return notification_state.refresh(d)
    return notification_state.counts()


@app.get("/chats")
def list_chats(admin=Depends(require_admin)):
    d = get_db()
    with store_call("load chats"):
        counts = _unread_counts(d)
        messages = list(d[chats.CHAT_MESSAGES].find().sort("createdAt", -1))
        lists = chats.assemble_conversations(messages, counts.perChat, lambda uid: find_user(d, uid))
    return {
        "general": lists.general,
        "machinery": lists.machinery,
        "tabCounts": {
            "generalSupport": counts.generalSupport,
            "machineryInquiries": counts.machineryInquiries,
        },
    }


@app.get("/chats/{chat_id}/messages")
def get_chat_messages(chat_id: str, admin=Depends(require_admin)):
    d = get_db()
    try:
        notifications.mark_chat_read(d, chat_id)
    except NotificationBatchError as e:
        logger.error("Chat %s: %s", chat_id, e)
    except PyMongoError:
        logger.exception("Failed to mark chat %s read", chat_id)
    with store_call("load messages"):
        notification_state.refresh(d)
        msgs = chats.conversation_messages(d, chat_id)
    return {"chatId": chat_id, "items": [serialize(m) for m in msgs]}


@app.post("/chats/{chat_id}/messages")
def post_chat_message(chat_id: str, payload: ChatReply, admin=Depends(require_admin)):
    d = get_db()
    with store_call("send message"):
        try:
            message_id = chats.send_admin_message(d, chat_id, payload.message.strip())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"id": message_id, "chatId": chat_id}

# ------------------------
# Admin Notifications
# ------------------------
@app.get("/notifications")
def list_notifications(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch notifications"):
        docs = list(d[notifications.ADMIN_NOTIFICATIONS].find().sort("createdAt", -1))
    return {"items": [serialize(n) for n in docs]}


@app.get("/notifications/unread-count")
def unread_count(admin=Depends(require_admin)):
    d = get_db()
    with store_call("fetch unread count"):
        counts = _unread_counts(d)
    return counts


@app.post("/notifications/{notification_id}/read")
def read_notification(notification_id: str, admin=Depends(require_admin)):
    d = get_db()
    with store_call("mark notification read"):
        found = notifications.mark_notification_read(d, notification_id)
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"id": notification_id, "status": notifications.READ}


@app.post("/notifications/read-all")
def read_all_notifications(admin=Depends(require_admin)):
    d = get_db()
    try:
        with store_call("mark all as read"):
            marked = notifications.mark_all_read(d)
    except NotificationBatchError as e:
        logger.error("Mark all as read: %s", e)
        raise HTTPException(status_code=502, detail=f"Failed to mark all as read ({len(e.failed)} of {e.total} failed)")
    return {"marked": marked}


@app.delete("/notifications/{notification_id}")
def remove_notification(notification_id: str, admin=Depends(require_admin)):
    d = get_db()
    with store_call("delete notification"):
        deleted = notifications.delete_notification(d, notification_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"deleted": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
