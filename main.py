import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

import config
from database import connect
from errors import register_error_handlers
from identity import FirebaseIdentityProvider, IdentityProviderError
from repositories import (
    ListingViews,
    OfferRepository,
    PropertyRepository,
    ReviewRepository,
    UserRepository,
    WishlistRepository,
)
from schemas import TokenRequest, TokenResponse
from security import create_access_token, ensure_self_or_admin, get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter()


# Repositories are built once in create_app and kept on app.state

def get_users(request: Request) -> UserRepository:
    return request.app.state.users

def get_properties(request: Request) -> PropertyRepository:
    return request.app.state.properties

def get_views(request: Request) -> ListingViews:
    return request.app.state.views

def get_wishlist(request: Request) -> WishlistRepository:
    return request.app.state.wishlist

def get_offers(request: Request) -> OfferRepository:
    return request.app.state.offers

def get_reviews(request: Request) -> ReviewRepository:
    return request.app.state.reviews


# Routes
@router.get("/", response_class=PlainTextResponse)
def root():
    return "Bashabari backend is running"

@router.get("/test")
def test_database(request: Request):
    try:
        collections = request.app.state.db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)[:80]}"}

# Auth
@router.post("/auth/token", response_model=TokenResponse)
def issue_token(payload: TokenRequest, request: Request, users: UserRepository = Depends(get_users)):
    try:
        claims = request.app.state.identity.verify_token(payload.idToken)
    except IdentityProviderError:
        raise HTTPException(status_code=401, detail="Invalid identity token")
    email = claims.get("email")
    if not email:
        raise HTTPException(status_code=401, detail="Identity token has no email")
    user = users.get_by_email(email)
    if user.get("status") == "fraud":
        raise HTTPException(status_code=403, detail="Account disabled")
    role = user.get("role", "user")
    access_token = create_access_token({"sub": email, "role": role})
    user_out = {"id": user["id"], "name": user.get("name"), "email": email, "role": role}
    return TokenResponse(access_token=access_token, user=user_out)

@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"id": user["id"], "name": user.get("name"), "email": user.get("email"), "role": user.get("role", "user")}

# Users
@router.post("/users")
def register_user(payload: dict = Body(...), users: UserRepository = Depends(get_users)):
    return users.register_if_absent(payload)

@router.get("/users")
def list_users(users: UserRepository = Depends(get_users), admin=Depends(require_role("admin"))):
    return users.list_all()

@router.get("/users/{email}/role")
def user_role(email: str, users: UserRepository = Depends(get_users)):
    return {"role": users.get_role(email)}

@router.get("/users/{email}")
def get_user(email: str, users: UserRepository = Depends(get_users), user=Depends(get_current_user)):
    ensure_self_or_admin(user, email)
    return users.get_by_email(email)

@router.patch("/users/role/{user_id}")
def change_role(user_id: str, payload: dict = Body(...), users: UserRepository = Depends(get_users),
                admin=Depends(require_role("admin"))):
    return users.set_role(user_id, payload)

@router.patch("/users/fraud/{user_id}")
def flag_fraud(user_id: str, users: UserRepository = Depends(get_users), admin=Depends(require_role("admin"))):
    return users.flag_fraud(user_id)

@router.delete("/users/{user_id}")
def delete_user(user_id: str, users: UserRepository = Depends(get_users), admin=Depends(require_role("admin"))):
    result = users.delete(user_id)
    if result["status"] == "partial":
        return JSONResponse(status_code=207, content=result)
    return result

# Properties
@router.post("/properties")
def create_property(payload: dict = Body(...), properties: PropertyRepository = Depends(get_properties),
                    user=Depends(require_role("agent", "admin"))):
    if payload.get("agentEmail"):
        ensure_self_or_admin(user, payload["agentEmail"])
    return properties.create(payload)

@router.get("/properties")
def list_properties(status: Optional[str] = None, properties: PropertyRepository = Depends(get_properties)):
    return properties.list(status)

@router.get("/properties/agent")
def agent_properties(email: str, properties: PropertyRepository = Depends(get_properties),
                     user=Depends(require_role("agent", "admin"))):
    ensure_self_or_admin(user, email)
    return properties.list_by_agent(email)

@router.get("/properties/advertised")
def advertised_properties(views: ListingViews = Depends(get_views)):
    return views.advertised_highlights()

@router.get("/verified-properties-by-agents")
def verified_properties(views: ListingViews = Depends(get_views)):
    return views.verified_by_agents()

@router.get("/properties/{property_id}")
def get_property(property_id: str, properties: PropertyRepository = Depends(get_properties)):
    return properties.get_by_id(property_id)

@router.patch("/properties/status/{property_id}")
def set_property_status(property_id: str, payload: dict = Body(...),
                        properties: PropertyRepository = Depends(get_properties),
                        admin=Depends(require_role("admin"))):
    return properties.set_status(property_id, payload)

@router.patch("/properties/{property_id}")
def update_property(property_id: str, payload: dict = Body(...),
                    properties: PropertyRepository = Depends(get_properties),
                    user=Depends(require_role("agent", "admin"))):
    ensure_self_or_admin(user, properties.get_by_id(property_id).get("agentEmail"))
    return properties.update(property_id, payload)

@router.delete("/properties/{property_id}")
def delete_property(property_id: str, properties: PropertyRepository = Depends(get_properties),
                    user=Depends(require_role("agent", "admin"))):
    ensure_self_or_admin(user, properties.get_by_id(property_id).get("agentEmail"))
    return properties.delete(property_id)

@router.patch("/advertise/{property_id}")
def advertise_property(property_id: str, properties: PropertyRepository = Depends(get_properties),
                       admin=Depends(require_role("admin"))):
    return properties.advertise(property_id)

# Wishlist
@router.post("/wishlist")
def add_to_wishlist(payload: dict = Body(...), wishlist: WishlistRepository = Depends(get_wishlist),
                    user=Depends(get_current_user)):
    if payload.get("userEmail"):
        ensure_self_or_admin(user, payload["userEmail"])
    return wishlist.add(payload)

@router.get("/wishlist")
def list_wishlist(email: str, wishlist: WishlistRepository = Depends(get_wishlist), user=Depends(get_current_user)):
    ensure_self_or_admin(user, email)
    return wishlist.list(email)

@router.get("/wishlist/exists")
def wishlist_exists(email: str, propertyId: str, wishlist: WishlistRepository = Depends(get_wishlist),
                    user=Depends(get_current_user)):
    ensure_self_or_admin(user, email)
    return {"exists": wishlist.exists(email, propertyId)}

@router.get("/wishlist/{item_id}")
def get_wishlist_item(item_id: str, wishlist: WishlistRepository = Depends(get_wishlist),
                      user=Depends(get_current_user)):
    item = wishlist.get_by_id(item_id)
    ensure_self_or_admin(user, item.get("userEmail"))
    return item

@router.delete("/wishlist/{item_id}")
def remove_from_wishlist(item_id: str, wishlist: WishlistRepository = Depends(get_wishlist),
                         user=Depends(get_current_user)):
    ensure_self_or_admin(user, wishlist.get_by_id(item_id).get("userEmail"))
    return wishlist.remove(item_id)

# Offers
@router.post("/offers")
def submit_offer(payload: dict = Body(...), offers: OfferRepository = Depends(get_offers),
                 user=Depends(get_current_user)):
    if payload.get("buyerEmail"):
        ensure_self_or_admin(user, payload["buyerEmail"])
    return offers.submit(payload)

@router.get("/offers/buyer")
def buyer_offers(email: str, offers: OfferRepository = Depends(get_offers), user=Depends(get_current_user)):
    ensure_self_or_admin(user, email)
    return offers.list_for_buyer(email)

@router.get("/offers/agent")
def agent_offers(email: str, offers: OfferRepository = Depends(get_offers),
                 user=Depends(require_role("agent", "admin"))):
    ensure_self_or_admin(user, email)
    return offers.list_for_agent(email)

@router.get("/offers/{offer_id}")
def get_offer(offer_id: str, offers: OfferRepository = Depends(get_offers), user=Depends(get_current_user)):
    offer = offers.get_by_id(offer_id)
    if user.get("email") not in (offer.get("buyerEmail"), offer.get("agentEmail")):
        ensure_self_or_admin(user, offer.get("buyerEmail"))
    return offer

@router.patch("/offers/status/{offer_id}")
def update_offer_status(offer_id: str, payload: dict = Body(...), offers: OfferRepository = Depends(get_offers),
                        user=Depends(require_role("agent", "admin"))):
    ensure_self_or_admin(user, offers.get_by_id(offer_id).get("agentEmail"))
    return offers.update_status(offer_id, payload)

# Reviews
@router.post("/reviews")
def add_review(payload: dict = Body(...), reviews: ReviewRepository = Depends(get_reviews),
               user=Depends(get_current_user)):
    if payload.get("userEmail"):
        ensure_self_or_admin(user, payload["userEmail"])
    return reviews.add(payload)

@router.get("/reviews")
def property_reviews(propertyId: str, reviews: ReviewRepository = Depends(get_reviews)):
    return reviews.list_by_property(propertyId)

@router.get("/reviews/latest")
def latest_reviews(limit: int = Query(3, ge=1, le=50), reviews: ReviewRepository = Depends(get_reviews)):
    return reviews.list_latest(limit)

@router.get("/reviews/user")
def user_reviews(email: str, reviews: ReviewRepository = Depends(get_reviews), user=Depends(get_current_user)):
    ensure_self_or_admin(user, email)
    return reviews.list_by_user(email)

@router.delete("/reviews/{review_id}")
def delete_own_review(review_id: str, reviews: ReviewRepository = Depends(get_reviews),
                      user=Depends(get_current_user)):
    ensure_self_or_admin(user, reviews.get_by_id(review_id).get("userEmail"))
    return reviews.delete(review_id)

# Admin endpoints
@router.get("/admin/reviews")
def admin_reviews(reviews: ReviewRepository = Depends(get_reviews), admin=Depends(require_role("admin"))):
    return reviews.list_all()

@router.delete("/admin/reviews/{review_id}")
def admin_delete_review(review_id: str, reviews: ReviewRepository = Depends(get_reviews),
                        admin=Depends(require_role("admin"))):
    return reviews.delete(review_id)


def create_app(database=None, identity=None, transactions: bool = config.MONGODB_TRANSACTIONS) -> FastAPI:
    config.configure_logging()
    if database is None:
        database = connect()
    if identity is None:
        identity = FirebaseIdentityProvider()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        for repo in (app.state.users, app.state.properties, app.state.wishlist, app.state.offers, app.state.reviews):
            repo.ensure_indexes()
        logger.info("Database indexes created")
        yield

    app = FastAPI(title="Bashabari API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.state.db = database
    app.state.identity = identity
    app.state.users = UserRepository(database, identity, transactions)
    app.state.properties = PropertyRepository(database)
    app.state.views = ListingViews(database)
    app.state.wishlist = WishlistRepository(database)
    app.state.offers = OfferRepository(database, transactions)
    app.state.reviews = ReviewRepository(database)

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
