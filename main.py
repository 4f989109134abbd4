import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import AuthService
from config import Settings, get_settings
from database import get_database, get_db, sanitize
from errors import ForbiddenError, NotFoundError, register_exception_handlers
from locations import add_location, list_locations, remove_location, update_location
from logging_config import setup_logging
from orders import OrderService, OrderStore
from schemas import Coordinates, EmailId, Location, LocationName, OrderItem, Role
from users import UserStore, build_password_context, public_user

logger = logging.getLogger(__name__)

# Auth setup
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# roles allowed to manage locations of other users
LOCATION_ADMIN_ROLES = ("admin",)
# roles allowed to place orders on behalf of a customer
ORDER_ON_BEHALF_ROLES = ("admin", "agent", "store")

router = APIRouter()

# Dependencies

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_user_store(request: Request, db: Database = Depends(get_db)) -> UserStore:
    return UserStore(db, request.app.state.pwd_context)


def get_auth_service(
    store: UserStore = Depends(get_user_store),
    settings: Settings = Depends(get_app_settings),
) -> AuthService:
    return AuthService(store, settings)


def get_order_service(db: Database = Depends(get_db), store: UserStore = Depends(get_user_store)) -> OrderService:
    return OrderService(OrderStore(db), store)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> Dict:
    return auth.authenticate(token)


def require_role(*roles: str):
    def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in roles:
            raise ForbiddenError("Insufficient permissions")
        return current_user
    return role_dep


def resolve_target_user(store: UserStore, current_user: Dict, email_id: Optional[str]) -> Dict:
    """The user a location request acts on: the caller unless an admin names someone else."""
    if not email_id or email_id == current_user.get("emailId"):
        return current_user
    if current_user.get("role") not in LOCATION_ADMIN_ROLES:
        raise ForbiddenError("Not allowed to act on behalf of another user")
    target = store.find_by_email(email_id)
    if not target:
        raise NotFoundError("User not found")
    return target

# Request/Response Models
class RegisterRequest(BaseModel):
    emailId: EmailId
    password: str
    role: Role

class LoginRequest(BaseModel):
    emailId: EmailId
    password: str

class TokenResponse(BaseModel):
    token: str

class UpdatePasswordRequest(BaseModel):
    oldPassword: str
    newPassword: str

class AddLocationRequest(Location):
    emailId: Optional[EmailId] = None

class UpdateLocationRequest(BaseModel):
    emailId: Optional[EmailId] = None
    name: str
    newName: Optional[LocationName] = None
    coordinates: Optional[Coordinates] = None
    addressNo: Optional[int] = None
    zonalNo: Optional[int] = None

class RemoveLocationRequest(BaseModel):
    emailId: Optional[EmailId] = None
    name: str

class CreateOrderRequest(BaseModel):
    emailId: Optional[EmailId] = None
    items: List[OrderItem] = Field(..., min_length=1)
    dropAddressNo: int
    storeAddressNo: Optional[int] = None

class UpdateOrderRequest(BaseModel):
    orderId: str
    updates: Dict[str, Any] = Field(default_factory=dict)

# Auth Routes
@router.post("/auth/register")
def register(payload: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    auth.register(payload.emailId, payload.password, payload.role)
    return {"message": "Registration successful"}

@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return TokenResponse(token=auth.login(payload.emailId, payload.password))

@router.put("/auth/password")
def update_password(
    payload: UpdatePasswordRequest,
    current_user=Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(current_user, payload.oldPassword, payload.newPassword)
    return {"message": "Password updated"}

# User Routes
@router.get("/user/profile")
def profile(current_user=Depends(get_current_user)):
    return {"message": f"Welcome {current_user['emailId']}", "user": public_user(current_user)}

@router.get("/user/locations")
def get_locations(current_user=Depends(get_current_user), store: UserStore = Depends(get_user_store)):
    return {"locations": [sanitize(loc) for loc in list_locations(store, current_user["_id"])]}

@router.post("/user/profile/update")
def add_user_location(
    payload: AddLocationRequest,
    current_user=Depends(get_current_user),
    store: UserStore = Depends(get_user_store),
):
    target = resolve_target_user(store, current_user, payload.emailId)
    updated = add_location(store, target["_id"], payload.model_dump(exclude={"emailId"}, exclude_none=True))
    return {"message": "Location added successfully", "user": public_user(updated)}

@router.post("/user/locations/update")
def update_user_location(
    payload: UpdateLocationRequest,
    current_user=Depends(get_current_user),
    store: UserStore = Depends(get_user_store),
):
    target = resolve_target_user(store, current_user, payload.emailId)
    fields = payload.model_dump(exclude_unset=True, exclude={"emailId", "name"})
    if "newName" in fields:
        fields["name"] = fields.pop("newName")
    updated = update_location(store, target["_id"], payload.name, fields)
    if updated is None:
        raise NotFoundError("Location not found")
    return {"message": "Location updated successfully", "user": public_user(updated)}

@router.post("/user/locations/remove")
def remove_user_location(
    payload: RemoveLocationRequest,
    current_user=Depends(get_current_user),
    store: UserStore = Depends(get_user_store),
):
    target = resolve_target_user(store, current_user, payload.emailId)
    updated = remove_location(store, target["_id"], payload.name)
    return {"message": "Location removed successfully", "user": public_user(updated)}

# Order Routes
@router.post("/order/create")
def create_order(
    payload: CreateOrderRequest,
    current_user=Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    customer_email = payload.emailId or current_user["emailId"]
    if customer_email != current_user["emailId"] and current_user.get("role") not in ORDER_ON_BEHALF_ROLES:
        raise ForbiddenError("Not allowed to act on behalf of another user")
    order = orders.create_order(
        customer_email,
        [item.model_dump() for item in payload.items],
        payload.dropAddressNo,
        store_address_no=payload.storeAddressNo,
    )
    return {"message": "Order placed", "orderId": order["orderId"]}

@router.get("/order/list")
def list_orders(current_user=Depends(get_current_user), orders: OrderService = Depends(get_order_service)):
    return [sanitize(o) for o in orders.list_orders(current_user)]

@router.put("/order/update")
def update_order(
    payload: UpdateOrderRequest,
    staff=Depends(require_role(*ORDER_ON_BEHALF_ROLES)),
    orders: OrderService = Depends(get_order_service),
):
    return sanitize(orders.update_order(payload.orderId, payload.updates))

# Utility endpoints
@router.get("/")
def root(settings: Settings = Depends(get_app_settings)):
    return {"message": f"{settings.app_name} running"}

@router.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        collections = db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except PyMongoError as e:
        return {"backend": "ok", "database": f"error: {e}"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    UserStore(app.state.db, app.state.pwd_context).ensure_indexes()
    OrderStore(app.state.db).ensure_indexes()
    logger.info("Indexes ensured on %s", app.state.db.name)
    yield


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.db = db if db is not None else get_database(settings)
    app.state.pwd_context = build_password_context(settings.bcrypt_rounds)
    register_exception_handlers(app)
    app.include_router(router)

    return app


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
