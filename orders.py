"""
Order intake for the `order` collection.

Orders reference their customer by user id, resolved from the customer's
email when the order is placed. Items are stored as submitted; there is no
catalog to check prices or quantities against.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING
from pymongo.database import Database

from database import to_obj_id, utcnow
from errors import NotFoundError, NotImplementedFeature, from_pydantic
from schemas import Order as OrderSchema
from users import UserStore

logger = logging.getLogger(__name__)

REFERENCE_FIELDS = ("customerId", "agentId", "storeId")


def new_order_id() -> str:
    return uuid.uuid4().hex


class OrderStore:
    collection_name = "order"

    def __init__(self, db: Database):
        self.collection = db[self.collection_name]

    def ensure_indexes(self) -> None:
        self.collection.create_index("orderId", unique=True)
        self.collection.create_index("customerId")

    def insert(self, order: OrderSchema) -> Dict:
        doc = order.model_dump()
        for field in REFERENCE_FIELDS:
            if doc.get(field) is not None:
                doc[field] = to_obj_id(doc[field])
        now = utcnow()
        doc.update(createdAt=now, updatedAt=now)
        res = self.collection.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    def find_by_order_id(self, order_id: str) -> Optional[Dict]:
        if not isinstance(order_id, str) or not order_id:
            return None
        return self.collection.find_one({"orderId": order_id})

    def list_for_customer(self, customer_id: Any) -> List[Dict]:
        oid = to_obj_id(customer_id)
        if oid is None:
            return []
        return list(self.collection.find({"customerId": oid}).sort([("createdAt", DESCENDING)]))


class OrderService:
    def __init__(self, orders: OrderStore, users: UserStore):
        self.orders = orders
        self.users = users

    def create_order(
        self,
        customer_email: str,
        items: List[Dict[str, Any]],
        drop_address_no: int,
        store_address_no: Optional[int] = None,
    ) -> Dict:
        try:
            order = OrderSchema(
                orderId=new_order_id(),
                customerId="",
                items=items,
                dropAddressNo=drop_address_no,
                storeAddressNo=store_address_no,
            )
        except PydanticValidationError as exc:
            raise from_pydantic(exc) from None

        customer = self.users.find_by_email(customer_email)
        if not customer:
            raise NotFoundError("Customer not found")
        order.customerId = str(customer["_id"])

        doc = self.orders.insert(order)
        logger.info("Order %s placed for customer %s with %d items", doc["orderId"], customer["_id"], len(order.items))
        return doc

    def update_order(self, order_id: str, updates: Dict[str, Any]) -> Dict:
        order = self.orders.find_by_order_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        # TODO: apply `updates` once the mutable order fields (status, agentId, storeId) are agreed on
        raise NotImplementedFeature("Order updates are not supported yet")

    def list_orders(self, customer: Dict) -> List[Dict]:
        return self.orders.list_for_customer(customer["_id"])
