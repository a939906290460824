"""Turns Stripe events of either payload shape into one flat record.

Stripe delivers two incompatible shapes:

* snapshot events carry the affected object under ``data.object``;
* thin events carry either a minimal ``data.object`` or a top-level
  ``related_object`` reference (v2 events) instead of ``data``.

``classify_payload`` resolves the shape once into ``ThinById`` or
``SnapshotObject``; everything downstream works on ``ExtractedIds`` and
``SubscriptionDetails`` only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

# related_object.type is free text; the first kind contained in it wins.
RELATED_OBJECT_KINDS = ("customer", "subscription", "invoice", "payment_intent", "charge")
SNAPSHOT_MIN_KEYS = 2


@dataclass(frozen=True)
class ThinById:
    type: str
    id: str | None


@dataclass(frozen=True)
class SnapshotObject:
    type: str | None
    fields: dict[str, Any]

    @property
    def id(self) -> str | None:
        return _as_id(self.fields.get("id"))

    @property
    def is_full(self) -> bool:
        return len(self.fields) > SNAPSHOT_MIN_KEYS


PayloadVariant = ThinById | SnapshotObject


@dataclass(frozen=True)
class ExtractedIds:
    customer_id: str | None = None
    subscription_id: str | None = None
    invoice_id: str | None = None
    payment_intent_id: str | None = None
    charge_id: str | None = None


@dataclass(frozen=True)
class SubscriptionDetails:
    amount: int | None = None
    currency: str | None = None
    status: str | None = None
    plan_id: str | None = None
    interval: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None


@dataclass(frozen=True)
class NormalizedEvent:
    stripe_event_id: str
    event_type: str
    api_version: str | None
    livemode: bool
    payload_style: str
    ids: ExtractedIds
    details: SubscriptionDetails
    payload: dict = field(repr=False)
    user_id: UUID | None = None


def _as_id(value: Any) -> str | None:
    # Expanded references arrive as objects rather than id strings.
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _from_unix(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def classify_payload(event: dict) -> PayloadVariant | None:
    if "related_object" in event and event["related_object"] is not None:
        related = _as_dict(event["related_object"])
        return ThinById(type=str(related.get("type") or ""), id=_as_id(related.get("id")))

    data_object = _as_dict(event.get("data")).get("object")
    if isinstance(data_object, dict) and data_object:
        object_type = data_object.get("object")
        return SnapshotObject(type=str(object_type) if object_type else None, fields=data_object)
    return None


def payload_style(event: dict) -> str:
    variant = classify_payload(event)
    if isinstance(variant, SnapshotObject) and variant.is_full:
        return "snapshot"
    return "thin"


def _ids_from_related_object(variant: ThinById) -> ExtractedIds:
    for kind in RELATED_OBJECT_KINDS:
        if kind in variant.type:
            return ExtractedIds(**{f"{kind}_id": variant.id})
    return ExtractedIds()


def _ids_from_object(variant: SnapshotObject) -> ExtractedIds:
    fields = variant.fields

    def own_or_referenced(kind: str) -> str | None:
        if variant.type == kind:
            return variant.id
        return _as_id(fields.get(kind))

    return ExtractedIds(
        customer_id=_as_id(fields.get("customer")),
        subscription_id=own_or_referenced("subscription"),
        invoice_id=own_or_referenced("invoice"),
        payment_intent_id=own_or_referenced("payment_intent"),
        charge_id=own_or_referenced("charge"),
    )


def extract_ids(event: dict) -> ExtractedIds:
    variant = classify_payload(event)
    if isinstance(variant, ThinById):
        return _ids_from_related_object(variant)
    if isinstance(variant, SnapshotObject):
        return _ids_from_object(variant)
    return ExtractedIds()


def _subscription_shape(variant: SnapshotObject) -> dict:
    if variant.type == "subscription":
        return variant.fields
    return _as_dict(variant.fields.get("subscription"))


def _first_item_price(subscription: dict) -> dict:
    data = _as_dict(subscription.get("items")).get("data")
    if isinstance(data, list) and data:
        return _as_dict(_as_dict(data[0]).get("price"))
    return {}


def extract_subscription_details(event: dict) -> SubscriptionDetails:
    variant = classify_payload(event)
    if not isinstance(variant, SnapshotObject):
        return SubscriptionDetails()

    data_object = variant.fields
    subscription = _subscription_shape(variant)
    price = _first_item_price(subscription)
    legacy_plan = _as_dict(data_object.get("plan"))

    return SubscriptionDetails(
        amount=_first_present(price.get("unit_amount"), data_object.get("amount"), data_object.get("amount_due")),
        currency=_first_present(price.get("currency"), data_object.get("currency")),
        status=_first_present(subscription.get("status"), data_object.get("status")),
        plan_id=_first_present(price.get("id"), legacy_plan.get("id")),
        interval=_first_present(_as_dict(price.get("recurring")).get("interval"), legacy_plan.get("interval")),
        current_period_start=_from_unix(subscription.get("current_period_start")),
        current_period_end=_from_unix(subscription.get("current_period_end")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end") or False),
        canceled_at=_from_unix(subscription.get("canceled_at")),
    )


def normalize_event(event: dict, *, user_id: UUID | None = None) -> NormalizedEvent:
    return NormalizedEvent(
        stripe_event_id=str(event["id"]),
        event_type=str(event.get("type") or "unknown"),
        api_version=event.get("api_version") or None,
        livemode=bool(event.get("livemode", False)),
        payload_style=payload_style(event),
        ids=extract_ids(event),
        details=extract_subscription_details(event),
        payload=event,
        user_id=user_id,
    )
