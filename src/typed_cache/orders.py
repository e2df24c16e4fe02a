"""Market orders from decoded order rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from typed_cache.ado import filetime_to_datetime
from typed_cache.errors import InvalidRowFields
from typed_cache.manager import CachedCall
from typed_cache.rows import Row

ORDER_COLUMNS = (
    "price",
    "volRemaining",
    "typeID",
    "range",
    "orderID",
    "volEntered",
    "minVolume",
    "bid",
    "issueDate",
    "duration",
    "stationID",
    "regionID",
    "solarSystemID",
    "jumps",
)

GET_ORDERS = "GetOrders"


@dataclass(frozen=True)
class MarketOrder:
    """A market order as listed by the client's market window."""

    order_id: int
    type_id: int
    price: float
    volume_remaining: int
    volume_entered: int
    min_volume: int
    buy: bool
    range: int
    issued: datetime
    duration: int
    station_id: int
    region_id: int
    solar_system_id: int
    jumps: int
    update_time: datetime | None = None


def is_order_row(row: Row) -> bool:
    """Return whether a row has every market order column."""
    return all(row.descriptor.get_column(name) is not None for name in ORDER_COLUMNS)


def order_from_row(row: Row, update_time: datetime | None = None) -> MarketOrder:
    """Map a market order row to a MarketOrder.

    Raises:
        InvalidRowFields: If an order column is missing or null.
    """
    values = {}
    for name in ORDER_COLUMNS:
        if row.descriptor.get_column(name) is None:
            raise InvalidRowFields(f"Order row lacks column '{name}'")
        value = row.get(name)
        if value is None:
            raise InvalidRowFields(f"Order row has no value for '{name}'")
        values[name] = value

    return MarketOrder(
        order_id=int(values["orderID"]),
        type_id=int(values["typeID"]),
        price=float(values["price"]),
        volume_remaining=int(values["volRemaining"]),
        volume_entered=int(values["volEntered"]),
        min_volume=int(values["minVolume"]),
        buy=bool(values["bid"]),
        range=int(values["range"]),
        issued=filetime_to_datetime(int(values["issueDate"])),
        duration=int(values["duration"]),
        station_id=int(values["stationID"]),
        region_id=int(values["regionID"]),
        solar_system_id=int(values["solarSystemID"]),
        jumps=int(values["jumps"]),
        update_time=update_time,
    )


def orders_from_calls(calls: Iterable[CachedCall]) -> list[MarketOrder]:
    """Collect orders from GetOrders calls.

    Each type's orders come from its newest cache file only; the file's
    modification time becomes the orders' update time.
    """
    newest: dict[int, tuple[datetime, list[MarketOrder]]] = {}
    for call in calls:
        if call.method != GET_ORDERS:
            continue
        update_time = datetime.fromtimestamp(call.path.stat().st_mtime).astimezone()
        by_type: dict[int, list[MarketOrder]] = {}
        for row in call.rows():
            if not is_order_row(row):
                continue
            order = order_from_row(row, update_time)
            by_type.setdefault(order.type_id, []).append(order)

        for type_id, orders in by_type.items():
            current = newest.get(type_id)
            if current is None or current[0] < update_time:
                newest[type_id] = (update_time, orders)

    result: list[MarketOrder] = []
    for type_id in sorted(newest):
        result.extend(newest[type_id][1])
    return result
