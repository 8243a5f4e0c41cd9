from typing import Mapping

DEFAULT_SEED: dict[str, int] = {
    "laptop-001": 100,
    "mouse-001": 500,
    "keyboard-001": 200,
    "monitor-001": 50,
    "headphones-001": 150,
}


class InsufficientStockError(Exception):
    pass


class InventoryStore:
    """Available quantity per product, held in process memory.

    Each Inventory service instance owns its own copy; nothing is shared or
    persisted, so instances drift apart and a restart reloads the seed.
    """

    def __init__(self, seed: Mapping[str, int] | None = None):
        seed = DEFAULT_SEED if seed is None else seed
        for product_id, quantity in seed.items():
            if quantity < 0:
                raise ValueError(f"Seed quantity for {product_id} cannot be negative")
        self._stock: dict[str, int] = dict(seed)

    def available(self, product_id: str) -> int:
        return self._stock.get(product_id, 0)

    def decrement(self, product_id: str, quantity: int) -> int:
        available = self.available(product_id)
        if quantity > available:
            raise InsufficientStockError(f"{product_id}: requested {quantity}, available {available}")
        self._stock[product_id] = available - quantity
        return self._stock[product_id]

    def increment(self, product_id: str, quantity: int) -> int:
        self._stock[product_id] = self.available(product_id) + quantity
        return self._stock[product_id]

    def snapshot(self) -> dict[str, int]:
        return dict(self._stock)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._stock
