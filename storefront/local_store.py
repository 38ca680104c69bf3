"""
Guest cart persistence.

A guest cart lives on the device that created it. The key-value backend is a
directory of small JSON documents, one per device key.
"""
import hashlib
import logging
import os
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from storefront.models import Cart, CartLine, GuestOwner

logger = logging.getLogger(__name__)

CART_KEY_PREFIX = "buylocal_cart"

_lines_adapter = TypeAdapter(List[CartLine])


class FileKeyValueStore:
    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self.directory, f"{digest}.json")

    def get(self, key: str) -> Optional[bytes]:
        try:
            with open(self._path(key), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(value)
        # Readers never see a half-written cart
        os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


class LocalCartStore:
    def __init__(self, device_key: str, backend: FileKeyValueStore):
        self.owner = GuestOwner(device_key=device_key)
        self.backend = backend
        self.key = f"{CART_KEY_PREFIX}:{device_key}"

    def load(self) -> Cart:
        raw = self.backend.get(self.key)
        if raw is None:
            return Cart(owner=self.owner)
        try:
            lines = _lines_adapter.validate_json(raw)
        except ValidationError:
            logger.warning(
                "Discarding unreadable guest cart",
                extra={"device_id": self.owner.device_key},
                exc_info=True,
            )
            return Cart(owner=self.owner)
        return Cart(owner=self.owner, lines=_dedupe(lines))

    def save(self, cart: Cart) -> None:
        self.backend.set(self.key, _lines_adapter.dump_json(cart.lines))

    def clear(self) -> None:
        self.backend.delete(self.key)


def _dedupe(lines: List[CartLine]) -> List[CartLine]:
    # Hand-edited or legacy data may repeat a product; fold repeats into one line
    merged: dict = {}
    for line in lines:
        existing = merged.get(line.product_id)
        if existing is None:
            merged[line.product_id] = line
        else:
            merged[line.product_id] = existing.model_copy(
                update={"quantity": existing.quantity + line.quantity}
            )
    return list(merged.values())
