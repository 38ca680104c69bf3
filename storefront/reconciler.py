"""
One cart abstraction over guest and authenticated storage.

A device starts Anonymous and its cart lives in the local store. When the
device logs in, the guest cart is abandoned (local storage is cleared, no
merge) and the cart view switches to the user's remote cart.

Mutations for one owner are serialized: each mutate-then-refetch finishes
before the next begins, so the visible cart always reflects the last
mutation rather than whichever refetch happened to resolve last.
"""
import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union

from pymongo.errors import PyMongoError

from shared.utils import PersistenceTimeout, settings, with_timeout
from storefront.local_store import FileKeyValueStore, LocalCartStore
from storefront.models import Cart, CartLine, GuestOwner, ProductSnapshot, UserOwner
from storefront.remote_store import RemoteCartStore

logger = logging.getLogger(__name__)

Owner = Union[GuestOwner, UserOwner]
CartListener = Callable[[Cart], None]

# Failures that degrade to a stale view instead of an error response
BACKEND_ERRORS = (PyMongoError, OSError)


K = TypeVar("K")
V = TypeVar("V")


class LRUDict(Generic[K, V]):
    """Mapping that forgets its least recently used entry past `capacity`."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._data: "OrderedDict[K, V]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        if key not in self._data:
            return None
        self._data.move_to_end(key)
        return self._data[key]

    def __setitem__(self, key: K, value: V) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)

    def pop(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._data.pop(key, default)

    def __len__(self) -> int:
        return len(self._data)


class _OwnerLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class CartReconciler:
    def __init__(
        self,
        local_backend: FileKeyValueStore,
        remote: RemoteCartStore,
        max_views: Optional[int] = None,
        max_sessions: Optional[int] = None,
    ):
        self.local_backend = local_backend
        self.remote = remote
        # Only owners with a mutation running or waiting hold an entry
        self._locks: Dict[str, _OwnerLock] = {}
        self._views: LRUDict[str, Cart] = LRUDict(max_views or settings.CART_VIEW_CACHE_SIZE)
        self._listeners: List[CartListener] = []
        # device_key -> user_id for devices that went through login
        self._sessions: LRUDict[str, str] = LRUDict(max_sessions or settings.CART_SESSION_CACHE_SIZE)
        # Local calls that timed out but whose thread is still running
        self._pending_io: Dict[str, asyncio.Future] = {}

    # --- Observation ---

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, cart: Cart) -> Cart:
        self._views[cart.owner.key] = cart
        for listener in list(self._listeners):
            try:
                listener(cart)
            except Exception:
                logger.exception("Cart listener failed")
        return cart

    def _stale_view(self, owner: Owner) -> Cart:
        last = self._views.get(owner.key) or Cart(owner=owner)
        return last.model_copy(update={"synced": False})

    # --- Session transitions ---

    def session_user(self, device_key: str) -> Optional[str]:
        return self._sessions.get(device_key)

    async def login(self, device_key: str, user_id: str) -> Cart:
        """
        Anonymous -> Authenticated for one device.

        Fires once per login event: repeating it for the same device and user
        does not touch storage again. The session is only recorded once the
        guest cart is gone, so a failed attempt is redone on the next login.
        """
        user = UserOwner(user_id=user_id)
        if self._sessions.get(device_key) != user_id:
            guest = GuestOwner(device_key=device_key)
            try:
                async with self._owner_lock(guest.key):
                    await self._local_call(guest, "clear")
                    self._views.pop(guest.key, None)
            except BACKEND_ERRORS:
                logger.exception(
                    "Could not abandon guest cart on login",
                    extra={"device_id": device_key, "user_id": user_id},
                )
                return self._stale_view(user)
            self._sessions[device_key] = user_id
            logger.info(
                "Guest cart abandoned on login",
                extra={"device_id": device_key, "user_id": user_id},
            )
        return await self.load(user)

    def logout(self, device_key: str) -> None:
        self._sessions.pop(device_key, None)

    # --- Reads ---

    async def load(self, owner: Owner) -> Cart:
        try:
            if isinstance(owner, UserOwner):
                cart = await self.remote.fetch(owner.user_id)
            else:
                cart = await self._local_call(owner, "load")
        except BACKEND_ERRORS:
            logger.exception("Could not load cart", extra=_owner_extra(owner))
            return self._stale_view(owner)
        return self._publish(cart)

    # --- Mutations ---

    async def add(self, owner: Owner, product: ProductSnapshot, quantity: int = 1) -> Cart:
        if quantity < 1:
            return await self.load(owner)

        async def remote_add():
            existing = await self.remote.get_quantity(owner.user_id, product.id)
            await self.remote.upsert_line(owner.user_id, product.id, (existing or 0) + quantity)

        def local_add(cart: Cart) -> List[CartLine]:
            lines = []
            merged = False
            for line in cart.lines:
                if line.product_id == product.id:
                    line = line.model_copy(update={"quantity": line.quantity + quantity})
                    merged = True
                lines.append(line)
            if not merged:
                lines.append(CartLine.from_product(product, quantity))
            return lines

        return await self._mutate(owner, remote_add, local_add)

    async def update_quantity(self, owner: Owner, product_id: str, quantity: int) -> Cart:
        if quantity < 1:
            return await self.remove(owner, product_id)

        async def remote_update():
            await self.remote.upsert_line(owner.user_id, product_id, quantity)

        def local_update(cart: Cart) -> List[CartLine]:
            return [
                line.model_copy(update={"quantity": quantity}) if line.product_id == product_id else line
                for line in cart.lines
            ]

        return await self._mutate(owner, remote_update, local_update)

    async def remove(self, owner: Owner, product_id: str) -> Cart:
        return await self.remove_many(owner, [product_id])

    async def remove_many(self, owner: Owner, product_ids: Iterable[str]) -> Cart:
        ids = set(product_ids)

        async def remote_remove():
            if len(ids) == 1:
                await self.remote.remove_line(owner.user_id, next(iter(ids)))
            else:
                await self.remote.remove_lines(owner.user_id, ids)

        def local_remove(cart: Cart) -> List[CartLine]:
            return [line for line in cart.lines if line.product_id not in ids]

        return await self._mutate(owner, remote_remove, local_remove)

    async def clear(self, owner: Owner) -> Cart:
        async def remote_clear():
            await self.remote.clear(owner.user_id)

        return await self._mutate(owner, remote_clear, lambda cart: [])

    @asynccontextmanager
    async def _owner_lock(self, key: str):
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _OwnerLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    async def _mutate(self, owner: Owner, remote_op, local_op) -> Cart:
        async with self._owner_lock(owner.key):
            try:
                if isinstance(owner, UserOwner):
                    await remote_op()
                    cart = await self.remote.fetch(owner.user_id)
                else:
                    current = await self._local_call(owner, "load")
                    cart = Cart(owner=owner, lines=local_op(current))
                    await self._local_call(owner, "save", cart)
            except BACKEND_ERRORS:
                logger.exception("Cart mutation failed", extra=_owner_extra(owner))
                return self._stale_view(owner)
            return self._publish(cart)

    async def _local_call(self, owner: GuestOwner, method: str, *args):
        """
        Run a local store call in a worker thread under the call timeout.

        A thread cannot be stopped, so a timed out call keeps running. The
        next call for the same device waits for it to land first, otherwise
        a late save could overwrite a newer cart.
        """
        operation = f"local_cart.{method}"
        pending = self._pending_io.get(owner.key)
        if pending is not None:
            limit = settings.EXTERNAL_CALL_TIMEOUT_SECONDS
            done, _ = await asyncio.wait({pending}, timeout=limit)
            if not done:
                raise PersistenceTimeout(operation, limit)

        store = LocalCartStore(owner.device_key, self.local_backend)
        task = asyncio.ensure_future(asyncio.to_thread(getattr(store, method), *args))
        try:
            return await with_timeout(asyncio.shield(task), operation)
        except PersistenceTimeout:
            self._pending_io[owner.key] = task
            task.add_done_callback(lambda t, key=owner.key: self._forget_pending(key, t))
            raise

    def _forget_pending(self, key: str, task: asyncio.Future) -> None:
        if self._pending_io.get(key) is task:
            del self._pending_io[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                "Timed out local cart call failed later",
                extra={"device_id": key},
                exc_info=task.exception(),
            )


def _owner_extra(owner: Owner) -> dict:
    if isinstance(owner, UserOwner):
        return {"user_id": owner.user_id}
    return {"device_id": owner.device_key}
