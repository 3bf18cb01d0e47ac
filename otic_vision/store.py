"""
Token store contract and reference implementations.

The engine only needs to read every registered product, read one by id,
and write a new registration. Bucket reads are an optional shortcut an
implementation may offer to seed the candidate cache.

    InMemoryTokenStore   dict-backed, with an outage switch for tests
    DirectoryTokenStore  one .token file per product plus catalog.json
"""

import json
import logging
import os
import threading
from typing import Dict, List, Optional, Protocol, Sequence

from .candidate_index import bucket_key
from .codec import TokenCodec
from .errors import CorruptToken, InvalidInput, StoreUnavailable
from .models import ProductMatch

logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.json"
TOKEN_SUFFIX = ".token"


class TokenStore(Protocol):
    def read_all(self) -> Sequence[ProductMatch]:
        ...

    def read_by_id(self, product_id: str) -> Optional[ProductMatch]:
        ...

    def write(self, match: ProductMatch) -> bool:
        ...


class InMemoryTokenStore:
    """Thread-safe dict-backed store. Set available=False to simulate an outage."""

    def __init__(self, matches: Sequence[ProductMatch] = ()):
        self._lock = threading.Lock()
        self._matches: Dict[str, ProductMatch] = {m.product_id: m for m in matches}
        self.available = True

    def _check(self):
        if not self.available:
            raise StoreUnavailable("In-memory token store is offline")

    def read_all(self) -> List[ProductMatch]:
        self._check()
        with self._lock:
            return list(self._matches.values())

    def read_by_id(self, product_id: str) -> Optional[ProductMatch]:
        self._check()
        with self._lock:
            return self._matches.get(product_id)

    def read_by_bucket(self, hint: int) -> List[ProductMatch]:
        self._check()
        with self._lock:
            return [m for m in self._matches.values() if bucket_key(m.token) == hint]

    def write(self, match: ProductMatch) -> bool:
        self._check()
        with self._lock:
            self._matches[match.product_id] = match
        return True

    def __len__(self):
        with self._lock:
            return len(self._matches)


class DirectoryTokenStore:
    """
    File-backed store.

    Layout under root:
        catalog.json          product_id -> metadata (names, price, timestamps)
        <product_id>.token    codec-serialized VisualToken

    A missing root directory is reported as StoreUnavailable; a token
    file that fails to decode raises CorruptToken.
    """

    def __init__(self, root: str, codec: Optional[TokenCodec] = None):
        self.root = root
        self.codec = codec or TokenCodec()
        self._lock = threading.Lock()

    @property
    def catalog_path(self) -> str:
        return os.path.join(self.root, CATALOG_FILE)

    def _token_path(self, product_id: str) -> str:
        if not product_id or os.sep in product_id or product_id.startswith("."):
            raise InvalidInput(f"Product id not usable as a file name: {product_id!r}")
        return os.path.join(self.root, product_id + TOKEN_SUFFIX)

    def _load_catalog(self) -> dict:
        if not os.path.isdir(self.root):
            raise StoreUnavailable(f"Token store directory missing: {self.root}")
        if not os.path.exists(self.catalog_path):
            return {}
        try:
            with open(self.catalog_path, "r", encoding="utf-8") as f:
                catalog = json.load(f)
        except OSError as e:
            raise StoreUnavailable(f"Cannot read catalog: {e}") from e
        except ValueError as e:
            raise CorruptToken(f"Catalog {self.catalog_path} is not valid JSON: {e}") from e

        if not isinstance(catalog, dict):
            raise CorruptToken(f"Catalog {self.catalog_path} is not a JSON object")
        return catalog

    def _load_match(self, product_id: str, entry: dict) -> ProductMatch:
        try:
            with open(self._token_path(product_id), "rb") as f:
                data = f.read()
        except OSError as e:
            raise StoreUnavailable(f"Cannot read token for {product_id}: {e}") from e

        token = self.codec.decode(data, token_id=entry.get("token_id"))
        return ProductMatch(
            product_id=product_id,
            token=token,
            brand_name=entry.get("brand_name", ""),
            product_name=entry.get("product_name", ""),
            price=float(entry.get("price", 0.0)),
            registered_at=float(entry.get("registered_at", token.created_at)),
        )

    def read_all(self) -> List[ProductMatch]:
        with self._lock:
            catalog = self._load_catalog()
            matches = [self._load_match(pid, entry) for pid, entry in catalog.items()]
        logger.debug(f"Loaded {len(matches)} tokens from {self.root}")
        return matches

    def read_by_id(self, product_id: str) -> Optional[ProductMatch]:
        with self._lock:
            entry = self._load_catalog().get(product_id)
            if entry is None:
                return None
            return self._load_match(product_id, entry)

    def read_by_bucket(self, hint: int) -> List[ProductMatch]:
        with self._lock:
            catalog = self._load_catalog()
            return [
                self._load_match(pid, entry) for pid, entry in catalog.items()
                if entry.get("bucket") == hint
            ]

    def write(self, match: ProductMatch) -> bool:
        with self._lock:
            catalog = self._load_catalog()
            catalog[match.product_id] = {
                "token_id": match.token.id,
                "brand_name": match.brand_name,
                "product_name": match.product_name,
                "price": match.price,
                "registered_at": match.registered_at,
                "bucket": bucket_key(match.token),
            }
            try:
                with open(self._token_path(match.product_id), "wb") as f:
                    f.write(self.codec.serialize(match.token))
                tmp_path = self.catalog_path + ".tmp"
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(catalog, f, indent=2)
                os.replace(tmp_path, self.catalog_path)
            except OSError as e:
                logger.error(f"Failed to write token for {match.product_id}: {e}")
                return False
        return True
