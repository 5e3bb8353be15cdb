from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from prodrec.config import DEFAULT_MAX_CONCURRENCY
from prodrec.errors import InvalidInput
from prodrec.models.recommender import TransactionEvent
from prodrec.services.dispatcher import RequestDispatcher
from prodrec.services.normalizer import normalize_payloads
from prodrec.utils.rate_limiter import RateLimiter

LOGGER = logging.getLogger(__name__)

USER_COLUMN = "user"
ITEM_COLUMN = "item"

# transaction table column -> recommend API field
EVENT_FIELD_MAP = {
    "item": "itemId",
    "time": "timestamp",
    "event": "eventType",
}


class UserInputKind(str, Enum):
    IDS = "ids"                                         # stored history only
    ANONYMOUS_TRANSACTIONS = "anonymous_transactions"   # one new user, whole table
    USER_TRANSACTIONS = "user_transactions"             # grouped by user column


@dataclass(frozen=True)
class UserQuery:
    user_id: Optional[str]
    events: Optional[List[Dict[str, Any]]] = None


@dataclass(frozen=True)
class UserSpecification:
    kind: UserInputKind
    queries: Tuple[UserQuery, ...]

    @property
    def has_user_ids(self) -> bool:
        return self.kind != UserInputKind.ANONYMOUS_TRANSACTIONS

    @classmethod
    def resolve(cls, userdata: Any) -> "UserSpecification":
        """Classify caller input once; everything downstream works off `kind`."""
        if userdata is None:
            raise InvalidInput("Must provide user IDs or transaction events to get recommendations for")

        if isinstance(userdata, pd.DataFrame):
            return cls._from_frame(userdata)

        ids = _unique_ids(_as_id_list(userdata))
        if not ids:
            raise InvalidInput("Must provide user IDs or transaction events to get recommendations for")
        return cls(UserInputKind.IDS, tuple(UserQuery(uid) for uid in ids))

    @classmethod
    def _from_frame(cls, frame: pd.DataFrame) -> "UserSpecification":
        if frame.empty:
            raise InvalidInput("Transaction table is empty")
        has_items = ITEM_COLUMN in frame.columns

        if USER_COLUMN not in frame.columns:
            if not has_items:
                raise InvalidInput(
                    f"Transaction table needs an '{ITEM_COLUMN}' column or a '{USER_COLUMN}' column"
                )
            return cls(UserInputKind.ANONYMOUS_TRANSACTIONS, (UserQuery(None, transaction_events(frame)),))

        user_ids = frame[USER_COLUMN].map(lambda v: None if _is_missing(v) else _id_text(v))
        queries = []
        for uid in _unique_ids(user_ids.tolist()):
            events = None
            if has_items:
                events = transaction_events(frame.loc[user_ids == uid].drop(columns=[USER_COLUMN]))
            queries.append(UserQuery(uid, events))
        if not queries:
            raise InvalidInput(f"Transaction table has no values in its '{USER_COLUMN}' column")
        return cls(UserInputKind.USER_TRANSACTIONS, tuple(queries))


def _as_id_list(values: Any) -> List[Any]:
    if isinstance(values, (str, bytes)):
        return [values]
    if isinstance(values, pd.DataFrame):
        if ITEM_COLUMN not in values.columns:
            raise InvalidInput(f"Item table needs an '{ITEM_COLUMN}' column")
        return values[ITEM_COLUMN].tolist()
    if isinstance(values, (pd.Series, pd.Index, np.ndarray)):
        return list(values.tolist())
    return list(values)


def _unique_ids(values: Iterable[Any]) -> List[str]:
    """Stringify and deduplicate, keeping first-occurrence order."""
    return list(dict.fromkeys(_id_text(v) for v in values if not _is_missing(v)))


def _id_text(value: Any) -> str:
    # pandas stores int columns with gaps as float64; 1.0 must go out as "1"
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _wire_value(value: Any) -> Any:
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.isoformat()
    if isinstance(value, np.generic):
        return value.item()
    return value


def transaction_events(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    """Rename a transaction table to wire fields and serialise it row by row."""
    renamed = frame.rename(columns=EVENT_FIELD_MAP)
    events = []
    for record in renamed.to_dict("records"):
        clean = {str(k): _wire_value(v) for k, v in record.items() if not _is_missing(v)}
        if "itemId" in clean:
            clean["itemId"] = _id_text(clean["itemId"])
        if "eventType" in clean:
            clean["eventType"] = str(clean["eventType"])
        if "timestamp" in clean:
            clean["timestamp"] = str(clean["timestamp"])
        events.append(TransactionEvent.model_validate(clean).to_payload())
    return events


def _run(coro):
    """Run a coroutine to completion, even when called from inside an event loop."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


class RecommendationBatcher:
    """Issues one `recommend` call per unique subject and assembles a result table.

    Calls run on a bounded pool of threads; each response is stored at its
    subject's input position so the table follows input order, not completion
    order. Any failing call fails the whole batch.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        rec_key: Optional[str],
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.rec_key = rec_key
        self.max_concurrency = max(1, max_concurrency)
        self.rate_limiter = rate_limiter

    def user_recommendations(self, userdata: Any, k: int = 10) -> pd.DataFrame:
        _check_k(k)
        users = UserSpecification.resolve(userdata)
        LOGGER.info("Requesting %d recommendations for %d user queries (%s)", k, len(users.queries), users.kind.value)

        calls = [self._user_call(query, k) for query in users.queries]
        payloads = self._issue(calls)

        subject_key = USER_COLUMN if users.has_user_ids else None
        return normalize_payloads((q.user_id for q in users.queries), payloads, k, subject_key=subject_key)

    def item_recommendations(self, items: Any, k: int = 10) -> pd.DataFrame:
        _check_k(k)
        if items is None:
            raise InvalidInput("Must provide item IDs to get recommendations for")
        item_ids = _unique_ids(_as_id_list(items))
        if not item_ids:
            raise InvalidInput("Must provide item IDs to get recommendations for")
        LOGGER.info("Requesting %d recommendations for %d items", k, len(item_ids))

        calls = [self._item_call(item_id, k) for item_id in item_ids]
        payloads = self._issue(calls)
        return normalize_payloads(item_ids, payloads, k, subject_key=ITEM_COLUMN)

    def _user_call(self, query: UserQuery, k: int) -> Callable[[], Any]:
        options: Dict[str, Any] = {"recommendationCount": k}
        if query.user_id is not None:
            options["userId"] = query.user_id
        return lambda: self._dispatch(options, body=query.events or None, verb="POST")

    def _item_call(self, item_id: str, k: int) -> Callable[[], Any]:
        options = {"itemId": item_id, "recommendationCount": k}
        return lambda: self._dispatch(options, verb="GET")

    def _dispatch(self, options: Dict[str, Any], *, verb: str, body: Any = None) -> Any:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        return self.dispatcher.dispatch("recommend", verb, body=body, options=options, key=self.rec_key)

    def _issue(self, calls: Sequence[Callable[[], Any]]) -> List[Any]:
        if self.max_concurrency == 1 or len(calls) <= 1:
            return [call() for call in calls]
        return _run(self._issue_async(calls))

    async def _issue_async(self, calls: Sequence[Callable[[], Any]]) -> List[Any]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: List[Any] = [None] * len(calls)

        async def _one(idx: int, call: Callable[[], Any]):
            async with semaphore:
                results[idx] = await asyncio.to_thread(call)

        await asyncio.gather(*(_one(idx, call) for idx, call in enumerate(calls)))
        return results


def _check_k(k: int) -> None:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise InvalidInput(f"k must be a positive integer, got {k!r}")
