"""
Warehouse Service — 処理結果 (Result / Failure)

各コンポーネントは例外を投げずに Result を返す。
呼び出し側は必ず結果を確認してから次の処理に進む。

  Success(value)                         → 成功
  Failure(failure_kind, transient, error) → 失敗

transient は「リトライする価値があるか」を表す唯一のビット。
バッチコンシューマはこの値だけを見て再配信するかどうかを決める。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    """失敗の種類（閉じた列挙。任意の文字列は使わない）"""

    INVALID_ARGUMENTS = "InvalidArgumentsError"
    DUPLICATE_EVENT_RAISED = "DuplicateEventRaisedError"
    DUPLICATE_STOCK_ALLOCATION = "DuplicateStockAllocationError"
    DEPLETED_STOCK_ALLOCATION = "DepletedStockAllocationError"
    INVALID_STOCK_DEALLOCATION = "InvalidStockDeallocationError"
    INVALID_STOCK_COMPLETION = "InvalidStockCompletionError"
    DUPLICATE_RESTOCK_OPERATION = "DuplicateRestockOperationError"
    UNRECOGNIZED = "UnrecognizedError"


class WarehouseError(Exception):
    """Failure に格納される、分類済みのエラー"""


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T = None


@dataclass(frozen=True)
class Failure:
    failure_kind: FailureKind
    transient: bool
    error: Exception


Result = Success | Failure


def make_success(value: Any = None) -> Success:
    return Success(value)


def make_failure(failure_kind: FailureKind, err: Any, transient: bool) -> Failure:
    """
    Failure を生成する。

    err が例外ならそのまま保持し、文字列なら種類付きのメッセージに包む。
    それ以外は UnrecognizedError として扱う。
    """
    if isinstance(err, Exception):
        error = err
    elif isinstance(err, str):
        error = WarehouseError(f"[{failure_kind.value}]: {err}")
    else:
        error = WarehouseError("[UnrecognizedError]: Unrecognized error")
    return Failure(failure_kind=failure_kind, transient=transient, error=error)


def is_success(result: Result) -> bool:
    return isinstance(result, Success)


def is_failure(result: Result) -> bool:
    return isinstance(result, Failure)


def is_failure_of_kind(result: Result, failure_kind: FailureKind) -> bool:
    return isinstance(result, Failure) and result.failure_kind is failure_kind


def is_failure_transient(result: Result) -> bool:
    return isinstance(result, Failure) and result.transient is True


def get_success_value_or_raise(result: Result) -> Any:
    if isinstance(result, Success):
        return result.value
    raise WarehouseError("Result could not be asserted to be a Success")
