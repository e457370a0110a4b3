import sys
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

DEFAULT_FIELDS = ["name", "size", "mtime_ms", "exists", "type"]

CoalescePolicy = Literal["debounced", "immediate"]
EntryType = Literal["f", "d", "l", "?"]


class WatchHandle(BaseModel):
    """Result of registering a watch root with the notifier."""

    watch: str
    relative_path: Optional[str] = Field(default=None)
    warning: Optional[str] = Field(default=None)


class SubscriptionSpec(BaseModel):
    expression: List[str] = Field(default_factory=lambda: ["dirname", "src"])
    fields: List[str] = Field(default_factory=lambda: list(DEFAULT_FIELDS))
    relative_root: Optional[str] = Field(default=None)
    defer: List[str] = Field(default_factory=list)
    empty_on_fresh_instance: bool = Field(default=False)


class SubscribeAck(BaseModel):
    subscribe: str
    clock: int = Field(default=0)


class UnsubscribeAck(BaseModel):
    unsubscribe: str
    deleted: bool = Field(default=True)


class ChangeEvent(BaseModel):
    """One modified filesystem entry. Fields not requested stay ``None``."""

    name: str
    size: Optional[int] = Field(default=None)
    mtime_ms: Optional[int] = Field(default=None)
    exists: Optional[bool] = Field(default=None)
    type: Optional[EntryType] = Field(default=None)


class NotificationBatch(BaseModel):
    subscription: str
    root: str = Field(default="")
    is_fresh_instance: bool = Field(default=False)
    files: List[ChangeEvent] = Field(default_factory=list)
    clock: int = Field(default=0)


class DevServerSettings(BaseModel):
    root: str = Field(default=".")
    subtree: str = Field(default="src", min_length=1)
    command: List[str] = Field(
        default_factory=lambda: [sys.executable, "src/index.py"], min_length=1
    )
    debounce_ms: int = Field(default=1000, ge=0)
    policy: CoalescePolicy = Field(default="debounced")
    subscription_name: str = Field(default="dev_server_subscription")
    defer_state: str = Field(default="dev_subscription_state")
    settle_ms: int = Field(default=20, ge=0)
    log_dir: str = Field(default=".devserver")
    terminate_child_on_exit: bool = Field(default=True)
