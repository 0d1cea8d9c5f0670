"""Upstream change event models.

Events arrive as a tagged union discriminated by the `type` field. Record
changes come either wrapped in a `record` event or flat, tagged by action.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from social.graze.scribe.atproto.uri import RecordReference


class RecordAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class RecordChange(BaseModel):
    """A single record change inside a record event."""

    model_config = ConfigDict(extra="ignore")

    did: str
    collection: str
    rkey: str
    action: RecordAction
    cid: Optional[str] = None
    record: Optional[Dict[str, Any]] = None
    live: Optional[bool] = None
    rev: Optional[str] = None

    @property
    def reference(self) -> RecordReference:
        return RecordReference(did=self.did, collection=self.collection, rkey=self.rkey)


class IdentityChange(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    did: str
    handle: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    status: Optional[str] = None


class RecordEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    type: Literal["record"]
    record: RecordChange


class IdentityEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    type: Literal["identity"]
    identity: IdentityChange


class FlatRecordEvent(BaseModel):
    """A record change sent without the record wrapper, tagged by its action.

    `commit` carries no action of its own and is applied like an update.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    type: Literal["commit", "create", "update", "delete"]
    did: str
    collection: str
    rkey: str
    cid: Optional[str] = None
    record: Optional[Dict[str, Any]] = None

    def to_change(self) -> RecordChange:
        action = RecordAction.update if self.type == "commit" else RecordAction(self.type)
        return RecordChange(
            did=self.did,
            collection=self.collection,
            rkey=self.rkey,
            action=action,
            cid=self.cid,
            record=self.record,
        )


TapEvent = Annotated[
    Union[RecordEvent, IdentityEvent, FlatRecordEvent], Field(discriminator="type")
]

TapEventAdapter: TypeAdapter[TapEvent] = TypeAdapter(TapEvent)
RawEventBatchAdapter: TypeAdapter[List[Any]] = TypeAdapter(List[Any])


class WorkItem(BaseModel, frozen=True):
    """A resolution work item, the sole message between intake, sweep, and workers."""

    did: str
    collection: str
    rkey: str

    @classmethod
    def from_reference(cls, reference: RecordReference) -> "WorkItem":
        return cls(did=reference.did, collection=reference.collection, rkey=reference.rkey)

    def serialize(self) -> str:
        """Serialize deterministically so identical items collapse in the queue."""
        return self.model_dump_json()

    @classmethod
    def deserialize(cls, value: Union[str, bytes]) -> "WorkItem":
        return cls.model_validate_json(value)
