from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from ipaddress import IPv4Address, IPv6Address
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, TypeAdapter, field_serializer, field_validator


class JobState(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class ProbeSample(BaseModel):
    """One echo reply: sequence number, arrival time, and round trip in milliseconds."""

    model_config = ConfigDict(frozen=True)

    seq: int
    at: datetime
    rtt: float = Field(..., description="round-trip time in milliseconds")

    @field_serializer("at")
    def serialize_at(self, at: datetime) -> float:
        return at.timestamp()


class ProbeRequest(BaseModel):
    target: IPvAnyAddress
    period: timedelta = timedelta(seconds=1)
    duration: timedelta = timedelta(seconds=30)

    @field_validator("target")
    @classmethod
    def unwrap_ipv4_mapped(cls, value: IPv4Address | IPv6Address) -> IPv4Address | IPv6Address:
        if isinstance(value, IPv6Address) and value.ipv4_mapped is not None:
            return value.ipv4_mapped
        return value


class PendingRecord(BaseModel):
    complete: Literal[False] = False
    link: str

    @property
    def state(self) -> JobState:
        return JobState.PENDING


class CompleteRecord(BaseModel):
    complete: Literal[True] = True
    link: str
    target: str
    results: list[ProbeSample] = Field(default_factory=list)

    @property
    def state(self) -> JobState:
        return JobState.COMPLETE


class FailedRecord(BaseModel):
    error: str

    @property
    def state(self) -> JobState:
        return JobState.FAILED


JobRecord = Union[CompleteRecord, PendingRecord, FailedRecord]
JOB_RECORD_ADAPTER: TypeAdapter[JobRecord] = TypeAdapter(JobRecord)


@dataclass(frozen=True)
class ProbeJob:
    job_id: str
    target: str
    link: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def pending_record(self) -> PendingRecord:
        return PendingRecord(link=self.link)
