from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, RootModel


class ScheduleEntry(BaseModel):
    """One target timeslot to copy the source flash sale into."""

    timeslot_id: int = Field(..., gt=0)
    start_time: int = Field(..., gt=0, description="Timeslot start, unix seconds")
    end_time: Optional[int] = Field(None, description="Timeslot end, unix seconds")
    items: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "items_data"),
        description="Item/model/price overrides sent to add_shop_flash_sale_items",
    )


class ScheduleRequest(BaseModel):
    shop_id: int
    source_flash_sale_id: int
    entries: List[ScheduleEntry] = Field(
        ..., min_length=1, validation_alias=AliasChoices("entries", "timeslots")
    )
    minutes_before: Optional[int] = Field(
        None, description="Lead time before the timeslot start; clamped to [1, 60]"
    )


class UpdateRunAtRequest(BaseModel):
    shop_id: int
    scheduled_at: datetime


# Commands accepted by POST /api/flash-sale-scheduler/action. The "action"
# field selects the variant; anything else is rejected by validation.


class ScheduleCommand(ScheduleRequest):
    action: Literal["schedule"]


class ListCommand(BaseModel):
    action: Literal["list"]
    shop_id: int


class CancelCommand(BaseModel):
    action: Literal["cancel"]
    shop_id: int
    schedule_id: str = Field(..., validation_alias=AliasChoices("schedule_id", "job_id", "id"))


class UpdateCommand(BaseModel):
    action: Literal["update"]
    shop_id: int
    schedule_id: str = Field(..., validation_alias=AliasChoices("schedule_id", "job_id", "id"))
    scheduled_at: datetime


class ForceRunCommand(BaseModel):
    action: Literal["force-run"]
    schedule_id: str = Field(..., validation_alias=AliasChoices("schedule_id", "job_id", "id"))
    shop_id: Optional[int] = None


class SweepCommand(BaseModel):
    # "process" is what the cron trigger historically sent.
    action: Literal["sweep", "process"]
    batch_size: Optional[int] = Field(None, ge=1, le=100)


SchedulerCommand = Annotated[
    Union[ScheduleCommand, ListCommand, CancelCommand, UpdateCommand, ForceRunCommand, SweepCommand],
    Field(discriminator="action"),
]


class SchedulerAction(RootModel[SchedulerCommand]):
    pass
