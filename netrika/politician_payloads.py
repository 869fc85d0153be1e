"""
Validated shapes for politician proposals.

A new-politician proposal must satisfy ``PoliticianProposal``; a field edit or
direct admin update must satisfy ``PoliticianPatch``, which accepts any subset
of the same fields. Both reject unknown keys so a typo never lands in the ledger.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

_DOB_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)

Gender = Literal["Male", "Female", "Other", "PreferNotToSay"]
CaseStatus = Literal["Pending", "Convicted", "Acquitted", "Discharged"]


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class JourneyEntry(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    position: Optional[str] = None
    organization: Optional[str] = None
    start_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("start_date", "startDate"))
    end_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("end_date", "endDate"))
    description: Optional[str] = None


class CriminalRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    case_description: str = Field(min_length=1)
    offense_date: Optional[str] = None
    court_name: Optional[str] = None
    case_status: Optional[CaseStatus] = None
    sentence_details: Optional[str] = None
    relevant_laws: Optional[str] = None

    @field_validator("case_status", "offense_date", mode="before")
    @classmethod
    def _blank_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)


class AssetDeclaration(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    year: int
    description_of_assets: str = Field(min_length=1)
    source_of_income: Optional[str] = None

    @field_validator("year")
    @classmethod
    def _year_in_range(cls, value: int) -> int:
        upper = date.today().year + 5
        if value < 1900 or value > upper:
            raise ValueError(f"Year must be between 1900 and {upper}.")
        return value


class ContactInformation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _valid_email(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not _EMAIL_RE.match(str(value)):
            raise ValueError("Invalid email address.")
        return value


class SocialMediaHandles(BaseModel):
    model_config = ConfigDict(extra="forbid")

    twitter: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None

    @field_validator("twitter", "facebook", "instagram", mode="before")
    @classmethod
    def _valid_url(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not _URL_RE.match(str(value)):
            raise ValueError("Invalid URL.")
        return value


Narrative = Union[str, List[JourneyEntry]]


class _PoliticianFields(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name_nepali: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[Gender] = None
    photo_asset_id: Optional[str] = None
    biography: Optional[str] = Field(default=None, validation_alias=AliasChoices("biography", "bio"))
    education: Optional[Narrative] = Field(
        default=None, validation_alias=AliasChoices("education", "education_details")
    )
    political_journey: Optional[Narrative] = None

    @field_validator("gender", "photo_asset_id", mode="before")
    @classmethod
    def _blank_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("dob", mode="before")
    @classmethod
    def _valid_dob(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is None:
            return None
        text_value = str(value).strip()
        if not _DOB_RE.match(text_value):
            raise ValueError("Date must be YYYY-MM-DD")
        try:
            date.fromisoformat(text_value)
        except ValueError as exc:
            raise ValueError("Date must be a real calendar date") from exc
        return text_value


class PoliticianProposal(_PoliticianFields):
    name: str = Field(min_length=2)
    criminal_records: List[CriminalRecord] = Field(default_factory=list)
    asset_declarations: List[AssetDeclaration] = Field(default_factory=list)
    contact_information: ContactInformation = Field(default_factory=ContactInformation)
    social_media_handles: SocialMediaHandles = Field(default_factory=SocialMediaHandles)


class PoliticianPatch(_PoliticianFields):
    name: Optional[str] = Field(default=None, min_length=2)
    criminal_records: Optional[List[CriminalRecord]] = None
    asset_declarations: Optional[List[AssetDeclaration]] = None
    contact_information: Optional[ContactInformation] = None
    social_media_handles: Optional[SocialMediaHandles] = None

    @field_validator("name", "criminal_records", "asset_declarations", "contact_information", "social_media_handles")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field cannot be cleared.")
        return value


POLITICIAN_FIELDS: tuple[str, ...] = tuple(PoliticianProposal.model_fields.keys())
