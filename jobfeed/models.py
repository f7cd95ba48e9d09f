"""
Data models for listings and enriched records.

ListingSummary and ListingDetail are parsed from upstream payloads with
pydantic; EnrichedRecord is the pipeline's output, handed to serializers.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from jobfeed.formatting import (
    BENEFITS_NOT_AVAILABLE,
    DEADLINE_NOT_AVAILABLE,
    REQUIREMENTS_NOT_AVAILABLE,
    SALARY_NEGOTIABLE,
    format_benefits,
    format_date,
    format_deadline,
    format_full_location,
    format_requirements,
    format_salary_range,
)
from jobfeed.utils.helpers import parse_timestamp, safe_strip


# ===== UPSTREAM PAYLOADS =====

class ListingSummary(BaseModel):
    """
    One entry of the paginated listings endpoint.

    Every field is optional at parse time: a summary missing mandatory
    fields is dropped by the aggregator's filter, not rejected here.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    title: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("title", "job_title")
    )
    employer_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("employer_name", "employerName", "company_name"),
    )
    location_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("location_name", "locationName", "city_name"),
    )
    province_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("province_name", "provinceName")
    )
    industry_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("industry_name", "industryName")
    )
    job_function_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("job_function_name", "jobFunctionName"),
    )
    created_at: Any = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    published_at: Any = Field(
        default=None, validation_alias=AliasChoices("published_at", "publishedAt")
    )

    @model_validator(mode="before")
    @classmethod
    def _blank_unusable_values(cls, data: Any) -> Any:
        # Objects, lists and booleans become None; missing_fields() decides
        # whether the summary is still usable.
        if not isinstance(data, dict):
            return data
        return {
            key: value if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None
            for key, value in data.items()
        }

    @property
    def posted_at(self) -> Optional[datetime]:
        """Creation time, falling back to publication time."""
        return parse_timestamp(self.created_at) or parse_timestamp(self.published_at)

    def missing_fields(self) -> List[str]:
        """Mandatory fields that are absent or blank."""
        missing = []
        if not safe_strip(self.id):
            missing.append("id")
        if not safe_strip(self.title):
            missing.append("title")
        if not safe_strip(self.employer_name):
            missing.append("employer_name")
        if self.posted_at is None:
            missing.append("created_at")
        return missing


class JobRequirements(BaseModel):
    """Structured candidate requirements from the detail endpoint."""
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    education_min: Optional[str] = None
    age_max: Optional[int] = None
    gender: Optional[str] = None
    experience: Optional[str] = None
    items: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("items", "requirements")
    )
    skills: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any(
            [self.education_min, self.age_max, self.gender, self.experience, self.items, self.skills]
        )


class ListingDetail(BaseModel):
    """
    Per-listing detail.

    The upstream nests pay as ``salary: {min, max, benefits}``; it is
    flattened into salary_min / salary_max / benefits on parse.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    salary_min: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("salary_min", "salaryMin")
    )
    salary_max: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("salary_max", "salaryMax")
    )
    requirements: JobRequirements = Field(default_factory=JobRequirements)
    benefits: List[str] = Field(default_factory=list)
    description: str = ""
    application_deadline: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("application_deadline", "applicationDeadline"),
    )
    job_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("job_type", "jobType")
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_upstream_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        salary = data.pop("salary", None)
        if isinstance(salary, dict):
            data.setdefault("salary_min", salary.get("min"))
            data.setdefault("salary_max", salary.get("max"))
            if not data.get("benefits") and salary.get("benefits"):
                data["benefits"] = salary["benefits"]

        requirements = data.get("requirements")
        if requirements is None:
            data.pop("requirements", None)
        elif isinstance(requirements, list):
            data["requirements"] = {"items": requirements}

        for key in ("benefits", "description"):
            if data.get(key) is None:
                data.pop(key, None)

        return data


# ===== PIPELINE OUTPUT =====

@dataclass(frozen=True)
class EnrichedRecord:
    """
    A listing summary merged with its detail and display fields.

    A degraded record is one whose detail could not be obtained; it carries
    the summary only, with placeholder display fields.
    """
    summary: ListingSummary
    detail: Optional[ListingDetail]
    degraded: bool
    posted_at: Optional[datetime]
    salary_range: str
    full_location: str
    requirements_text: str
    benefits_text: str
    deadline_text: str
    posted_date_text: str

    def __post_init__(self):
        if self.degraded and self.detail is not None:
            raise ValueError("degraded records cannot carry a detail")

    @classmethod
    def enriched(
        cls,
        summary: ListingSummary,
        detail: ListingDetail,
        now: Optional[datetime] = None,
    ) -> "EnrichedRecord":
        requirements = detail.requirements
        return cls(
            summary=summary,
            detail=detail,
            degraded=False,
            posted_at=summary.posted_at,
            salary_range=format_salary_range(detail.salary_min, detail.salary_max),
            full_location=format_full_location(summary.location_name, summary.province_name),
            requirements_text=(
                REQUIREMENTS_NOT_AVAILABLE
                if requirements.is_empty
                else format_requirements(**requirements.model_dump())
            ),
            benefits_text=format_benefits(detail.benefits),
            deadline_text=format_deadline(detail.application_deadline, now=now),
            posted_date_text=format_date(summary.created_at or summary.published_at),
        )

    @classmethod
    def degraded_from(cls, summary: ListingSummary) -> "EnrichedRecord":
        return cls(
            summary=summary,
            detail=None,
            degraded=True,
            posted_at=summary.posted_at,
            salary_range=SALARY_NEGOTIABLE,
            full_location=format_full_location(summary.location_name, summary.province_name),
            requirements_text=REQUIREMENTS_NOT_AVAILABLE,
            benefits_text=BENEFITS_NOT_AVAILABLE,
            deadline_text=DEADLINE_NOT_AVAILABLE,
            posted_date_text=format_date(summary.created_at or summary.published_at),
        )

    @property
    def id(self) -> Optional[str]:
        return self.summary.id

    @property
    def title(self) -> Optional[str]:
        return self.summary.title

    @property
    def employer_name(self) -> Optional[str]:
        return self.summary.employer_name

    @property
    def location_name(self) -> Optional[str]:
        return self.summary.location_name

    @property
    def industry_name(self) -> Optional[str]:
        return self.summary.industry_name

    @property
    def created_at(self) -> Any:
        return self.summary.created_at

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for serializers."""
        return {
            "id": self.id,
            "title": self.title,
            "employer_name": self.employer_name,
            "location_name": self.location_name,
            "industry_name": self.industry_name,
            "created_at": self.created_at,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "detail": self.detail.model_dump() if self.detail else None,
            "salary_range": self.salary_range,
            "full_location": self.full_location,
            "requirements_text": self.requirements_text,
            "benefits_text": self.benefits_text,
            "deadline_text": self.deadline_text,
            "posted_date_text": self.posted_date_text,
            "degraded": self.degraded,
        }
