# copyflow/schemas.py
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_BULK_ITEMS = 100


class Category(str, Enum):
    ELECTRONICS = "electronics"
    CLOTHING = "clothing"
    HOME = "home"
    BEAUTY = "beauty"
    SPORTS = "sports"
    BOOKS = "books"
    AUTOMOTIVE = "automotive"
    OTHER = "other"


class WritingStyle(str, Enum):
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    LUXURY = "luxury"
    TECHNICAL = "technical"
    CREATIVE = "creative"


class Language(str, Enum):
    EN = "en"
    UA = "ua"
    DE = "de"
    ES = "es"
    FR = "fr"
    IT = "it"
    PL = "pl"
    PT = "pt"
    ZH = "zh"
    JA = "ja"
    RU = "ru"
    AR = "ar"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# ---------------------------------------------------------------------------
# Generation inputs
# ---------------------------------------------------------------------------
class GenerationItem(BaseModel):
    productName: str = Field(..., min_length=1, max_length=100)
    category: Category
    writingStyle: WritingStyle
    language: Language

    @field_validator("productName")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Product name is required")
        return v.strip()


class UrlAnalysisRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    writingStyle: WritingStyle
    language: Language


# ---------------------------------------------------------------------------
# Generation outputs
# ---------------------------------------------------------------------------
class GenerationResult(BaseModel):
    productTitle: str
    productDescription: str
    seoTitle: str
    metaDescription: str
    callToAction: str
    keyFeatures: List[str]
    tagsKeywords: List[str]


class CompetitorSnapshot(BaseModel):
    title: str
    price: str = ""
    description: str
    features: List[str] = Field(default_factory=list)
    rating: str = ""


class CompetitorAnalysis(BaseModel):
    competitor: CompetitorSnapshot
    improvements: List[str]
    content: GenerationResult


class VisualAnalysis(BaseModel):
    productType: str
    colors: List[str]
    materials: List[str]
    style: str
    features: List[str]
    targetAudience: str


class ImageAnalysis(BaseModel):
    visualAnalysis: VisualAnalysis
    content: GenerationResult


class TikTokScript(BaseModel):
    hook: str
    problem: str
    solution: str
    proof: str
    cta: str
    hashtags: List[str]


class InstagramCaption(BaseModel):
    caption: str
    hashtags: List[str]
    storyIdeas: List[str]


class PlatformHashtags(BaseModel):
    tiktok: List[str]
    instagram: List[str]
    youtube: List[str]
    twitter: List[str]


class ViralContent(BaseModel):
    tiktokScript: TikTokScript
    instagramCaption: InstagramCaption
    youtubeTitle: str
    youtubeDescription: str
    twitterThread: List[str]
    viralHooks: List[str]
    platformHashtags: PlatformHashtags


# ---------------------------------------------------------------------------
# Bulk jobs
# ---------------------------------------------------------------------------
class BulkSubmitRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    # items stay loosely typed here; each one is validated by the pipeline
    items: List[Dict[str, Any]] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Job name is required")
        return v


class ItemOutcome(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class JobSnapshot(BaseModel):
    jobId: str
    name: str
    status: JobStatus
    totalItems: int
    processed: int
    successful: int
    failed: int
    createdAt: datetime.datetime
    completedAt: Optional[datetime.datetime] = None
    results: Optional[List[ItemOutcome]] = None
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body = self.model_dump(mode="json", exclude={"results", "error"})
        if self.status == JobStatus.COMPLETED and self.results is not None:
            body["results"] = [r.model_dump(mode="json", exclude_none=True) for r in self.results]
        if self.status == JobStatus.FAILED and self.error:
            body["error"] = self.error
        return body


# ---------------------------------------------------------------------------
# Usage analytics
# ---------------------------------------------------------------------------
class DailyUsage(BaseModel):
    date: str
    requests: int


class EndpointUsage(BaseModel):
    endpoint: str
    requests: int


class UsageSummary(BaseModel):
    totalRequests: int
    successfulRequests: int
    failedRequests: int
    dailyBreakdown: List[DailyUsage]
    endpointBreakdown: List[EndpointUsage]

    @property
    def success_rate(self) -> float:
        if not self.totalRequests:
            return 0.0
        return round(self.successfulRequests / self.totalRequests * 100, 1)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------
class TenantCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    plan: str = Field("free", pattern="^(free|pro|business|enterprise)$")
    ownerEmail: Optional[str] = None


class KeyCreateRequest(BaseModel):
    tenantId: str
    name: str = Field(..., min_length=1, max_length=200)
    permissions: List[str] = Field(..., min_length=1)
