# copyflow/processors/content_generator.py
"""
Generation engine: one structured request in, one structured marketing-copy
result out.

Every public method raises GenerationError when the model returns nothing,
returns something that is not JSON, or returns JSON of the wrong shape.
Nothing is retried here; retry policy belongs to the caller.
"""
import json
import time
from typing import Any, Dict, Optional

from jsonschema import validate as jsonschema_validate, ValidationError as SchemaError

from copyflow import monitoring
from copyflow.connectors.page_scraper import PageScraper
from copyflow.errors import GenerationError, ValidationError
from copyflow.llm_wrapper import LLMClient, LLMError
from copyflow.processors.prompts import LANGUAGE_NAMES, VIRAL_SYSTEM, VIRAL_USER, prompts_for
from copyflow.schemas import (
    CompetitorAnalysis, GenerationItem, GenerationResult, ImageAnalysis, Language,
    ViralContent, VisualAnalysis, WritingStyle,
)

log = monitoring.get_logger("generator")

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024

EXPECTED_FEATURES = 5
EXPECTED_TAGS = 10

# Response schemas (the model is asked for exactly these shapes)
RESULT_SCHEMA = GenerationResult.model_json_schema()
VIRAL_SCHEMA = ViralContent.model_json_schema()
VISUAL_SCHEMA = VisualAnalysis.model_json_schema()
COMPETITOR_SCHEMA = {
    "type": "object",
    "required": ["improvements", "content"],
    "properties": {
        "improvements": {"type": "array", "items": {"type": "string"}},
        "content": RESULT_SCHEMA,
    },
}


def _extract_first_json(text: str) -> str:
    """Find the first JSON object in text, removing surrounding fences if any."""
    s = text.strip()
    if s.startswith("```") and s.endswith("```"):
        lines = s.splitlines()
        if len(lines) >= 3:
            s = "\n".join(lines[1:-1]).strip()
    first = s.find("{")
    if first == -1:
        return s
    last = s.rfind("}")
    if last == -1:
        return s
    return s[first:last + 1]


def parse_model_json(resp_text: Optional[str], schema: Dict[str, Any]) -> Dict[str, Any]:
    if not resp_text or not resp_text.strip():
        raise GenerationError("No content generated")
    try:
        parsed = json.loads(_extract_first_json(resp_text))
    except ValueError as e:
        raise GenerationError("Invalid JSON response from AI") from e
    try:
        jsonschema_validate(instance=parsed, schema=schema)
    except SchemaError as ve:
        raise GenerationError(f"Response JSON failed schema validation: {ve.message}") from ve
    return parsed


def _check_cardinality(result: GenerationResult) -> GenerationResult:
    # the model does not always respect the requested counts; keep what it gave
    if len(result.keyFeatures) != EXPECTED_FEATURES or len(result.tagsKeywords) != EXPECTED_TAGS:
        log.warning("Generated content has unexpected list sizes", extra={
            "key_features": len(result.keyFeatures),
            "tags_keywords": len(result.tagsKeywords),
        })
    return result


class ContentGenerator:
    def __init__(self, llm: LLMClient, scraper: Optional[PageScraper] = None,
                 max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES):
        self.llm = llm
        self.scraper = scraper or PageScraper()
        self.max_image_bytes = max_image_bytes

    def _call_llm(self, kind: str, messages, max_tokens: int, temperature: float,
                  image=None) -> str:
        try:
            resp = self.llm.complete(messages=messages, max_tokens=max_tokens,
                                     temperature=temperature, image=image)
        except LLMError as e:
            raise GenerationError(str(e)) from e
        return resp.get("text") or ""

    def _run(self, kind: str, fn):
        start = time.time()
        try:
            out = fn()
        except GenerationError:
            monitoring.observe_generation(start, kind, "fail")
            raise
        monitoring.observe_generation(start, kind, "success")
        return out

    # -- standard product copy ------------------------------------------
    def generate(self, item: GenerationItem) -> GenerationResult:
        def run():
            p = prompts_for(item.language)
            text = self._call_llm("product", [
                {"role": "system", "content": p.product_system},
                {"role": "user", "content": p.product_user.format(
                    product_name=item.productName,
                    category=item.category.value,
                    style=item.writingStyle.value,
                )},
            ], max_tokens=2000, temperature=0.7)
            parsed = parse_model_json(text, RESULT_SCHEMA)
            return _check_cardinality(GenerationResult.model_validate(parsed))
        return self._run("product", run)

    # -- viral social content -------------------------------------------
    def generate_viral(self, item: GenerationItem) -> ViralContent:
        def run():
            text = self._call_llm("viral", [
                {"role": "system", "content": VIRAL_SYSTEM},
                {"role": "user", "content": VIRAL_USER.format(
                    product_name=item.productName,
                    category=item.category.value,
                    style=item.writingStyle.value,
                    language_name=LANGUAGE_NAMES[item.language],
                )},
            ], max_tokens=3000, temperature=0.8)
            return ViralContent.model_validate(parse_model_json(text, VIRAL_SCHEMA))
        return self._run("viral", run)

    # -- competitor analysis --------------------------------------------
    def analyze_competitor(self, url: str, style: WritingStyle,
                           language: Language) -> CompetitorAnalysis:
        # allow-list check and fetch happen before any model call
        competitor = self.scraper.fetch(url)

        def run():
            p = prompts_for(language)
            text = self._call_llm("url_analysis", [
                {"role": "system", "content": p.competitor_system},
                {"role": "user", "content": p.competitor_user.format(
                    style=style.value,
                    title=competitor.title,
                    price=competitor.price or "Not available",
                    description=competitor.description,
                    features=", ".join(competitor.features),
                    rating=competitor.rating or "Not available",
                )},
            ], max_tokens=3000, temperature=0.7)
            parsed = parse_model_json(text, COMPETITOR_SCHEMA)
            content = _check_cardinality(GenerationResult.model_validate(parsed["content"]))
            return CompetitorAnalysis(competitor=competitor,
                                      improvements=parsed["improvements"],
                                      content=content)
        return self._run("url_analysis", run)

    # -- photo analysis -------------------------------------------------
    def validate_image(self, data: bytes, content_type: Optional[str]) -> None:
        if not data:
            raise ValidationError("Image file is required")
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise ValidationError("Only JPG, PNG, and WebP images are supported")
        if len(data) > self.max_image_bytes:
            raise ValidationError(
                f"Image size must be less than {self.max_image_bytes // (1024 * 1024)}MB")

    def analyze_image(self, data: bytes, content_type: str, style: WritingStyle,
                      language: Language) -> ImageAnalysis:
        self.validate_image(data, content_type)

        def run():
            p = prompts_for(language)
            text = self._call_llm("image_analysis", [
                {"role": "user", "content": p.visual_extract},
            ], max_tokens=1000, temperature=0.7, image=(data, content_type))
            visual = VisualAnalysis.model_validate(parse_model_json(text, VISUAL_SCHEMA))

            try:
                text = self._call_llm("image_analysis", [
                    {"role": "system", "content": p.visual_system.format(
                        analysis=json.dumps(visual.model_dump(), ensure_ascii=False))},
                    {"role": "user", "content": p.visual_user.format(style=style.value)},
                ], max_tokens=2000, temperature=0.7)
                content = _check_cardinality(
                    GenerationResult.model_validate(parse_model_json(text, RESULT_SCHEMA)))
            except GenerationError:
                log.warning("Content step failed after image analysis; analysis discarded",
                            extra={"visual_analysis": visual.model_dump()})
                raise
            return ImageAnalysis(visualAnalysis=visual, content=content)
        return self._run("image_analysis", run)
