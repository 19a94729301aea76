# tests/test_content_generator.py
import json

import pytest

from conftest import GOOD_CONTENT, GOOD_VISUAL
from copyflow.errors import ExternalFetchError, GenerationError, ValidationError
from copyflow.llm_wrapper import LLMClient, LLMError
from copyflow.processors.content_generator import ContentGenerator, _extract_first_json
from copyflow.processors.prompts import PROMPTS, prompts_for
from copyflow.schemas import GenerationItem, Language, WritingStyle

ITEM = GenerationItem(productName="iPhone 15 Pro", category="electronics",
                      writingStyle="professional", language="en")


def test_valid_response_is_parsed(generator, fake_llm):
    result = generator.generate(ITEM)
    assert result.productTitle == GOOD_CONTENT["productTitle"]
    assert len(result.keyFeatures) == 5

    call = fake_llm.calls[0]
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 2000
    assert "iPhone 15 Pro" in call["messages"][1]["content"]


def test_fenced_response_is_accepted(generator, fake_llm):
    fake_llm.queue("```json\n" + json.dumps(GOOD_CONTENT) + "\n```")
    assert generator.generate(ITEM).seoTitle == GOOD_CONTENT["seoTitle"]


@pytest.mark.parametrize("reply", [
    "",
    "   ",
    "Sorry, I can't help with that right now.",
    "{not json}",
    json.dumps({"productTitle": "only a title"}),
    json.dumps({**GOOD_CONTENT, "keyFeatures": "not a list"}),
])
def test_unusable_response_raises_generation_error(generator, fake_llm, reply):
    fake_llm.queue(reply)
    with pytest.raises(GenerationError):
        generator.generate(ITEM)


def test_transport_failure_raises_generation_error(generator, fake_llm):
    fake_llm.queue(LLMError("LLM call failed (openai): timed out"))
    with pytest.raises(GenerationError, match="timed out"):
        generator.generate(ITEM)


def test_unexpected_list_sizes_are_tolerated(generator, fake_llm):
    fake_llm.queue(json.dumps({**GOOD_CONTENT, "keyFeatures": ["one"], "tagsKeywords": []}))
    result = generator.generate(ITEM)
    assert result.keyFeatures == ["one"]
    assert result.tagsKeywords == []


def test_prompt_language_follows_item(generator, fake_llm):
    generator.generate(ITEM.model_copy(update={"language": Language.UA}))
    assert "Створіть" in fake_llm.calls[0]["messages"][1]["content"]

    generator.generate(ITEM.model_copy(update={"language": Language.DE}))
    assert "Deutsch" in fake_llm.calls[1]["messages"][1]["content"]


def test_every_language_has_templates():
    assert set(PROMPTS) == set(Language)
    for lang in Language:
        p = prompts_for(lang)
        p.product_user.format(product_name="x", category="home", style="casual")


def test_unknown_language_falls_back_to_english():
    assert prompts_for("xx") is PROMPTS[Language.EN]


def test_viral_generation(generator, fake_llm):
    viral = {
        "tiktokScript": {"hook": "h", "problem": "p", "solution": "s", "proof": "pr",
                         "cta": "c", "hashtags": ["#a"]},
        "instagramCaption": {"caption": "c", "hashtags": ["#b"], "storyIdeas": ["poll"]},
        "youtubeTitle": "t",
        "youtubeDescription": "d",
        "twitterThread": ["1/"],
        "viralHooks": ["hook"],
        "platformHashtags": {"tiktok": [], "instagram": [], "youtube": [], "twitter": []},
    }
    fake_llm.queue(json.dumps(viral))
    result = generator.generate_viral(ITEM)
    assert result.tiktokScript.cta == "c"
    assert fake_llm.calls[0]["temperature"] == 0.8
    assert fake_llm.calls[0]["max_tokens"] == 3000

    fake_llm.queue(json.dumps(GOOD_CONTENT))
    with pytest.raises(GenerationError):
        generator.generate_viral(ITEM)


def test_competitor_analysis(generator, fake_llm, scraper):
    fake_llm.queue(json.dumps({"improvements": ["Better title"], "content": GOOD_CONTENT}))
    result = generator.analyze_competitor("https://www.amazon.com/dp/B0TEST",
                                          WritingStyle.LUXURY, Language.EN)
    assert result.competitor.title == "Competitor phone"
    assert result.improvements == ["Better title"]
    assert result.content.productTitle == GOOD_CONTENT["productTitle"]
    assert "Competitor phone" in fake_llm.calls[0]["messages"][1]["content"]


def test_competitor_outside_allow_list_is_rejected_before_fetch(generator, fake_llm, scraper):
    with pytest.raises(ExternalFetchError):
        generator.analyze_competitor("https://example.com/product", WritingStyle.CASUAL, Language.EN)
    assert scraper.fetched == []
    assert fake_llm.calls == []


def test_image_analysis_makes_two_calls(generator, fake_llm):
    fake_llm.queue(json.dumps(GOOD_VISUAL), json.dumps(GOOD_CONTENT))
    result = generator.analyze_image(b"\x89PNG...", "image/png", WritingStyle.CREATIVE, Language.EN)

    assert result.visualAnalysis.productType == "sneaker"
    assert result.content.productTitle == GOOD_CONTENT["productTitle"]
    first, second = fake_llm.calls
    assert first["image"] == (b"\x89PNG...", "image/png")
    assert first["max_tokens"] == 1000
    assert second["image"] is None
    assert "sneaker" in second["messages"][0]["content"]


def test_image_second_call_failure_discards_analysis(generator, fake_llm):
    fake_llm.queue(json.dumps(GOOD_VISUAL), "no json here")
    with pytest.raises(GenerationError):
        generator.analyze_image(b"img", "image/jpeg", WritingStyle.CREATIVE, Language.EN)
    assert len(fake_llm.calls) == 2


@pytest.mark.parametrize("data,content_type", [
    (b"", "image/png"),
    (b"gif", "image/gif"),
    (b"x" * 11, "image/png"),
])
def test_image_input_is_validated(fake_llm, scraper, data, content_type):
    generator = ContentGenerator(fake_llm, scraper=scraper, max_image_bytes=10)
    with pytest.raises(ValidationError):
        generator.analyze_image(data, content_type, WritingStyle.CREATIVE, Language.EN)
    assert fake_llm.calls == []


def test_extract_first_json():
    assert _extract_first_json('Here you go: {"a": 1} thanks') == '{"a": 1}'
    assert _extract_first_json("```\n{\"a\": 1}\n```") == '{"a": 1}'
    assert _extract_first_json("nothing") == "nothing"


def test_mock_client_output_is_schema_valid(scraper):
    generator = ContentGenerator(LLMClient(mock=True), scraper=scraper)
    assert generator.generate(ITEM).callToAction
    assert generator.generate_viral(ITEM).viralHooks
    assert generator.analyze_image(b"img", "image/webp", WritingStyle.CASUAL, Language.EN).content
    assert generator.analyze_competitor("https://rozetka.com.ua/p1", WritingStyle.CASUAL,
                                        Language.UA).improvements
