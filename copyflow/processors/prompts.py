# copyflow/processors/prompts.py
"""
Prompt templates for every supported output language.

English and Ukrainian have native templates; the other languages reuse the
English wording with an explicit instruction to write in the target language.
``PROMPTS`` is built over the whole ``Language`` enum and checked at import.
"""

from dataclasses import dataclass
from typing import Dict

from copyflow.schemas import Language

LANGUAGE_NAMES: Dict[Language, str] = {
    Language.EN: "English",
    Language.UA: "Українська",
    Language.DE: "Deutsch",
    Language.ES: "Español",
    Language.FR: "Français",
    Language.IT: "Italiano",
    Language.PL: "Polski",
    Language.PT: "Português",
    Language.ZH: "中文",
    Language.JA: "日本語",
    Language.RU: "Русский",
    Language.AR: "العربية",
}

CONTENT_KEYS = ("productTitle, productDescription, seoTitle, metaDescription, "
                "callToAction, keyFeatures (array), tagsKeywords (array)")


@dataclass(frozen=True)
class PromptSet:
    product_system: str
    product_user: str
    competitor_system: str
    competitor_user: str
    visual_extract: str
    visual_system: str
    visual_user: str


_EN_CONTENT_LIST = """1. Product Title (maximum 60 characters)
2. Product Description (200-300 words)
3. SEO Title (maximum 60 characters)
4. Meta Description (maximum 160 characters)
5. Call-to-Action (5-10 words)
6. Key Features (5 bullet points)
7. Tags & Keywords (10 items)"""

_UA_CONTENT_LIST = """1. Назва товару (максимум 60 символів)
2. Опис товару (200-300 слів)
3. SEO заголовок (максимум 60 символів)
4. Мета опис (максимум 160 символів)
5. Заклик до дії (5-10 слів)
6. Ключові особливості (5 пунктів)
7. Теги та ключові слова (10 елементів)"""

ENGLISH = PromptSet(
    product_system=(
        "You are an expert e-commerce copywriter specializing in creating compelling "
        "product content that converts visitors into customers."
    ),
    product_user=(
        'Create comprehensive product content for "{product_name}" in the {category} '
        "category using a {style} writing style.\n\n"
        "Generate the following content:\n" + _EN_CONTENT_LIST + "\n\n"
        "Format your response as valid JSON with these exact keys: " + CONTENT_KEYS + "."
    ),
    competitor_system=(
        "You are an expert e-commerce copywriter and competitor analyst. Analyze the "
        "competitor data and create superior product content that beats the competition."
    ),
    competitor_user=(
        "Analyze this competitor product data and create superior content using a "
        "{style} writing style:\n\n"
        "Competitor Data:\n"
        "- Title: {title}\n- Price: {price}\n- Description: {description}\n"
        "- Features: {features}\n- Rating: {rating}\n\n"
        "Generate:\n"
        "1. improvements: 5 weaknesses or improvement opportunities in the competitor's content\n"
        "2. content: superior product content:\n" + _EN_CONTENT_LIST + "\n\n"
        "Format your response as valid JSON with exactly two keys: improvements (array of "
        "strings) and content (object with keys " + CONTENT_KEYS + ")."
    ),
    visual_extract=(
        "Analyze this product image and extract the following information as valid JSON "
        "with these exact keys: productType (specific product category/type), colors "
        "(array), materials (array), style (design style), features (array of visible "
        "features), targetAudience (primary target demographic).\n\n"
        "Be specific and detailed in your analysis."
    ),
    visual_system=(
        "You are an expert e-commerce copywriter. You have analyzed a product image and "
        "found: {analysis}. Use this visual information to create compelling product content."
    ),
    visual_user=(
        "Based on the analyzed product image, create comprehensive product content using "
        "a {style} writing style.\n\n"
        "Generate the following content:\n" + _EN_CONTENT_LIST + "\n\n"
        "Format your response as valid JSON with these exact keys: " + CONTENT_KEYS + "."
    ),
)

UKRAINIAN = PromptSet(
    product_system=(
        "Ви - експерт з написання текстів для електронної комерції, який спеціалізується "
        "на створенні переконливого контенту для товарів."
    ),
    product_user=(
        'Створіть комплексний контент для товару "{product_name}" в категорії {category} '
        "використовуючи {style} стиль написання.\n\n"
        "Згенеруйте наступний контент:\n" + _UA_CONTENT_LIST + "\n\n"
        "Відформатуйте вашу відповідь як валідний JSON з цими точними ключами: "
        + CONTENT_KEYS + "."
    ),
    competitor_system=(
        "Ви - експерт з написання текстів для електронної комерції та аналізу конкурентів. "
        "Проаналізуйте дані конкурента та створіть кращий контент товару."
    ),
    competitor_user=(
        "Проаналізуйте дані товару конкурента та створіть кращий контент використовуючи "
        "{style} стиль написання:\n\n"
        "Дані конкурента:\n"
        "- Назва: {title}\n- Ціна: {price}\n- Опис: {description}\n"
        "- Особливості: {features}\n- Рейтинг: {rating}\n\n"
        "Згенеруйте:\n"
        "1. improvements: 5 слабкостей або можливостей покращення в контенті конкурента\n"
        "2. content: кращий контент товару:\n" + _UA_CONTENT_LIST + "\n\n"
        "Відформатуйте відповідь як валідний JSON з двома ключами: improvements (масив "
        "рядків) та content (об'єкт з ключами " + CONTENT_KEYS + ")."
    ),
    visual_extract=(
        "Проаналізуйте це зображення товару та поверніть валідний JSON з ключами: "
        "productType (тип товару), colors (масив), materials (масив), style (стиль "
        "дизайну), features (масив видимих особливостей), targetAudience (цільова "
        "аудиторія).\n\nБудьте конкретними та детальними у вашому аналізі."
    ),
    visual_system=(
        "Ви - експерт з написання текстів для електронної комерції. Ви проаналізували "
        "зображення товару та знайшли: {analysis}. Використайте цю інформацію."
    ),
    visual_user=(
        "На основі проаналізованого зображення товару створіть комплексний контент "
        "використовуючи {style} стиль написання.\n\n"
        "Згенеруйте наступний контент:\n" + _UA_CONTENT_LIST + "\n\n"
        "Відформатуйте вашу відповідь як валідний JSON з цими точними ключами: "
        + CONTENT_KEYS + "."
    ),
)


def _with_output_language(base: PromptSet, language_name: str) -> PromptSet:
    note = (f"\n\nWrite every generated text value in {language_name}. "
            "Keep the JSON keys exactly as given in English.")
    return PromptSet(
        product_system=base.product_system,
        product_user=base.product_user + note,
        competitor_system=base.competitor_system,
        competitor_user=base.competitor_user + note,
        visual_extract=base.visual_extract,
        visual_system=base.visual_system,
        visual_user=base.visual_user + note,
    )


PROMPTS: Dict[Language, PromptSet] = {
    lang: (ENGLISH if lang is Language.EN
           else UKRAINIAN if lang is Language.UA
           else _with_output_language(ENGLISH, LANGUAGE_NAMES[lang]))
    for lang in Language
}

_missing = set(Language) - set(PROMPTS) | set(Language) - set(LANGUAGE_NAMES)
if _missing:
    raise RuntimeError(f"No prompt templates for languages: {sorted(l.value for l in _missing)}")


VIRAL_SYSTEM = (
    "You are a viral social media content expert specializing in creating engaging, "
    "shareable content that converts."
)

VIRAL_USER = """Create viral social media content for "{product_name}" in the {category} category using a {style} writing style. Write all content in {language_name}.

Generate the following viral content:

1. TikTok Script (30 seconds): hook (0-3s), problem (3-8s), solution (8-20s), proof (20-25s), cta (25-30s), and 10 relevant hashtags.
2. Instagram Caption: engaging caption (150-200 words) with emojis, 15 strategic hashtags, 3 story ideas with interactive elements.
3. YouTube Title (under 60 characters) and Description (200 words, with timestamps).
4. Twitter Thread (5-7 tweets, each under 280 characters).
5. Viral Hooks (10 variations).
6. Platform hashtags: TikTok 10, Instagram 15, YouTube 10, Twitter 5.

Format your response as valid JSON with these exact keys: tiktokScript (object with hook, problem, solution, proof, cta, hashtags), instagramCaption (object with caption, hashtags, storyIdeas), youtubeTitle (string), youtubeDescription (string), twitterThread (array of strings), viralHooks (array of strings), platformHashtags (object with tiktok, instagram, youtube, twitter arrays).

Make the content culturally appropriate for {language_name} speakers and highly engaging."""


def prompts_for(language) -> PromptSet:
    """Resolve a language code (or enum) to its templates; unknown codes fall back to English."""
    try:
        return PROMPTS[Language(language)]
    except ValueError:
        return PROMPTS[Language.EN]
