import google.generativeai as genai
from PIL import Image
import pillow_heif  # HEIC photos from phones
pillow_heif.register_heif_opener()
import asyncio
import io
import json
import logging
import requests
from typing import Any, Callable, Dict, Optional

from civiclens.core.config import Settings
from civiclens.models.issue_model import DEPARTMENT_BY_CATEGORY, Department, IssueCategory
from civiclens.services.prompt_manager import PromptManager

logger = logging.getLogger(__name__)

NOT_CIVIC_ISSUE_TYPE = "Not a civic issue"
NO_AUTHORITY = "none"

# Returned whenever classification cannot be completed
FALLBACK_CLASSIFICATION = {
    "issue_type": IssueCategory.OTHER.value,
    "assigned_authority": Department.HEAD.value,
}

CATEGORY_CRITERIA = {
    IssueCategory.POTHOLE.value: "Look for depressions or holes in the road surface.",
    IssueCategory.GARBAGE.value: "Look for waste, litter, or refuse in public areas.",
    IssueCategory.DAMAGE_STREETLIGHT.value: "Look for broken, flickering, or non-functional streetlights.",
    IssueCategory.WATERLOG.value: "Look for standing water, flooding, or blocked drainage.",
    IssueCategory.OTHER.value: (
        "Use this ONLY if the issue clearly does not fit any of the above categories, "
        "even after thorough image analysis."
    ),
}


def department_for_category(category: Optional[str]) -> str:
    """Map an issue category to its department; unknown categories go to head."""
    if not isinstance(category, str):
        return Department.HEAD.value
    return DEPARTMENT_BY_CATEGORY.get(category.strip().lower(), Department.HEAD.value)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the first balanced {...} block in a model reply."""
    start = text.find("{")
    if start == -1:
        raise ValueError("Could not parse AI response as JSON")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                parsed = json.loads(text[start:index + 1])
                if not isinstance(parsed, dict):
                    raise ValueError("AI response JSON is not an object")
                return parsed

    raise ValueError("Could not parse AI response as JSON")


def fetch_image(image_url: str, timeout: int) -> bytes:
    response = requests.get(image_url, timeout=timeout)
    response.raise_for_status()
    return response.content


class IssueClassifier:
    """Gemini vision classifier for civic issue reports."""

    def __init__(
        self,
        settings: Settings,
        prompt_manager: Optional[PromptManager] = None,
        model: Any = None,
        image_fetcher: Callable[[str, int], bytes] = fetch_image,
    ):
        self.settings = settings
        self.prompt_manager = prompt_manager or PromptManager()
        self.image_fetcher = image_fetcher
        self._model = model

        if self._model is None:
            if not settings.gemini_api_key:
                logger.warning("GEMINI_API_KEY is not set; every report will use the fallback classification.")
            else:
                genai.configure(api_key=settings.gemini_api_key)

    def get_model(self):
        if self._model is not None:
            return self._model
        if not self.settings.gemini_api_key:
            raise RuntimeError("GEMINI_API_KEY is not set")
        self._model = genai.GenerativeModel(self.settings.gemini_model)
        return self._model

    def build_prompt(self, description: str) -> str:
        categories = ", ".join(f'"{category}"' for category in CATEGORY_CRITERIA)
        category_criteria = "\n".join(
            f'   - "{category}": {criteria}' for category, criteria in CATEGORY_CRITERIA.items()
        )
        department_rules = "\n".join(
            f'   - If issue_type is "{category}", assigned_authority is "{department}".'
            for category, department in DEPARTMENT_BY_CATEGORY.items()
        )
        return self.prompt_manager.render(
            "classify_issue",
            description=description,
            categories=categories,
            category_criteria=category_criteria,
            department_rules=department_rules,
        )

    def _normalize(self, parsed: Dict[str, Any]) -> Dict[str, Any]:
        if parsed.get("error"):
            return {
                "issue_type": NOT_CIVIC_ISSUE_TYPE,
                "assigned_authority": NO_AUTHORITY,
                "error": parsed["error"],
            }

        result = dict(parsed)
        issue_type = result.get("issue_type")
        if not isinstance(issue_type, str) or not issue_type.strip():
            raise ValueError("AI response is missing issue_type")

        key = issue_type.strip().lower()
        if key in DEPARTMENT_BY_CATEGORY:
            result["issue_type"] = key
        # Routing is decided by the category table, never by the model
        result["assigned_authority"] = department_for_category(key)
        return result

    async def classify(self, image_url: str, description: str) -> Dict[str, Any]:
        """
        Classify an issue from its image URL and description.

        Never raises: on any failure the fixed fallback classification
        (other -> head) is returned.
        """
        try:
            model = self.get_model()
            prompt = self.build_prompt(description)

            image_content = await asyncio.to_thread(
                self.image_fetcher, image_url, self.settings.image_fetch_timeout
            )
            image = Image.open(io.BytesIO(image_content))

            logger.info(f"🤖 Starting Gemini classification (timeout={self.settings.ai_timeout}s)")
            response = await asyncio.wait_for(
                asyncio.to_thread(model.generate_content, [prompt, image]),
                timeout=self.settings.ai_timeout,
            )
            logger.debug(f"Gemini classification raw output: {response.text}")

            result = self._normalize(extract_json_object(response.text))
            logger.info(f"🤖 AI Classification: {result.get('issue_type')} -> {result.get('assigned_authority')}")
            return result
        except Exception as e:
            logger.error(f"❌ Gemini classification error, using fallback: {e}")
            return dict(FALLBACK_CLASSIFICATION)
