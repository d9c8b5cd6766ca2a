import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from ..errors import ParseError

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r'```(?:json)?\s*([\s\S]*?)```', re.IGNORECASE)


@dataclass
class CategoryMap:
    """Category label -> entry indices, as returned by a classification prompt."""
    categories: Dict[str, List[int]]


@dataclass
class CategoryList:
    """Ordered category names, as returned by a ranking prompt."""
    names: List[str]


ClassificationResult = Union[CategoryMap, CategoryList]


def parse_response(text: str) -> Union[dict, list]:
    """Extract the JSON object or array embedded in free-form model output."""
    json_str = str(text if text is not None else '').strip()

    # Remove markdown code blocks if present
    fenced = CODE_FENCE.search(json_str)
    if fenced:
        json_str = fenced.group(1).strip()

    obj_start = json_str.find('{')
    arr_start = json_str.find('[')
    start = end = -1
    if obj_start != -1 and (arr_start == -1 or obj_start < arr_start):
        start, end = obj_start, json_str.rfind('}')
    elif arr_start != -1:
        start, end = arr_start, json_str.rfind(']')

    if start == -1 or end <= start:
        raise ParseError(f"No JSON object or array found in response: {_preview(text)}")

    try:
        value = json.loads(json_str[start:end + 1])
    except json.JSONDecodeError as e:
        raise ParseError(f"Could not parse AI response: {e}") from e

    if not isinstance(value, (dict, list)):
        raise ParseError(f"Expected a JSON object or array, got {type(value).__name__}")
    return value


def as_category_map(value: Any) -> CategoryMap:
    if not isinstance(value, dict):
        raise ParseError(f"Expected an object of category -> indices, got {type(value).__name__}")

    categories = {}
    for label, indices in value.items():
        if not isinstance(indices, list):
            logger.debug(f"Discarding category {label!r}: indices are not a list")
            continue
        valid = [i for i in indices if isinstance(i, int) and not isinstance(i, bool)]
        if len(valid) != len(indices):
            logger.debug(f"Discarding {len(indices) - len(valid)} non-integer indices for {label!r}")
        categories[str(label)] = valid
    return CategoryMap(categories)


def as_category_list(value: Any) -> CategoryList:
    if not isinstance(value, list):
        raise ParseError(f"Expected an array of category names, got {type(value).__name__}")
    return CategoryList([name.strip() for name in value if isinstance(name, str) and name.strip()])


def _preview(text: Any, limit: int = 120) -> str:
    text = str(text)
    return text if len(text) <= limit else text[:limit] + '...'
