"""
Task catalogue.

Each task the orchestrator serves declares how its input is validated, how
the provider prompt is built and what a canonical result looks like. Provider
output is repaired into that canonical shape: essential fields must be
present, every other field falls back to a schema default.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .cache import VOLATILE_FIELDS, fingerprint
from .color import coerce_hsl, ensure_accessible
from .errors import InvalidInputError

Messages = List[Dict[str, str]]

DIFFICULTIES = ("easy", "medium", "hard")
HARMONIES = ("complementary", "analogous", "triadic", "monochromatic")
MAX_PALETTE_COLORS = 10
ISSUE_TYPES = ("bug", "performance", "maintainability", "style", "security")
SEVERITIES = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class RequestPayload:
    """One orchestration request: a task name and its parameters."""
    task: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RequestPayload":
        """Build from ``{"task": ..., **params}``.

        Raises:
            InvalidInputError: If data is not a mapping with a task name
        """
        if not isinstance(data, Mapping):
            raise InvalidInputError("request must be a mapping")
        params = dict(data)
        task = params.pop("task", None)
        if not isinstance(task, str):
            raise InvalidInputError("'task' is required")
        return cls(task=task, params=params)

    def fingerprint(self) -> str:
        task_spec = TASKS.get(self.task)
        exact = task_spec.exact_fields if task_spec else ()
        return fingerprint(self.task, self.params, exact_fields=exact)


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def _text(value: Any, default: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _text_list(value: Any, default: Optional[List[str]] = None) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if isinstance(value, (list, tuple)):
        items = [_text(v) for v in value]
        items = [v for v in items if v]
        if items:
            return items
    return list(default or [])


def _int(value: Any, default: int, low: int = 0, high: Optional[int] = None) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    if number < low or (high is not None and number > high):
        return default
    return number


def _choice(value: Any, options: Tuple[str, ...], default: str) -> str:
    text = _text(value).lower()
    return text if text in options else default


def _require_text(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"'{name}' is required and cannot be empty")
    return value.strip()


def _optional_positive_int(params: Mapping[str, Any], name: str,
                           high: Optional[int] = None) -> Optional[int]:
    value = params.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"'{name}' must be a positive integer")
    if high is not None and value > high:
        raise InvalidInputError(f"'{name}' must be at most {high}")
    return value


def _optional_choice(params: Mapping[str, Any], name: str,
                     options: Tuple[str, ...]) -> Optional[str]:
    value = params.get(name)
    if value is None:
        return None
    if not isinstance(value, str) or value.strip().lower() not in options:
        raise InvalidInputError(f"'{name}' must be one of: {list(options)}")
    return value.strip().lower()


def _optional_text_list(params: Mapping[str, Any], name: str) -> List[str]:
    value = params.get(name)
    if value is None:
        return []
    if isinstance(value, str):
        value = [v for v in value.split(",")]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise InvalidInputError(f"'{name}' must be a list of strings")
    return [v.strip() for v in value if v.strip()]


# ---------------------------------------------------------------------------
# Task definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskSpec:
    """Everything the orchestrator needs to know about one task."""
    name: str
    fields: Tuple[str, ...]
    essential_keys: Tuple[str, ...]
    validate: Callable[[Mapping[str, Any]], Dict[str, Any]]
    build_messages: Callable[[Mapping[str, Any]], Messages]
    repair: Callable[[Mapping[str, Any], Mapping[str, Any]], Dict[str, Any]]
    # hashed verbatim in the cache key; all other fields are case and whitespace insensitive
    exact_fields: Tuple[str, ...] = ()

    def check_input(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate and normalize request parameters.

        Volatile fields pass through untouched; unknown fields are rejected.

        Raises:
            InvalidInputError: If params are malformed
        """
        if not isinstance(params, Mapping):
            raise InvalidInputError("params must be a mapping")
        unknown = set(params) - set(self.fields) - VOLATILE_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown fields for '{self.name}': {sorted(unknown)}")
        normalized = self.validate(params)
        for key in VOLATILE_FIELDS & set(params):
            normalized[key] = params[key]
        return normalized

    def repair_response(self, parsed: Mapping[str, Any],
                        params: Mapping[str, Any]) -> Dict[str, Any]:
        """Fill defaults into a provider's JSON object.

        Raises:
            ValueError: If an essential key is missing or unusable
        """
        missing = [k for k in self.essential_keys if not parsed.get(k)]
        if missing:
            raise ValueError(f"response missing essential fields: {missing}")
        return self.repair(parsed, params)


# recipe -------------------------------------------------------------------

def _validate_recipe(params: Mapping[str, Any]) -> Dict[str, Any]:
    ingredients = _optional_text_list(params, "ingredients")
    if not ingredients:
        raise InvalidInputError("'ingredients' is required and cannot be empty")
    cuisine = params.get("cuisine")
    if cuisine is not None and not isinstance(cuisine, str):
        raise InvalidInputError("'cuisine' must be a string")
    return {
        "ingredients": ingredients,
        "cuisine": cuisine.strip() if cuisine and cuisine.strip() else None,
        "difficulty": _optional_choice(params, "difficulty", DIFFICULTIES),
        "cooking_time": _optional_positive_int(params, "cooking_time", high=24 * 60),
        "servings": _optional_positive_int(params, "servings", high=100),
        "dietary_restrictions": _optional_text_list(params, "dietary_restrictions"),
    }


def _recipe_messages(params: Mapping[str, Any]) -> Messages:
    restrictions = params.get("dietary_restrictions") or []
    prompt = (
        "Create a recipe for these conditions:\n"
        f"Ingredients: {', '.join(params['ingredients'])}\n"
        f"Cuisine: {params.get('cuisine') or 'any'}\n"
        f"Difficulty: {params.get('difficulty') or 'medium'}\n"
        f"Cooking time: within {params.get('cooking_time') or 30} minutes\n"
        f"Servings: {params.get('servings') or 2}\n"
        f"Dietary restrictions: {', '.join(restrictions) if restrictions else 'none'}\n\n"
        "Answer only with JSON in this format:\n"
        '{"title": "...", "description": "...", "ingredients": ["..."], '
        '"instructions": ["..."], "ready_in_minutes": 30, "servings": 2, '
        '"difficulty": "medium", "tags": ["..."], '
        '"nutrition": {"calories": 350, "protein": "25g", '
        '"carbohydrates": "30g", "fat": "15g"}}'
    )
    return [
        {"role": "system", "content": "You are a professional chef. Always answer in JSON only."},
        {"role": "user", "content": prompt},
    ]


def _repair_recipe(parsed: Mapping[str, Any], params: Mapping[str, Any]) -> Dict[str, Any]:
    nutrition = parsed.get("nutrition") if isinstance(parsed.get("nutrition"), Mapping) else {}
    instructions = _text_list(parsed.get("instructions"))
    if not instructions:
        raise ValueError("response has no usable instructions")
    return {
        "title": _text(parsed.get("title"), "Generated recipe"),
        "description": _text(parsed.get("description"), "A dish made with "
                             + ", ".join(params["ingredients"]) + "."),
        "ingredients": _text_list(parsed.get("ingredients"), params["ingredients"]),
        "instructions": instructions,
        "ready_in_minutes": _int(
            parsed.get("ready_in_minutes", parsed.get("readyInMinutes")),
            params.get("cooking_time") or 30, low=1
        ),
        "servings": _int(parsed.get("servings"), params.get("servings") or 2, low=1),
        "difficulty": _choice(parsed.get("difficulty"), DIFFICULTIES,
                              params.get("difficulty") or "medium"),
        "tags": _text_list(parsed.get("tags"), [params.get("cuisine") or "general"]),
        "nutrition": {
            "calories": _int(nutrition.get("calories"), 300),
            "protein": _text(nutrition.get("protein"), "20g"),
            "carbohydrates": _text(nutrition.get("carbohydrates"), "25g"),
            "fat": _text(nutrition.get("fat"), "12g"),
        },
    }


# palette ------------------------------------------------------------------

def _validate_palette(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "keyword": _require_text(params, "keyword"),
        "harmony": _optional_choice(params, "harmony", HARMONIES) or "analogous",
        "color_count": _optional_positive_int(params, "color_count", high=MAX_PALETTE_COLORS) or 5,
    }


def _palette_messages(params: Mapping[str, Any]) -> Messages:
    prompt = (
        f"Create a {params['harmony']} colour palette of {params['color_count']} colours "
        f"for the keyword '{params['keyword']}'. Answer only with JSON: "
        '{"name": "...", "description": "...", '
        '"colors": [{"h": 0-360, "s": 0-100, "l": 0-100}]}'
    )
    return [{"role": "user", "content": prompt}]


def _repair_palette(parsed: Mapping[str, Any], params: Mapping[str, Any]) -> Dict[str, Any]:
    raw_colors = parsed.get("colors")
    if not isinstance(raw_colors, list):
        raise ValueError("'colors' must be a list")
    triples = [t for t in (coerce_hsl(c) for c in raw_colors) if t is not None]
    if not triples:
        raise ValueError("response has no usable colours")
    triples = triples[:params["color_count"]]
    return {
        "name": _text(parsed.get("name"), params["keyword"].title()),
        "keyword": params["keyword"],
        "harmony": params["harmony"],
        "description": _text(parsed.get("description"),
                             f"A {params['harmony']} palette inspired by {params['keyword']}."),
        "colors": [ensure_accessible(*t) for t in triples],
    }


# code review ----------------------------------------------------------------

def _validate_code_review(params: Mapping[str, Any]) -> Dict[str, Any]:
    code = params.get("code")
    if not isinstance(code, str) or not code.strip():
        raise InvalidInputError("'code' is required and cannot be empty")
    language = params.get("language")
    if language is not None and (not isinstance(language, str) or not language.strip()):
        raise InvalidInputError("'language' must be a non-empty string")
    return {"code": code, "language": language.strip().lower() if language else "python"}


def _code_review_messages(params: Mapping[str, Any]) -> Messages:
    prompt = (
        f"Review the following {params['language']} code and answer only with JSON:\n"
        f"```{params['language']}\n{params['code']}\n```\n\n"
        '{"summary": "...", "issues": [{"type": "bug|performance|maintainability|style|security", '
        '"severity": "low|medium|high|critical", "line": 1, "message": "...", '
        '"explanation": "...", "fix": "..."}], '
        '"suggestions": [{"type": "refactor|optimize|simplify|modernize", '
        '"priority": "low|medium|high", "description": "...", "example": "..."}], '
        '"score": 0-100, "confidence": 0-1}'
    )
    return [{"role": "user", "content": prompt}]


def _repair_issue(issue: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(issue, Mapping):
        return None
    message = _text(issue.get("message"))
    if not message:
        return None
    line = issue.get("line")
    return {
        "type": _choice(issue.get("type"), ISSUE_TYPES, "maintainability"),
        "severity": _choice(issue.get("severity"), SEVERITIES, "low"),
        "line": _int(line, 0, low=1) or None,
        "message": message,
        "explanation": _text(issue.get("explanation")),
        "fix": _text(issue.get("fix")),
    }


def _repair_suggestion(suggestion: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(suggestion, Mapping):
        return None
    description = _text(suggestion.get("description"))
    if not description:
        return None
    return {
        "type": _choice(suggestion.get("type"),
                        ("refactor", "optimize", "simplify", "modernize"), "refactor"),
        "priority": _choice(suggestion.get("priority"), ("low", "medium", "high"), "medium"),
        "description": description,
        "example": _text(suggestion.get("example")),
    }


def _repair_code_review(parsed: Mapping[str, Any], params: Mapping[str, Any]) -> Dict[str, Any]:
    issues = parsed.get("issues") if isinstance(parsed.get("issues"), list) else []
    suggestions = parsed.get("suggestions") if isinstance(parsed.get("suggestions"), list) else []
    try:
        confidence = float(parsed.get("confidence", 0.8))
    except (TypeError, ValueError):
        confidence = 0.8
    if not 0 <= confidence <= 1:
        confidence = 0.8
    return {
        "summary": _text(parsed.get("summary"), "Review complete."),
        "language": params["language"],
        "issues": [i for i in (_repair_issue(x) for x in issues) if i],
        "suggestions": [s for s in (_repair_suggestion(x) for x in suggestions) if s],
        "score": _int(parsed.get("score"), 80, low=0, high=100),
        "confidence": confidence,
    }


TASKS: Dict[str, TaskSpec] = {
    "recipe": TaskSpec(
        name="recipe",
        fields=("ingredients", "cuisine", "difficulty", "cooking_time",
                "servings", "dietary_restrictions"),
        essential_keys=("title", "instructions"),
        validate=_validate_recipe,
        build_messages=_recipe_messages,
        repair=_repair_recipe,
    ),
    "palette": TaskSpec(
        name="palette",
        fields=("keyword", "harmony", "color_count"),
        essential_keys=("colors",),
        validate=_validate_palette,
        build_messages=_palette_messages,
        repair=_repair_palette,
    ),
    "code_review": TaskSpec(
        name="code_review",
        fields=("code", "language"),
        essential_keys=("summary",),
        validate=_validate_code_review,
        build_messages=_code_review_messages,
        repair=_repair_code_review,
        exact_fields=("code",),
    ),
}


def get_task(name: str) -> TaskSpec:
    """Look up a task by name.

    Raises:
        InvalidInputError: If the task is unknown
    """
    if not isinstance(name, str) or name not in TASKS:
        raise InvalidInputError(f"Unknown task: {name!r}. Expected one of: {sorted(TASKS)}")
    return TASKS[name]


def validate_payload(payload: RequestPayload) -> RequestPayload:
    """Return a payload whose params have been checked and normalized.

    Raises:
        InvalidInputError: If the task is unknown or params are malformed
    """
    task_spec = get_task(payload.task)
    return RequestPayload(task=payload.task, params=task_spec.check_input(payload.params))


def messages_to_prompt(messages: Messages) -> str:
    """Flatten chat messages for completion-style providers."""
    return "\n\n".join(m["content"] for m in messages)

