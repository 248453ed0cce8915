"""
Local fallback engine.

Deterministic, network-free synthesis of a usable result for every task.
This is what callers get when no provider can answer, so it has no failure
path of its own: keyword tables map inputs to templates or base colours,
unmapped inputs take a generic default branch, and rule-based
post-processing fills in the rest. Only the ``id`` field is random.
"""

import re
import uuid
import zlib
from typing import Any, Callable, Dict, List, Mapping, Tuple

from .color import clamp, ensure_accessible
from .tasks import RequestPayload

LOCAL_ID_PREFIX = "local-"


def _local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------------

# template name -> (ingredient keywords, dish label, minutes, base calories, steps)
RECIPE_TEMPLATES: Dict[str, Tuple[Tuple[str, ...], str, int, int, Tuple[str, ...]]] = {
    "stir-fry": (
        ("chicken", "beef", "pork", "tofu", "shrimp", "rice", "broccoli", "pepper",
         "닭", "소고기", "돼지고기", "두부", "밥"),
        "Stir-Fry", 20, 420,
        (
            "Cut the {main} and the other ingredients into bite-sized pieces.",
            "Heat a wok or large pan over high heat with a little oil.",
            "Stir-fry the {main} until browned, about 5 minutes.",
            "Add {others} and keep stirring for 3 to 4 minutes.",
            "Season with {seasoning}, toss well and serve hot.",
        ),
    ),
    "soup": (
        ("potato", "onion", "carrot", "mushroom", "bean", "lentil", "pumpkin",
         "감자", "양파", "당근", "버섯"),
        "Soup", 35, 260,
        (
            "Dice the {main} and the other vegetables.",
            "Soften the aromatics in a pot with a little oil.",
            "Add the {main}, {others} and enough water or stock to cover.",
            "Simmer for 20 minutes until everything is tender.",
            "Season with {seasoning} and serve warm.",
        ),
    ),
    "salad": (
        ("lettuce", "tomato", "cucumber", "spinach", "avocado", "kale", "상추", "토마토", "오이"),
        "Salad", 10, 180,
        (
            "Wash and dry the {main} and the other vegetables.",
            "Slice everything into even, bite-sized pieces.",
            "Whisk a dressing from oil, vinegar and {seasoning}.",
            "Toss the {main} with {others} and the dressing just before serving.",
        ),
    ),
    "pasta": (
        ("pasta", "spaghetti", "penne", "macaroni", "noodle", "면", "파스타"),
        "Pasta", 25, 520,
        (
            "Cook the {main} in salted boiling water until al dente.",
            "Meanwhile, sauté {others} in a pan with a little oil.",
            "Drain the {main}, keeping a splash of the cooking water.",
            "Combine everything in the pan, season with {seasoning} and serve.",
        ),
    ),
    "baked": (
        ("salmon", "fish", "cod", "sweet potato", "cauliflower", "egg", "연어", "생선", "계란"),
        "Bake", 40, 380,
        (
            "Preheat the oven to 200°C (400°F).",
            "Arrange the {main} and {others} on a lined baking tray.",
            "Drizzle with oil and season with {seasoning}.",
            "Bake for 25 to 30 minutes until cooked through and golden.",
            "Rest for a few minutes before serving.",
        ),
    ),
}

DEFAULT_RECIPE_TEMPLATE = (
    (), "Skillet", 30, 350,
    (
        "Prepare the {main} and the other ingredients.",
        "Heat a pan over medium heat with a little oil.",
        "Cook the {main} until done, then add {others}.",
        "Season with {seasoning} to taste.",
        "Plate and serve.",
    ),
)

CUISINE_SEASONINGS = {
    "korean": "soy sauce, garlic and sesame oil",
    "italian": "olive oil, garlic and basil",
    "mexican": "cumin, chili and lime",
    "japanese": "soy sauce, mirin and ginger",
    "chinese": "soy sauce, ginger and scallion",
    "indian": "garam masala, turmeric and cumin",
    "french": "butter, thyme and shallot",
    "thai": "fish sauce, lime and chili",
    "한식": "soy sauce, garlic and sesame oil",
}
DEFAULT_SEASONING = "salt and pepper"

DIFFICULTY_MINUTES = {"easy": -5, "medium": 0, "hard": 15}


def _pick_template(ingredients: List[str]):
    for ingredient in ingredients:
        lowered = ingredient.lower()
        for template in RECIPE_TEMPLATES.values():
            if any(keyword in lowered for keyword in template[0]):
                return ingredient, template
    return ingredients[0], DEFAULT_RECIPE_TEMPLATE


def synthesize_recipe(params: Mapping[str, Any]) -> Dict[str, Any]:
    ingredients = list(params["ingredients"])
    cuisine = params.get("cuisine")
    difficulty = params.get("difficulty") or "medium"
    servings = params.get("servings") or 2
    restrictions = list(params.get("dietary_restrictions") or [])

    main, (_, dish, minutes, calories, steps) = _pick_template(ingredients)
    others = [i for i in ingredients if i != main]
    seasoning = CUISINE_SEASONINGS.get((cuisine or "").lower(), DEFAULT_SEASONING)

    ready = max(5, minutes + DIFFICULTY_MINUTES[difficulty])
    if params.get("cooking_time"):
        ready = min(ready, params["cooking_time"])

    fill = {
        "main": main,
        "others": ", ".join(others) if others else "the remaining seasoning",
        "seasoning": seasoning,
    }
    title_parts = [cuisine.title() if cuisine else "", main.title(), dish]
    per_serving = calories + 40 * (len(ingredients) - 1)

    return {
        "id": _local_id(),
        "title": " ".join(p for p in title_parts if p),
        "description": (
            f"A {difficulty} {dish.lower()} with {', '.join(ingredients)}, "
            f"ready in about {ready} minutes."
        ),
        "ingredients": ingredients + [seasoning],
        "instructions": [step.format(**fill) for step in steps],
        "ready_in_minutes": ready,
        "servings": servings,
        "difficulty": difficulty,
        "tags": [t for t in (cuisine or "general", dish.lower(), "quick" if ready <= 20 else "")
                 if t] + restrictions,
        "nutrition": {
            "calories": per_serving,
            "protein": f"{10 + 5 * len(ingredients)}g",
            "carbohydrates": f"{20 + 5 * len(ingredients)}g",
            "fat": f"{8 + 2 * len(ingredients)}g",
        },
    }


# ---------------------------------------------------------------------------
# Palettes
# ---------------------------------------------------------------------------

KEYWORD_BASE_COLORS: Dict[str, Tuple[int, int, int]] = {
    "sea": (200, 70, 50), "ocean": (200, 70, 50), "바다": (200, 70, 50),
    "sky": (210, 80, 60), "하늘": (210, 80, 60),
    "forest": (120, 60, 40), "숲": (120, 60, 40),
    "flower": (320, 70, 60), "꽃": (320, 70, 60),
    "sunset": (20, 80, 55), "일몰": (20, 80, 55),
    "snow": (200, 10, 90), "눈": (200, 10, 90),
    "fire": (10, 90, 50), "불": (10, 90, 50),
    "spring": (95, 55, 65), "autumn": (28, 75, 45),
    "coffee": (25, 45, 30), "night": (235, 45, 20),
    "lavender": (270, 50, 70), "mint": (155, 50, 70),
}
DEFAULT_BASE_SATURATION = 60
DEFAULT_BASE_LIGHTNESS = 50


def keyword_base_color(keyword: str) -> Tuple[int, int, int]:
    """Base HSL for a keyword.

    Known words come from the table; anything else gets a hue derived from
    a stable checksum of the keyword so different words stay distinct.
    """
    lowered = keyword.strip().lower()
    if lowered in KEYWORD_BASE_COLORS:
        return KEYWORD_BASE_COLORS[lowered]
    for word in re.findall(r"\w+", lowered):
        if word in KEYWORD_BASE_COLORS:
            return KEYWORD_BASE_COLORS[word]
    hue = zlib.crc32(lowered.encode("utf-8")) % 360
    return hue, DEFAULT_BASE_SATURATION, DEFAULT_BASE_LIGHTNESS


def harmony_colors(base: Tuple[int, int, int], harmony: str, count: int) -> List[Tuple[int, int, int]]:
    h, s, l = base
    colors = []
    for i in range(count):
        if harmony == "complementary":
            hue = h if i % 2 == 0 else h + 180
            light = clamp(l + (i // 2) * 12, 15, 85)
        elif harmony == "triadic":
            hue = h + (i % 3) * 120
            light = clamp(l + (i // 3) * 15, 15, 85)
        elif harmony == "monochromatic":
            hue = h
            light = 20 + (i * 60 // (count - 1) if count > 1 else l - 20)
        else:  # analogous
            hue = h + i * 30
            light = l
        colors.append((int(hue) % 360, s, int(light)))
    return colors


def synthesize_palette(params: Mapping[str, Any]) -> Dict[str, Any]:
    keyword = params["keyword"]
    harmony = params.get("harmony") or "analogous"
    count = params.get("color_count") or 5

    base = keyword_base_color(keyword)
    return {
        "id": _local_id(),
        "name": f"{keyword.strip().title()} {harmony.title()}",
        "keyword": keyword,
        "harmony": harmony,
        "description": f"A {harmony} palette built locally from the keyword '{keyword}'.",
        "colors": [ensure_accessible(*c) for c in harmony_colors(base, harmony, count)],
    }


# ---------------------------------------------------------------------------
# Code review
# ---------------------------------------------------------------------------

# (pattern, type, severity, message, explanation, fix)
REVIEW_RULES = (
    (re.compile(r"\bconsole\.(log|debug|warn)\(|^\s*print\("),
     "style", "low", "Debug output statement detected.",
     "Debug output left in production code clutters logs.",
     "Remove the statement or use a logging library."),
    (re.compile(r"\bvar\s+\w"),
     "style", "medium", "'var' declaration detected.",
     "Block-scoped 'let' and 'const' avoid hoisting surprises.",
     "Replace 'var' with 'const' or 'let'."),
    (re.compile(r"^\s*except\s*:"),
     "bug", "medium", "Bare 'except:' clause detected.",
     "A bare except also catches KeyboardInterrupt and SystemExit.",
     "Catch a specific exception class."),
    (re.compile(r"\beval\s*\("),
     "security", "high", "Use of eval() detected.",
     "Evaluating dynamic strings can execute untrusted input.",
     "Parse the input explicitly instead of evaluating it."),
    (re.compile(r"\b(TODO|FIXME|XXX)\b"),
     "maintainability", "low", "Unresolved TODO/FIXME marker.",
     "Open markers point at unfinished work.",
     "Resolve the item or track it in the issue tracker."),
)
MAX_LINE_LENGTH = 120
LONG_FUNCTION_LINES = 50


def synthesize_code_review(params: Mapping[str, Any]) -> Dict[str, Any]:
    lines = params["code"].splitlines()
    issues = []
    for pattern, kind, severity, message, explanation, fix in REVIEW_RULES:
        for number, line in enumerate(lines, start=1):
            if pattern.search(line):
                issues.append({
                    "type": kind, "severity": severity, "line": number,
                    "message": message, "explanation": explanation, "fix": fix,
                })
                break

    long_lines = [n for n, line in enumerate(lines, start=1) if len(line) > MAX_LINE_LENGTH]
    if long_lines:
        issues.append({
            "type": "style", "severity": "low", "line": long_lines[0],
            "message": f"{len(long_lines)} line(s) longer than {MAX_LINE_LENGTH} characters.",
            "explanation": "Long lines are hard to read and review.",
            "fix": "Wrap or split the long lines.",
        })

    suggestions = []
    if len(lines) > LONG_FUNCTION_LINES:
        suggestions.append({
            "type": "refactor", "priority": "medium",
            "description": "The code is long; consider splitting it into smaller functions.",
            "example": "",
        })

    return {
        "id": _local_id(),
        "summary": (
            f"Offline analysis complete: {len(issues)} issue(s) and "
            f"{len(suggestions)} suggestion(s) found."
        ),
        "language": params.get("language") or "python",
        "issues": issues,
        "suggestions": suggestions,
        "score": max(100 - len(issues) * 10 - len(suggestions) * 5, 60),
        "confidence": 0.7,
    }


SYNTHESIZERS: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
    "recipe": synthesize_recipe,
    "palette": synthesize_palette,
    "code_review": synthesize_code_review,
}


class LocalFallbackEngine:
    """Availability backstop: a pure function from validated request to result."""

    def synthesize(self, payload: RequestPayload) -> Dict[str, Any]:
        """Build a result for a validated payload without any I/O.

        Raises:
            KeyError: If the task has no synthesizer; validated payloads
                always do
        """
        return SYNTHESIZERS[payload.task](payload.params)
