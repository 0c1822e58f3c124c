from typing import Any

GENDER_FEMALE = "FEMALE"
GENDER_MALE = "MALE"
GENDER_UNISEX = "UNISEX"

SEASON_SPRING = "SPRING"
SEASON_SUMMER = "SUMMER"
SEASON_AUTUMN = "AUTUMN"
SEASON_WINTER = "WINTER"
SEASONS = (SEASON_SPRING, SEASON_SUMMER, SEASON_AUTUMN, SEASON_WINTER)


def map_gender(raw: str | None) -> str:
    value = str(raw or "").strip().upper()
    if value in (GENDER_FEMALE, GENDER_MALE):
        return value
    # FEMALE содержит MALE, поэтому женский проверяется первым
    if "FEMALE" in value or "ЖЕНСК" in value:
        return GENDER_FEMALE
    if "MALE" in value or "МУЖСК" in value:
        return GENDER_MALE
    return GENDER_FEMALE


def map_season(raw: str | None) -> str:
    value = str(raw or "").strip().upper()
    if value in SEASONS:
        return value
    if "DEMI" in value or "ДЕМИ" in value or "МЕЖСЕЗОН" in value:
        return SEASON_AUTUMN
    if "SPRING" in value or "ВЕСН" in value:
        return SEASON_SPRING
    if "SUMMER" in value or "ЛЕТ" in value:
        return SEASON_SUMMER
    if "AUTUMN" in value or "FALL" in value or "ОСЕН" in value:
        return SEASON_AUTUMN
    if "WINTER" in value or "ЗИМ" in value:
        return SEASON_WINTER
    return SEASON_AUTUMN


def _size_number(row: Any) -> float | None:
    raw = row.get("size") if isinstance(row, dict) else row
    try:
        return float(str(raw).replace(",", ".").strip())
    except (TypeError, ValueError):
        return None


def infer_gender_from_sizes(sizes: Any) -> str | None:
    if not isinstance(sizes, list):
        return None
    numbers = [n for n in (_size_number(row) for row in sizes) if n is not None]
    if not numbers:
        return None
    female = sum(1 for n in numbers if n <= 40)
    male = sum(1 for n in numbers if n >= 41)
    if female == len(numbers):
        return GENDER_FEMALE
    if male == len(numbers):
        return GENDER_MALE
    if female > male:
        return GENDER_FEMALE
    if male > female:
        return GENDER_MALE
    return None


def sizes_from_labels(labels: list[str]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for label in labels:
        size = str(label or "").strip()
        if not size or size in seen:
            continue
        seen.add(size)
        out.append({"size": size, "count": 1})
    return out
