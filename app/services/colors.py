STANDARD_COLORS = (
    "черный",
    "белый",
    "бежевый",
    "коричневый",
    "серый",
    "синий",
    "зеленый",
    "розовый",
    "красный",
    "голубой",
    "желтый",
    "бордовый",
    "фиолетовый",
    "серебристый",
    "оливковый",
    "оранжевый",
    "камуфляжный",
    "золотой",
    "бирюзовый",
    "разноцветный",
)

COLOR_ALIASES = {
    "чёрный": "черный",
    "black": "черный",
    "white": "белый",
    "молочный": "белый",
    "айвори": "белый",
    "beige": "бежевый",
    "кремовый": "бежевый",
    "песочный": "бежевый",
    "капучино": "бежевый",
    "brown": "коричневый",
    "шоколадный": "коричневый",
    "рыжий": "коричневый",
    "кэмел": "коричневый",
    "gray": "серый",
    "grey": "серый",
    "графитовый": "серый",
    "blue": "синий",
    "темно-синий": "синий",
    "тёмно-синий": "синий",
    "navy": "синий",
    "green": "зеленый",
    "зелёный": "зеленый",
    "хаки": "оливковый",
    "olive": "оливковый",
    "pink": "розовый",
    "пудровый": "розовый",
    "коралловый": "розовый",
    "coral": "розовый",
    "salmon": "розовый",
    "лососевый": "розовый",
    "red": "красный",
    "light blue": "голубой",
    "yellow": "желтый",
    "жёлтый": "желтый",
    "горчичный": "желтый",
    "бордо": "бордовый",
    "burgundy": "бордовый",
    "вишневый": "бордовый",
    "вишнёвый": "бордовый",
    "марсала": "бордовый",
    "purple": "фиолетовый",
    "сиреневый": "фиолетовый",
    "лиловый": "фиолетовый",
    "лавандовый": "фиолетовый",
    "silver": "серебристый",
    "серебряный": "серебристый",
    "orange": "оранжевый",
    "камуфляж": "камуфляжный",
    "gold": "золотой",
    "золотистый": "золотой",
    "turquoise": "бирюзовый",
    "мятный": "бирюзовый",
    "multicolor": "разноцветный",
    "мульти": "разноцветный",
    "мультиколор": "разноцветный",
}

_COMPOUND_SEPARATORS = (" с ", " и ", " / ", "/", " , ", ",", " плюс ")


def _main_part(value: str) -> str:
    for sep in _COMPOUND_SEPARATORS:
        if sep in value:
            head = value.split(sep, 1)[0].strip()
            if head:
                return head
    return value


def normalize_color(raw: str | None) -> str | None:
    """Сводит произвольное название цвета к стандартной палитре каталога.

    Составные цвета («синий с желтым») берутся по первому цвету,
    неизвестные значения возвращают None.
    """
    value = str(raw or "").strip().lower()
    if not value:
        return None
    if value.startswith("цвет:"):
        value = value[len("цвет:"):].strip()
    if value.endswith(" цвет"):
        value = value[: -len(" цвет")].strip()
    value = _main_part(value)
    if not value:
        return None

    if value in STANDARD_COLORS:
        return value
    if value in COLOR_ALIASES:
        return COLOR_ALIASES[value]

    value = value.replace("ё", "е")
    if value in STANDARD_COLORS:
        return value
    for color in STANDARD_COLORS:
        if color in value or (len(value) >= 3 and value in color):
            return color
    for alias, color in COLOR_ALIASES.items():
        if alias in value:
            return color
    # "серая", "белые" -> по корню прилагательного
    for color in STANDARD_COLORS:
        stem = color[:-2]
        if len(stem) >= 3 and stem in value:
            return color
    return None


def same_color(left: str | None, right: str | None) -> bool:
    return str(left or "").strip().lower() == str(right or "").strip().lower()
