"""
Validation utilities
"""


def normalize_decimal_input(value: str) -> str:
    """
    Нормализовать ввод суммы: убрать пробелы, заменить запятую на точку

    Example:
        >>> normalize_decimal_input(" 100,50 ")
        "100.50"
    """
    return value.strip().replace(",", ".")


def form_bool(value) -> bool:
    """
    HTML checkbox / JSON flag -> bool

    Unchecked checkboxes are absent from the form (None).

    Example:
        >>> form_bool("on"), form_bool("false"), form_bool(None)
        (True, False, False)
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "on", "yes")
