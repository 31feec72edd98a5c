class WeightConverter:
    """Utility for converting between kg and lb.

    Weights are stored in kilograms; other units exist only on screen and
    at input.
    """

    KG_TO_LB = 2.20462
    UNITS = ("kg", "lbs")

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def normalize_unit(unit: str) -> str:
        text = (unit or "").strip().lower()
        if text in ("kg", "kgs"):
            return "kg"
        if text in ("lb", "lbs"):
            return "lbs"
        raise ValueError(f"unknown weight unit: {unit!r}")

    @staticmethod
    def round_half(value: float) -> float:
        """Round to the nearest 0.5."""
        return round(value * 2) / 2

    @classmethod
    def to_display(cls, kg: float, unit: str, round_to_half: bool = False) -> float:
        if cls.normalize_unit(unit) == "lbs":
            value = cls.kg_to_lb(kg)
        else:
            value = round(kg, 2)
        return cls.round_half(value) if round_to_half else value

    @classmethod
    def to_canonical(cls, value: float, unit: str) -> float:
        """Convert user input in ``unit`` to kilograms."""
        if cls.normalize_unit(unit) == "lbs":
            return value / cls.KG_TO_LB
        return float(value)
