import math

from ridetrack.common.constants import EARTH_RADIUS_M

DEFAULT_TILE_STEP = 0.002


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Расстояние по большому кругу (в метрах) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    s = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlng / 2) ** 2)

    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(s), math.sqrt(1 - s))


def snap(value: float, step: float) -> float:
    """
    Округляет координату к ближайшему кратному step (половина - вверх).
    Результат ограничен 6 знаками, -0.0 нормализуется в 0.0.
    """
    return round(math.floor(value / step + 0.5) * step, 6) + 0.0


def format_coord(value: float) -> str:
    """Канонический вид координаты: до 6 знаков без хвостовых нулей."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def tile_key(lat: float, lng: float, step: float = DEFAULT_TILE_STEP) -> str:
    """
    Ключ тайла: "lat,lng" после округления к сетке step.
    Чистая функция - одинаковый вход всегда даёт одинаковый ключ.
    """
    return f"{format_coord(snap(lat, step))},{format_coord(snap(lng, step))}"


def coarsen(lat: float, lng: float, precision: float) -> tuple[float, float]:
    """Грубое округление позиции (приватность realtime-канала)."""
    return snap(lat, precision), snap(lng, precision)


def is_finite_coord(lat: float | None, lng: float | None) -> bool:
    """Обе координаты - конечные числа."""
    if lat is None or lng is None:
        return False
    try:
        return math.isfinite(lat) and math.isfinite(lng)
    except TypeError:
        return False
