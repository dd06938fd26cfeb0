import math

EARTH_RADIUS_KM = 6371.0
MAX_ROUND_SCORE = 5000
# Guesses at or beyond this distance earn nothing
ZERO_SCORE_DISTANCE_KM = 20000.0
SCORE_DECAY_KM = 2000.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def score_for_distance(distance_km: float) -> int:
    """Map a guess distance onto the 0..5000 point curve."""
    if distance_km <= 0:
        return MAX_ROUND_SCORE
    if distance_km >= ZERO_SCORE_DISTANCE_KM:
        return 0
    return int(round(MAX_ROUND_SCORE * math.exp(-distance_km / SCORE_DECAY_KM)))
