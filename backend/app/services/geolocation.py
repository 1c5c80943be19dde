"""
위치 계산 유틸리티
퀘스트 좌표와 시도 시작 위치 사이의 거리를 Haversine 공식으로 계산합니다.
"""

import math

EARTH_RADIUS_METERS = 6371000


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_to_quest(location: dict | None, quest: dict) -> float | None:
    """
    시작 위치({"latitude", "longitude"})와 퀘스트 좌표 사이 거리(m).
    둘 중 하나라도 좌표가 없으면 None.
    """
    coords = quest.get("coordinates")
    if not location or not coords:
        return None
    return haversine_meters(
        location["latitude"], location["longitude"], coords["latitude"], coords["longitude"]
    )


def is_within_quest_radius(location: dict | None, quest: dict) -> bool | None:
    distance = distance_to_quest(location, quest)
    if distance is None or quest.get("radius") is None:
        return None
    return distance <= quest["radius"]
