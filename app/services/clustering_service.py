"""
Clustering Engine - decides which memories belong to the same real-world situation

Pure functions over in-memory snapshots:
- find_nearby: time window + optional spatial filter
- analyze_cluster: tightness confidence from size, time span and spatial spread
- extract_location: representative place name and centroid

The candidate list is always supplied by the caller (owner-scoped and bounded),
so nothing here touches the database.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from app.config import settings

EARTH_RADIUS_METERS = 6_371_000


@dataclass(frozen=True)
class Location:
    """A place: optional name and optional coordinate pair"""
    name: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    @classmethod
    def from_raw(
        cls,
        name: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> "Location":
        """Validate raw columns. Out-of-range or half-present coordinates are dropped."""
        name = name.strip() if name and name.strip() else None
        if lat is None or lng is None:
            return cls(name=name)
        try:
            lat, lng = float(lat), float(lng)
        except (TypeError, ValueError):
            return cls(name=name)
        if math.isnan(lat) or math.isnan(lng) or not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
            return cls(name=name)
        return cls(name=name, lat=lat, lng=lng)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def is_empty(self) -> bool:
        return self.name is None and not self.has_coordinates


@dataclass
class MemorySnapshot:
    """Read-only view of a memory used for clustering and synthesis"""
    id: str
    user_id: str
    captured_at: datetime
    text: str = ""
    location: Location = field(default_factory=Location)


@dataclass
class ClusterAnalysis:
    is_tight: bool
    confidence: float


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def location_distance_meters(a: Location, b: Location) -> Optional[float]:
    """Distance between two locations, or None when either lacks coordinates"""
    if not (a.has_coordinates and b.has_coordinates):
        return None
    return haversine_meters(a.lat, a.lng, b.lat, b.lng)


class ClusteringService:
    """
    Groups memories by temporal and spatial proximity.

    Two memories are neighbours when they were captured within the time window
    and, if both carry coordinates, within the distance threshold. A memory
    without coordinates is clustered on time alone.
    """

    def __init__(
        self,
        time_window: Optional[timedelta] = None,
        distance_threshold_meters: Optional[float] = None,
    ):
        self.time_window = time_window or timedelta(minutes=settings.cluster_time_window_minutes)
        self.distance_threshold_meters = (
            distance_threshold_meters
            if distance_threshold_meters is not None
            else settings.cluster_distance_threshold_meters
        )

    def find_nearby(
        self,
        target: MemorySnapshot,
        candidates: Iterable[MemorySnapshot],
    ) -> List[MemorySnapshot]:
        """Candidates close to the target in time (and space when known). Order is preserved."""
        nearby = []
        for candidate in candidates:
            if candidate.id == target.id:
                continue
            if abs(candidate.captured_at - target.captured_at) > self.time_window:
                continue
            distance = location_distance_meters(target.location, candidate.location)
            if distance is not None and distance > self.distance_threshold_meters:
                continue
            nearby.append(candidate)
        return nearby

    def analyze_cluster(self, memories: Sequence[MemorySnapshot]) -> ClusterAnalysis:
        """Score how coherent a group of memories is"""
        if not memories:
            return ClusterAnalysis(is_tight=False, confidence=0.0)
        if len(memories) == 1:
            return ClusterAnalysis(is_tight=True, confidence=0.7)

        confidence = 0.5

        # Size
        if len(memories) >= 3:
            confidence += 0.2
        if len(memories) >= 5:
            confidence += 0.1

        # Time span
        times = [m.captured_at for m in memories]
        span = max(times) - min(times)
        if span <= timedelta(minutes=30):
            confidence += 0.2
        elif span <= timedelta(minutes=60):
            confidence += 0.1

        # Spatial spread
        located = [m.location for m in memories if m.location.has_coordinates]
        if len(located) >= 2:
            max_distance = max(
                location_distance_meters(a, b)
                for i, a in enumerate(located)
                for b in located[i + 1:]
            )
            if max_distance <= 50:
                confidence += 0.2
            elif max_distance <= 100:
                confidence += 0.1

        confidence = min(1.0, max(0.0, confidence))
        return ClusterAnalysis(is_tight=confidence >= 0.7, confidence=confidence)

    def extract_location(self, memories: Sequence[MemorySnapshot]) -> Location:
        """
        Most common place name among located members, plus their centroid.

        Ties between names go to the one seen first.
        """
        located = [m.location for m in memories if m.location.has_coordinates]
        if not located:
            return Location()

        name = most_common_name(loc.name for loc in located)
        lat = sum(loc.lat for loc in located) / len(located)
        lng = sum(loc.lng for loc in located) / len(located)
        return Location(name=name, lat=lat, lng=lng)


def most_common_name(names: Iterable[Optional[str]]) -> Optional[str]:
    """Most frequent non-empty name; ties go to the first one seen"""
    counts = Counter(n for n in names if n)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def get_clustering_service() -> ClusteringService:
    return ClusteringService()
