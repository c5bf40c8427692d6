"""
test_proximity.py — Tests for nearby-recipient resolution.

Run with:
    pytest tests/test_proximity.py -v
"""

from __future__ import annotations

import pytest

from backend.app.core.errors import CollaboratorUnavailableError, ValidationError
from backend.app.notifications.proximity import ProximityIndex
from backend.app.notifications.recipients import UserProfile
from backend.app.spatial.geo import Coordinate, haversine_m
from backend.app.tracking.location_store import InMemoryLocationStore

from conftest import DELHI, push_token

# ~1.1 km and ~11 km north of Connaught Place
NEAR = Coordinate(latitude=28.6415, longitude=77.2167)
FAR = Coordinate(latitude=28.7315, longitude=77.2167)


class BrokenLocationStore(InMemoryLocationStore):

    async def latest_locations(self):
        raise ConnectionError("tracking db offline")


class TestFindNear:

    @pytest.mark.asyncio
    async def test_within_radius_nearest_first(self, locations, proximity):
        await locations.record_location("near", NEAR)
        await locations.record_location("here", DELHI)
        await locations.record_location("far", FAR)

        found = await proximity.find_near(DELHI, 2000)

        assert [r.id for r in found] == ["here", "near"]

    @pytest.mark.asyncio
    async def test_boundary_is_inclusive(self, locations, proximity):
        await locations.record_location("near", NEAR)
        exact = haversine_m(DELHI, NEAR)
        assert [r.id for r in await proximity.find_near(DELHI, exact)] == ["near"]

    @pytest.mark.asyncio
    async def test_zero_radius_matches_same_point(self, locations, proximity):
        await locations.record_location("here", DELHI)
        await locations.record_location("near", NEAR)
        assert [r.id for r in await proximity.find_near(DELHI, 0)] == ["here"]

    @pytest.mark.asyncio
    async def test_exclude_reporter(self, locations, proximity):
        await locations.record_location("reporter", DELHI)
        await locations.record_location("near", NEAR)
        found = await proximity.find_near(DELHI, 2000, exclude=["reporter"])
        assert [r.id for r in found] == ["near"]

    @pytest.mark.asyncio
    async def test_no_locations(self, proximity):
        assert await proximity.find_near(DELHI, 5000) == []

    @pytest.mark.asyncio
    async def test_recipients_carry_contact_points(self, locations, proximity, directory, registry):
        directory.upsert(UserProfile(user_id="near", name="Asha", email="asha@example.com"))
        registry.register_token("near", push_token(7), preferences={"weatherAlert": False})
        await locations.record_location("near", NEAR)

        (recipient,) = await proximity.find_near(DELHI, 2000)

        assert recipient.name == "Asha"
        assert recipient.email == "asha@example.com"
        assert recipient.push_token == push_token(7)
        assert recipient.preferences == {"weatherAlert": False}

    @pytest.mark.asyncio
    async def test_negative_radius(self, proximity):
        with pytest.raises(ValidationError):
            await proximity.find_near(DELHI, -1)

    @pytest.mark.asyncio
    async def test_store_failure_is_collaborator_error(self, resolver):
        index = ProximityIndex(BrokenLocationStore(), resolver)
        with pytest.raises(CollaboratorUnavailableError) as excinfo:
            await index.find_near(DELHI, 1000)
        assert excinfo.value.collaborator == "location"
