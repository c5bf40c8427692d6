"""
test_notification_service.py — Tests for the notification facade, the
push-token registry and recipient resolution.

Run with:
    pytest tests/test_notification_service.py -v
"""

from __future__ import annotations

import pytest

from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.geofence.lookup import GeofenceZone, SafetyLevel
from backend.app.notifications.models import Channel, NotificationType, Severity
from backend.app.notifications.recipients import EmergencyContact, UserProfile
from backend.app.notifications.service import (
    GEOFENCE_ACTION_URL,
    TEST_TITLE,
    NotificationService,
    geofence_severity,
)

from conftest import DELHI, push_token


@pytest.fixture
def service(dispatcher, history, registry, resolver, geofences, coordinator, safety_engine):
    geofences.add(GeofenceZone(
        geofence_id="old-town", name="Old Town", safety_level=SafetyLevel.DANGEROUS,
        center=DELHI, radius_m=400,
    ))
    return NotificationService(
        dispatcher=dispatcher,
        history=history,
        registry=registry,
        resolver=resolver,
        geofences=geofences,
        coordinator=coordinator,
        safety=safety_engine,
    )


class TestGeofenceSeverity:

    @pytest.mark.parametrize("level,severity", [
        ("dangerous", Severity.HIGH),
        ("unsafe", Severity.HIGH),
        ("danger", Severity.HIGH),
        ("moderate", Severity.MEDIUM),
        ("WARNING", Severity.MEDIUM),
        ("safe", Severity.LOW),
        ("very_safe", Severity.LOW),
        (None, Severity.LOW),
    ])
    def test_mapping(self, level, severity):
        assert geofence_severity(level) is severity


class TestGeofenceAlert:

    @pytest.mark.asyncio
    async def test_entry(self, service, registry, push):
        registry.register_token("u1", push_token(1))

        summary = await service.send_geofence_alert("u1", "old-town", "entry", coordinates=DELHI)

        assert summary.successful == 1
        assert summary.notification.type is NotificationType.GEOFENCE
        assert summary.notification.severity is Severity.HIGH
        message = push.sent[0]
        assert message["title"] == "📍 Entered Old Town"
        assert message["body"] == "You have entered a dangerous safety zone: Old Town"
        assert message["data"]["action_url"] == GEOFENCE_ACTION_URL
        assert message["data"]["coordinates"] == DELHI.to_dict()

    @pytest.mark.asyncio
    async def test_exit_with_level_override(self, service, registry, push):
        registry.register_token("u1", push_token(1))
        summary = await service.send_geofence_alert("u1", "old-town", "exit", safety_level="moderate")
        assert summary.notification.severity is Severity.MEDIUM
        assert push.sent[0]["body"] == "You have left a moderate safety zone: Old Town"
        assert "coordinates" not in push.sent[0]["data"]

    @pytest.mark.asyncio
    async def test_push_only(self, service, registry, directory, email):
        directory.upsert(UserProfile(user_id="u1", email="u1@example.com"))
        registry.register_token("u1", push_token(1))
        summary = await service.send_geofence_alert("u1", "old-town", "enter")
        assert list(summary.per_channel_counts) == [Channel.PUSH]
        assert email.outbox == []

    @pytest.mark.asyncio
    async def test_respects_opt_out(self, service, registry, push):
        registry.register_token("u1", push_token(1), preferences={"geofence": False})
        summary = await service.send_geofence_alert("u1", "old-town", "entry")
        assert summary.filtered == 1
        assert push.sent == []

    @pytest.mark.asyncio
    async def test_invalid_event(self, service):
        with pytest.raises(ValidationError, match="event_type"):
            await service.send_geofence_alert("u1", "old-town", "hover")

    @pytest.mark.asyncio
    async def test_unknown_zone(self, service):
        with pytest.raises(NotFoundError):
            await service.send_geofence_alert("u1", "atlantis", "entry")


class TestSendNotification:

    @pytest.mark.asyncio
    async def test_requires_recipients(self, service):
        with pytest.raises(ValidationError):
            await service.send_notification("system", [], title="t", body="b")

    @pytest.mark.asyncio
    async def test_duplicate_ids_resolved_once(self, service, directory, email):
        directory.upsert(UserProfile(user_id="u1", email="u1@example.com"))
        summary = await service.send_notification(
            "weatherAlert", ["u1", "u1"], title="Heat wave", body="Stay hydrated", channels=["email"],
        )
        assert summary.total_users == 1
        assert len(email.outbox) == 1

    @pytest.mark.asyncio
    async def test_history_is_queryable(self, service, directory):
        directory.upsert(UserProfile(user_id="u1", email="u1@example.com"))
        await service.send_notification("checkIn", ["u1"], title="Check in", body="All good?", channels=["email"])
        page = await service.get_history("u1")
        assert page.total == 1
        assert page.statistics.by_type == {"checkIn": 1}


class TestChannelSelfTest:

    @pytest.mark.asyncio
    async def test_adhoc_recipient(self, service, email, sms):
        summary = await service.test_channels(email="qa@example.com", phone_number="+1 555 010 0000")
        assert summary.success
        assert summary.notification.title == TEST_TITLE
        assert "test_id" in summary.notification.data
        assert email.outbox[0].text.startswith("Dear Test User,")
        assert sms.outbox[0].to == "15550100000"

    @pytest.mark.asyncio
    async def test_registered_user_ignores_opt_out(self, service, registry, push):
        registry.register_token("u1", push_token(1), preferences={"system": False})
        summary = await service.test_channels(user_id="u1", channels=["push"])
        assert summary.successful == 1
        assert len(push.sent) == 1

    @pytest.mark.asyncio
    async def test_requires_a_target(self, service):
        with pytest.raises(ValidationError):
            await service.test_channels()


class TestRegistry:

    def test_register_and_deactivate(self, service, registry):
        registration = service.register_token("u1", push_token(1), platform="android")
        assert registration.active
        assert registry.active_token("u1") == push_token(1)

        service.deactivate_token("u1")
        assert registry.active_token("u1") is None
        assert registry.get("u1").token == push_token(1)

    def test_invalid_token(self, service):
        with pytest.raises(ValidationError):
            service.register_token("u1", "abc")

    def test_deactivate_unknown(self, service):
        with pytest.raises(NotFoundError):
            service.deactivate_token("ghost")

    def test_preferences_merge(self, service):
        service.update_preferences("u1", {"weatherAlert": False})
        merged = service.update_preferences("u1", {"checkIn": True})
        assert merged == {"weatherAlert": False, "checkIn": True}

    @pytest.mark.parametrize("prefs", [{"weatherAlert": "no"}, {"postcard": True}])
    def test_preferences_validated(self, service, prefs):
        with pytest.raises(ValidationError):
            service.update_preferences("u1", prefs)


class TestRecipients:

    @pytest.mark.asyncio
    async def test_unknown_user_is_bare(self, resolver):
        recipient = await resolver.resolve("ghost")
        assert recipient.id == "ghost"
        assert recipient.email is None and recipient.push_token is None

    @pytest.mark.asyncio
    async def test_emergency_contact_ids(self, resolver, directory):
        directory.upsert(UserProfile(user_id="t1", emergency_contacts=[
            EmergencyContact(name="Ravi", phone="+919810000002"),
            EmergencyContact(name="Meera", email="meera@example.com"),
        ]))
        contacts = await resolver.emergency_contacts("t1")
        assert [c.id for c in contacts] == ["t1:contact:0", "t1:contact:1"]
        assert contacts[1].email == "meera@example.com"
        assert await resolver.emergency_contacts("ghost") == []

    @pytest.mark.asyncio
    async def test_profile_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.profile("ghost")
