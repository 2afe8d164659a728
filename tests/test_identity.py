"""
Tests for Identity Verification

Severity precedence, the registration window and per-phase frame routing.
"""

import itertools

import pytest

SIGNALS = ["face_detected", "same_person", "multiple_faces", "talking_to_someone", "suspicious_activity", "looking_away"]


def expected_condition(s):
    """First matching condition in precedence order"""
    rules = [
        ("no_face", not s["face_detected"]),
        ("different_person", not s["same_person"]),
        ("communicating", s["multiple_faces"] and s["talking_to_someone"]),
        ("multiple_faces", s["multiple_faces"]),
        ("talking", s["talking_to_someone"]),
        ("suspicious_activity", s["suspicious_activity"]),
        ("looking_away", s["looking_away"]),
    ]
    for condition, matched in rules:
        if matched:
            return condition
    return None


class TestSeverityPrecedence:
    """Tests for evaluate_identity"""

    def test_precedence_holds_for_every_combination(self):
        from labproctor.proctor.identity import evaluate_identity
        from labproctor.proctor.judgments import IdentitySignals

        for values in itertools.product([True, False], repeat=len(SIGNALS)):
            signals = dict(zip(SIGNALS, values))
            finding = evaluate_identity(IdentitySignals(**signals))
            condition = finding.condition if finding else None
            assert condition == expected_condition(signals), signals

    def test_no_face_beats_multiple_faces(self):
        from labproctor.proctor.identity import evaluate_identity
        from labproctor.proctor.judgments import IdentitySignals

        finding = evaluate_identity(IdentitySignals.model_validate({
            "faceDetected": False, "samePerson": True, "multipleFaces": True
        }))

        assert finding.condition == "no_face"
        assert finding.severity == "high"
        assert "NO FACE DETECTED" in finding.reason

    def test_different_person_includes_confidence(self):
        from labproctor.proctor.identity import evaluate_identity
        from labproctor.proctor.judgments import IdentitySignals

        finding = evaluate_identity(IdentitySignals(face_detected=True, same_person=False, confidence=91))

        assert finding.severity == "critical"
        assert finding.critical is True
        assert "(confidence: 91%)" in finding.reason

    def test_clean_frame_has_no_finding(self):
        from labproctor.proctor.identity import evaluate_identity
        from labproctor.proctor.judgments import IdentitySignals

        assert evaluate_identity(IdentitySignals(face_detected=True, same_person=True)) is None

    def test_categories_follow_criticality(self):
        from labproctor.proctor.identity import evaluate_identity, finding_category
        from labproctor.proctor.judgments import IdentitySignals
        from labproctor.proctor.models import ViolationCategory

        critical = evaluate_identity(IdentitySignals(face_detected=True, same_person=True, talking_to_someone=True))
        minor = evaluate_identity(IdentitySignals(face_detected=True, same_person=True, looking_away=True))

        assert finding_category(critical) == ViolationCategory.IDENTITY_ALERT
        assert finding_category(minor) == ViolationCategory.CLASSIFIER_ALERT

    def test_confidence_out_of_range_rejected(self):
        from labproctor.proctor.judgments import IdentitySignals, parse_verdict

        payload = {"faceDetected": True, "samePerson": True, "confidence": 140}
        assert parse_verdict(IdentitySignals, payload) is None


class TestIdentityPhase:
    """Tests for the registration window"""

    def test_idle_until_entered(self, gateway, clock):
        from labproctor.proctor.identity import IdentityPhaseManager
        from labproctor.proctor.models import IdentityPhase

        manager = IdentityPhaseManager(gateway, window_seconds=20, clock=clock)
        assert manager.phase == IdentityPhase.IDLE

    def test_registering_for_twenty_seconds(self, gateway, clock):
        from labproctor.proctor.identity import IdentityPhaseManager
        from labproctor.proctor.models import IdentityPhase

        manager = IdentityPhaseManager(gateway, window_seconds=20, clock=clock)
        manager.enter()

        clock.advance(19.9)
        assert manager.phase == IdentityPhase.REGISTERING
        clock.advance(0.1)
        assert manager.phase == IdentityPhase.MONITORING

    def test_monitoring_never_reverts(self, gateway, clock):
        from labproctor.proctor.identity import IdentityPhaseManager
        from labproctor.proctor.models import IdentityPhase

        manager = IdentityPhaseManager(gateway, window_seconds=20, clock=clock)
        manager.enter()
        clock.advance(25)
        assert manager.phase == IdentityPhase.MONITORING

        # Wall clock stepping backwards does not reopen registration
        clock.advance(-100)
        assert manager.phase == IdentityPhase.MONITORING

    def test_reset_returns_to_idle(self, gateway, clock):
        from labproctor.proctor.identity import IdentityPhaseManager
        from labproctor.proctor.models import IdentityPhase

        manager = IdentityPhaseManager(gateway, window_seconds=20, clock=clock)
        manager.enter()
        clock.advance(30)
        manager.phase
        manager.reset()

        assert manager.phase == IdentityPhase.IDLE


class TestIdentityRouting:
    """Tests for camera frame handling per phase"""

    def _manager(self, gateway, clock, monitoring=False):
        from labproctor.proctor.identity import IdentityPhaseManager

        manager = IdentityPhaseManager(gateway, window_seconds=20, clock=clock)
        manager.enter()
        if monitoring:
            clock.advance(20)
        return manager

    async def _frame(self, manager):
        return await manager.handle_camera_frame(
            "data:image/jpeg;base64,AAAA", folder="user1_999999_2026-02-07_05-57-15",
            user_id="999999", username="user1"
        )

    @pytest.mark.asyncio
    async def test_registering_stores_reference_and_screens_frame(self, gateway, clock):
        manager = self._manager(gateway, clock)

        alerts = await self._frame(manager)

        assert alerts == []
        assert gateway.calls["register_face"] == [("user1_999999_2026-02-07_05-57-15", "999999")]
        assert gateway.calls["analyze"][0][0] == "camera"
        assert gateway.calls["check_face"] == []
        assert manager.registrations == 1

    @pytest.mark.asyncio
    async def test_registering_multiple_faces_is_identity_alert(self, gateway, clock):
        from labproctor.proctor.models import ViolationCategory

        gateway.analyze_payload = {
            "alert": True,
            "reason": "Second person visible",
            "behavior": {"faceDetected": True, "multipleFaces": True, "talkingToSomeone": False}
        }
        alerts = await self._frame(self._manager(gateway, clock))

        assert len(alerts) == 1
        assert alerts[0].category == ViolationCategory.IDENTITY_ALERT
        assert alerts[0].reason == "Second person visible"

    @pytest.mark.asyncio
    async def test_registering_no_face_is_classifier_alert(self, gateway, clock):
        from labproctor.proctor.models import ViolationCategory

        gateway.analyze_payload = {
            "alert": True,
            "reason": "Camera covered",
            "behavior": {"faceDetected": False, "multipleFaces": False, "talkingToSomeone": False}
        }
        alerts = await self._frame(self._manager(gateway, clock))

        assert [a.category for a in alerts] == [ViolationCategory.CLASSIFIER_ALERT]

    @pytest.mark.asyncio
    async def test_registering_ignores_minor_alerts(self, gateway, clock):
        gateway.analyze_payload = {
            "alert": True,
            "reason": "Looking sideways",
            "behavior": {"faceDetected": True, "multipleFaces": False, "talkingToSomeone": False, "lookingAway": True}
        }
        assert await self._frame(self._manager(gateway, clock)) == []

    @pytest.mark.asyncio
    async def test_registering_ignores_malformed_payload(self, gateway, clock):
        gateway.analyze_payload = {"alert": True, "behavior": {"faceDetected": "perhaps"}}
        assert await self._frame(self._manager(gateway, clock)) == []

    @pytest.mark.asyncio
    async def test_registration_failure_still_screens_frame(self, gateway, clock):
        from labproctor.proctor.errors import GatewayError

        gateway.register_error = GatewayError("POST /api/proctoring/face/register returned 500")
        await self._frame(self._manager(gateway, clock))

        assert len(gateway.calls["analyze"]) == 1

    @pytest.mark.asyncio
    async def test_monitoring_compares_with_reference(self, gateway, clock):
        from labproctor.proctor.models import ViolationCategory

        gateway.check_payload = {
            "success": True,
            "alert": True,
            "behavior": {"faceDetected": True, "samePerson": False, "confidence": 88}
        }
        alerts = await self._frame(self._manager(gateway, clock, monitoring=True))

        assert gateway.calls["register_face"] == []
        assert gateway.calls["analyze"] == []
        assert len(alerts) == 1
        assert alerts[0].category == ViolationCategory.IDENTITY_ALERT
        assert alerts[0].reason.startswith("DIFFERENT PERSON DETECTED")

    @pytest.mark.asyncio
    async def test_monitoring_without_reference_is_silent(self, gateway, clock):
        gateway.check_payload = {"success": True, "alert": False, "reason": "No reference face registered yet"}

        assert await self._frame(self._manager(gateway, clock, monitoring=True)) == []
